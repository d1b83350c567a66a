"""Executable entry point for the schema repository HTTP service.

Process managers can import the stable ``app`` object from
``xsd_repository.app``, or ``python -m xsd_repository.run_server`` can be run
directly for local development.

Environment Variables:
    PORT (int): Override listening port (default 8000).
    XSD_REPOSITORY_PACKAGE (str): Package file to serve.
    XSD_REPOSITORY_LOG_LEVEL (str): ``DEBUG`` enables verbose logging.

Example:
    $ XSD_REPOSITORY_PACKAGE=city.xsdpkg python -m xsd_repository.run_server
    $ PORT=9000 python -m xsd_repository.run_server

Production Recommendation:
    Prefer invoking uvicorn directly for tuned concurrency:
        uvicorn xsd_repository.app:app --host 0.0.0.0 --port 8000 --workers 4
"""

from __future__ import annotations

import os

import uvicorn

from .app import app
from .config import setup_logging


def main() -> None:
    """Launch the ASGI server with development-friendly defaults."""
    setup_logging(verbose=os.getenv("XSD_REPOSITORY_LOG_LEVEL", "").upper() == "DEBUG")
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
