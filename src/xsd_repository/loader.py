"""Fetch schema bytes from the filesystem or over HTTP.

The resolution engine never touches files or sockets directly; it asks a
:class:`DocumentLoader` for the bytes behind an effective location and turns
:class:`~xsd_repository.errors.LocationNotFoundError` into a load failure on
the import/include edge that requested it.

Example:
        loader = DocumentLoader(timeout=10)
        data = loader.load("/schemas/road.xsd")
        data = loader.load("https://schemas.opengis.net/gml/3.2.1/gml.xsd")
"""

import logging
import urllib.error
import urllib.request
from pathlib import Path
from typing import Optional

from .errors import LocationNotFoundError
from .namespaces import is_url

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
USER_AGENT = "xsd-schema-repository"


class DocumentLoader:
    """Read schema documents by location.

    Args:
        timeout: Seconds to wait for remote schemas.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def load(self, location: str, requested: Optional[str] = None) -> bytes:
        """Return the raw bytes at ``location``.

        Args:
            location: Effective path or URL after location mapping.
            requested: Location as written in the schema, for error messages.

        Raises:
            LocationNotFoundError: If the target cannot be read.
        """
        original = requested or location
        if is_url(location):
            return self._fetch(location, original)
        try:
            return Path(location).read_bytes()
        except OSError as e:
            logger.debug(f"Cannot read schema file {location}: {e}")
            raise LocationNotFoundError(original, location) from e

    def _fetch(self, url: str, original: str) -> bytes:
        logger.info(f"Fetching remote schema {url}")
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                return response.read()
        except (urllib.error.URLError, OSError, ValueError) as e:
            logger.error(f"Failed to fetch schema from {url}: {e}")
            raise LocationNotFoundError(original, url) from e
