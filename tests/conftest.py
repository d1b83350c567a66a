from pathlib import Path

import pytest

from xsd_repository.monitoring import initialize_monitor
from xsd_repository.package import to_package
from xsd_repository.repository import SchemaRepository

FIXTURE_SCHEMAS = Path(__file__).resolve().parent / "fixtures" / "schemas"
CITY_XSD = FIXTURE_SCHEMAS / "city.xsd"


@pytest.fixture(autouse=True)
def fresh_monitor():
    """Give every test its own metrics collector."""
    return initialize_monitor()


@pytest.fixture
def city_repository():
    repo = SchemaRepository(files=[str(CITY_XSD)])
    repo.resolve()
    return repo


@pytest.fixture
def city_package(tmp_path, city_repository):
    return to_package(
        city_repository,
        tmp_path / "city.xsdpkg",
        metadata={"name": "city", "version": "2.0.0", "description": "City model"},
    )
