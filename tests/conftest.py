"""
Shared fixtures for the print queue tests.

Packages are built in memory with every entry a printer expects, so each
test only spells out what it changes.
"""

import pytest

from core.database import Database
from core.repository import JobRepository, OrderRepository
from core.storage import MemoryObjectStorage
from models.job import Job

from package_builder import DEFAULT_GCODE, build_entries, zip_entries


# Fixtures

@pytest.fixture
def package_factory():
    """
    Build package bytes.

    Usage:
        package_factory()                                # complete package
        package_factory(omit=["3D/3dmodel.model"])       # drop entries
        package_factory(overrides={"Metadata/plate_1.json": b"{"})
        package_factory(gcode="G28\\nG1 X1\\n")
    """
    def _build(gcode=DEFAULT_GCODE, omit=(), overrides=None):
        entries = build_entries(gcode)
        for name in omit:
            entries.pop(name, None)
        entries.update(overrides or {})
        return zip_entries(entries)

    return _build


@pytest.fixture
def storage():
    """Empty in-memory object storage."""
    return MemoryObjectStorage()


@pytest.fixture
def database():
    """Fresh in-memory SQLite database with tables created."""
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def order_repository(database):
    return OrderRepository(database)


@pytest.fixture
def job_repository(database):
    return JobRepository(database)


@pytest.fixture
def stored_job(job_repository, storage, package_factory):
    """
    Create a Job whose package is in storage.

    Usage:
        job = stored_job("cube.gcode.3mf", printer="X1C", material="PLA")
    """
    def _create(file_name="cube.gcode.3mf", data=None, **fields):
        path = f"jobs/{file_name}"
        storage.upload(path, data if data is not None else package_factory(), upsert=True)
        return job_repository.create(Job(storage_path=path, **fields))

    return _create
