"""pytest configuration for signage coordinator tests."""

import pytest

from coordinator.store import ConfigStore


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture
def store(tmp_path):
    s = ConfigStore(tmp_path / "config.json")
    s.load()
    return s


@pytest.fixture
def addons_dir(tmp_path):
    d = tmp_path / "Addons"
    d.mkdir()
    return d


@pytest.fixture
def fonts_dir(tmp_path):
    d = tmp_path / "Fonts"
    d.mkdir()
    return d
