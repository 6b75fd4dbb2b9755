"""Pytest configuration for sniwatch."""
import os

import pytest

from sniwatch.base.config import set_config
from sniwatch.enrich.asn import reset_asn_classifier
from tests.helpers import FakeClock


def pytest_configure():
    # Keep file logging out of the developer's home directory during tests.
    os.environ.setdefault("SNIWATCH_LOG_FILE", "false")


@pytest.fixture(autouse=True)
def _isolated_singletons(tmp_path, monkeypatch):
    monkeypatch.setenv("SNIWATCH_DATA_DIR", str(tmp_path / "data"))
    set_config(None)
    reset_asn_classifier()
    yield
    set_config(None)
    reset_asn_classifier()


@pytest.fixture
def clock():
    return FakeClock()
