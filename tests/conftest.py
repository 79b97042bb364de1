import pytest

from ble_csv_recorder.logs import NdjsonLogger
from fakes import FakeCentral, ManualScheduler


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def central():
    return FakeCentral()


@pytest.fixture
def logger(tmp_path):
    lg = NdjsonLogger(str(tmp_path / "diag"), "test", mode="verbose")
    yield lg
    lg.close()
