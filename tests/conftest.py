import pytest

from onkyobridge.surfaces import LocalControlService, LoggingStatus
from tests.fakes import FakeReceiver, MemoryConfigStore, RecordingListener


@pytest.fixture
def recording_listener():
    return RecordingListener()


@pytest.fixture
def fake_receiver():
    return FakeReceiver()


@pytest.fixture
def volume_service():
    return LocalControlService("volume")


@pytest.fixture
def source_service():
    return LocalControlService("source")


@pytest.fixture
def status():
    return LoggingStatus()


@pytest.fixture
def config_store():
    return MemoryConfigStore()


@pytest.fixture(autouse=True)
def reset_fake_receivers():
    FakeReceiver.instances.clear()
    yield
    FakeReceiver.instances.clear()
