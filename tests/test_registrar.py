import pytest

from onkyobridge.config import SETTINGS_KEY
from onkyobridge.receiver import ConnectionOptions
from onkyobridge.registrar import SurfaceRegistrar
from onkyobridge.surfaces import NOT_VALID, SUCCESS, CompletedRequest, LocalSettings
from tests.fakes import FakeReceiver, MemoryConfigStore


@pytest.fixture
def registrar(config_store, volume_service, source_service, status):
    return SurfaceRegistrar(
        config_store, volume_service, source_service, status, receiver_factory=FakeReceiver
    )


def connect(registrar):
    registrar.receiver.events.connected("192.168.1.20")


def test_defaults_without_stored_settings(registrar):
    assert registrar.settings == {"hostname": "", "source": "strm-box"}


def test_stored_settings_are_loaded(volume_service, source_service, status):
    store = MemoryConfigStore({SETTINGS_KEY: {"hostname": "avr.local", "source": "bd"}})
    registrar = SurfaceRegistrar(store, volume_service, source_service, status, receiver_factory=FakeReceiver)
    assert registrar.settings == {"hostname": "avr.local", "source": "bd"}


def test_start_connects_with_stored_hostname(registrar, status):
    registrar.start()
    receiver = registrar.receiver
    assert receiver.hostname == ""
    assert receiver.connect_calls == 1
    assert status.message == "Connecting to receiver (auto detect)..."


def test_options_are_passed_to_the_receiver(config_store, volume_service, source_service, status):
    options = ConnectionOptions(reconnect_delay=1, send_delay=50)
    registrar = SurfaceRegistrar(
        config_store, volume_service, source_service, status, options=options, receiver_factory=FakeReceiver
    )
    registrar.start()
    assert registrar.receiver.options is options


def test_fresh_start_scenario(registrar, volume_service, source_service):
    registrar.start()
    connect(registrar)

    assert volume_service.created_count == 1
    assert source_service.created_count == 1
    assert len(registrar.receiver.sent) == 4
    assert registrar.bridge.volume.value == 20


def test_rebind_tears_down_before_creating(registrar, volume_service, source_service):
    registrar.start()
    connect(registrar)
    old_receiver, old_bridge = registrar.receiver, registrar.bridge

    registrar.rebind("192.168.1.30")

    assert old_receiver.closed
    assert old_bridge.torn_down
    assert old_receiver.listener_count == 0
    assert volume_service.removed_count == 1
    assert source_service.removed_count == 1
    assert volume_service.devices == {}

    assert registrar.receiver is not old_receiver
    assert registrar.receiver.hostname == "192.168.1.30"
    connect(registrar)
    assert volume_service.created_count == 2
    assert len(volume_service.devices) == 1
    assert len(source_service.devices) == 1


def test_hostname_change_rebinds_once(registrar, config_store, volume_service):
    registrar.start()
    connect(registrar)

    request = CompletedRequest()
    registrar.save_settings(request, False, {"hostname": "192.168.1.30", "source": "strm-box"})

    assert request.status == SUCCESS
    assert len(FakeReceiver.instances) == 2
    assert FakeReceiver.instances[0].closed
    assert volume_service.removed_count == 1
    assert registrar.receiver.hostname == "192.168.1.30"
    assert config_store.data[SETTINGS_KEY] == {"hostname": "192.168.1.30", "source": "strm-box"}

    connect(registrar)
    assert volume_service.created_count == 2


def test_source_change_keeps_connection(registrar, config_store, volume_service):
    registrar.start()
    connect(registrar)
    receiver = registrar.receiver

    request = CompletedRequest()
    registrar.save_settings(request, False, {"hostname": "", "source": "bd"})

    assert request.status == SUCCESS
    assert registrar.receiver is receiver
    assert not receiver.closed
    assert volume_service.removed_count == 0
    assert config_store.saves == 1

    # The live bridge uses the new source straight away
    receiver.events.input_changed("dvd,bd,bd/dvd")
    assert registrar.bridge.source.status == "selected"


def test_dry_run_changes_nothing(registrar, config_store):
    registrar.start()
    request = CompletedRequest()
    layout = registrar.save_settings(request, True, {"hostname": "192.168.1.30", "source": "bd"})

    assert request.status == SUCCESS
    assert request.body == {"settings": layout}
    assert registrar.settings["hostname"] == ""
    assert len(FakeReceiver.instances) == 1
    assert config_store.saves == 0


def test_invalid_settings_are_rejected(registrar, config_store):
    registrar.start()
    request = CompletedRequest()
    layout = registrar.save_settings(request, False, {"hostname": "avr.local", "source": "much-too-long"})

    assert request.status == NOT_VALID
    assert layout["has_error"]
    source_field = [field for field in layout["layout"] if field["setting"] == "source"][0]
    assert "error" in source_field
    assert registrar.settings == {"hostname": "", "source": "strm-box"}
    assert len(FakeReceiver.instances) == 1
    assert config_store.saves == 0


def test_get_settings_layout(registrar):
    layout = registrar.get_settings()
    assert layout["values"] == {"hostname": "", "source": "strm-box"}
    assert not layout["has_error"]
    assert [field["setting"] for field in layout["layout"]] == ["hostname", "source"]


def test_shutdown_tears_down(registrar, volume_service):
    registrar.start()
    connect(registrar)
    receiver = registrar.receiver

    registrar.shutdown()

    assert receiver.closed
    assert registrar.receiver is None
    assert registrar.bridge is None
    assert volume_service.devices == {}


def test_saved_settings_are_published(config_store, volume_service, source_service, status):
    settings_service = LocalSettings()
    registrar = SurfaceRegistrar(
        config_store, volume_service, source_service, status,
        receiver_factory=FakeReceiver, settings_service=settings_service,
    )
    registrar.start()

    registrar.save_settings(CompletedRequest(), True, {"hostname": "", "source": "bd"})
    registrar.save_settings(CompletedRequest(), False, {"hostname": "", "source": ""})
    assert settings_service.updates == 0

    layout = registrar.save_settings(CompletedRequest(), False, {"hostname": "", "source": "BD"})
    assert settings_service.updates == 1
    assert settings_service.layout is layout
    assert layout["values"]["source"] == "bd"
