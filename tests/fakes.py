from onkyobridge.listener import MultiplexingListener, ReceiverListener


class RecordingListener(ReceiverListener):
    """Collects every event as a (kind, payload) tuple."""

    def __init__(self):
        self.events = []

    def connected(self, host: str):
        self.events.append(("connected", host))

    def disconnected(self):
        self.events.append(("disconnected", None))

    def volume_changed(self, volume: int):
        self.events.append(("volume", volume))

    def input_changed(self, names: str):
        self.events.append(("input", names))

    def power_changed(self, power: str):
        self.events.append(("power", power))

    def mute_changed(self, mute: str):
        self.events.append(("mute", mute))

    def error(self, error_message: str):
        self.events.append(("error", error_message))

    def debug(self, message: str):
        self.events.append(("debug", message))

    def kinds(self):
        return [kind for kind, _ in self.events]


class FakeReceiver:
    """Stands in for OnkyoReceiver: records commands and lets tests emit events."""

    instances = []

    def __init__(self, options=None):
        self.options = options
        self.sent = []
        self.hostname = None
        self.connect_calls = 0
        self.closed = False
        self._listeners = MultiplexingListener()
        FakeReceiver.instances.append(self)

    def register_listener(self, listener):
        self._listeners.register_listener(listener)

    def unregister_listener(self, listener):
        self._listeners.unregister_listener(listener)

    @property
    def listener_count(self):
        return self._listeners.listener_count

    def connect(self, hostname=""):
        self.hostname = hostname
        self.connect_calls += 1

    def close(self):
        self.closed = True

    def send(self, command):
        self.sent.append(command)

    @property
    def events(self):
        return self._listeners


class MemoryConfigStore:

    def __init__(self, data=None):
        self.data = dict(data or {})
        self.saves = 0

    def load_config(self, key, default=None):
        return self.data.get(key, default)

    def save_config(self, key, value):
        self.data[key] = value
        self.saves += 1
