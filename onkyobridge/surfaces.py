"""Control surfaces published to the host.

The host sees two kinds of surface: a volume control and a source control.
A ControlService creates surfaces (ControlDevice) from an initial state and
a set of command handlers; the bridge publishes state changes through the
device, and the host calls commands back into the handlers.

LocalControlService and LoggingStatus are in-process implementations used
by the command line runner and the tests.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

SUCCESS = "Success"
NOT_VALID = "NotValid"
INVALID_REQUEST = "InvalidRequest"

_LOGGER = logging.getLogger(__name__)


class ControlRequest(ABC):
    """A host command awaiting its (synchronous) acknowledgment."""

    @abstractmethod
    def send_complete(self, status: str, body: Optional[dict] = None):
        pass


class CompletedRequest(ControlRequest):
    """Request that just records how it was completed."""

    def __init__(self):
        self.status: Optional[str] = None
        self.body: Optional[dict] = None

    @property
    def completed(self) -> bool:
        return self.status is not None

    def send_complete(self, status: str, body: Optional[dict] = None):
        self.status = status
        self.body = body


class ControlDevice:
    """Handle for one published control surface."""

    def __init__(self, service: 'ControlService', device_id: int, state: dict,
                 handlers: dict[str, Callable[..., Any]]):
        self._service = service
        self._id = device_id
        self._state = dict(state)
        self._handlers = dict(handlers)
        self._destroyed = False

    @property
    def id(self) -> int:
        return self._id

    @property
    def state(self) -> dict:
        return dict(self._state)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def update_state(self, changes: dict):
        """Merge changes into the published state and notify the host."""
        if self._destroyed:
            _LOGGER.debug(f"Ignoring state update for destroyed device {self._id}: {changes}")
            return
        self._state.update(changes)
        self._service._state_changed(self, changes)

    def destroy(self):
        if self._destroyed:
            return
        self._destroyed = True
        self._service._device_removed(self)

    def invoke(self, command: str, *args, request: Optional[ControlRequest] = None) -> ControlRequest:
        """Run a host command against this device, e.g. invoke('set_volume', 'absolute', 40)."""
        request = request or CompletedRequest()
        handler = self._handlers.get(command)
        if handler is None or self._destroyed:
            request.send_complete(INVALID_REQUEST)
            return request
        handler(request, *args)
        return request


class ControlService(ABC):
    """Registry of control surfaces of one kind ('volume' or 'source')."""

    kind: str = ""

    def new_device(self, state: dict, handlers: dict[str, Callable[..., Any]]) -> ControlDevice:
        device = ControlDevice(self, self._next_id(), state, handlers)
        self._device_added(device)
        return device

    @abstractmethod
    def _next_id(self) -> int:
        pass

    @abstractmethod
    def _device_added(self, device: ControlDevice):
        pass

    @abstractmethod
    def _state_changed(self, device: ControlDevice, changes: dict):
        pass

    @abstractmethod
    def _device_removed(self, device: ControlDevice):
        pass


class LocalControlService(ControlService):
    """Keeps surfaces in memory and logs every change."""

    def __init__(self, kind: str):
        self.kind = kind
        self._logger = logging.getLogger(f"{__name__}.{kind}")
        self._counter = 0
        self.devices: dict[int, ControlDevice] = {}
        self.created_count = 0
        self.removed_count = 0

    def _next_id(self) -> int:
        self._counter += 1
        return self._counter

    def _device_added(self, device: ControlDevice):
        self.devices[device.id] = device
        self.created_count += 1
        self._logger.info(f"New {self.kind} control {device.id}: {device.state}")

    def _state_changed(self, device: ControlDevice, changes: dict):
        self._logger.info(f"{self.kind} control {device.id} updated: {changes}")

    def _device_removed(self, device: ControlDevice):
        self.devices.pop(device.id, None)
        self.removed_count += 1
        self._logger.info(f"{self.kind} control {device.id} destroyed")

    @property
    def device(self) -> Optional[ControlDevice]:
        """The live device, if any."""
        return next(iter(self.devices.values()), None)


class StatusService(ABC):
    """Host-visible status line."""

    @abstractmethod
    def set_status(self, message: str, is_error: bool = False):
        pass


class LoggingStatus(StatusService):

    def __init__(self, logger=_LOGGER):
        self.logger = logger
        self.message: Optional[str] = None
        self.is_error = False

    def set_status(self, message: str, is_error: bool = False):
        self.message = message
        self.is_error = is_error
        if is_error:
            self.logger.warning(f"Status: {message}")
        else:
            self.logger.info(f"Status: {message}")


class SettingsService(ABC):
    """Host settings form; refreshed whenever new settings are applied."""

    @abstractmethod
    def update_settings(self, layout: dict):
        pass


class LocalSettings(SettingsService):
    """Keeps the most recently published settings layout."""

    def __init__(self):
        self.layout: Optional[dict] = None
        self.updates = 0

    def update_settings(self, layout: dict):
        self.layout = layout
        self.updates += 1
