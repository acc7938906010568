"""Receiver <-> control surface bridge.

Translates receiver events into volume/source surface state and surface
commands into receiver commands for one session (one receiver link).

Every host command is acknowledged as soon as it is accepted locally. The
receiver protocol has no per-command acknowledgment, so "sent" is the
strongest completion we can report; the receiver's own echoed events then
reconcile local state.
"""

import logging
from typing import Callable, Optional

from onkyobridge.listener import ReceiverListener
from onkyobridge.surfaces import (
    INVALID_REQUEST,
    SUCCESS,
    ControlDevice,
    ControlRequest,
    ControlService,
    StatusService,
)

DISPLAY_NAME = "Onkyo"
INITIAL_VOLUME = 20

STANDBY = "standby"
SELECTED = "selected"

# Queried once, when the session first becomes active
STATE_QUERIES = (
    "input-selector=query",
    "system-power=query",
    "master-volume=query",
    "audio-muting=query",
)


class VolumeState:
    """Volume as published on the volume surface."""

    def __init__(self, value: int = INITIAL_VOLUME, minimum: int = 1, maximum: int = 100, step: int = 5,
                 muted: bool = False):
        self.min = minimum
        self.max = maximum
        self.step = step
        self.muted = muted
        self.value = self.clamp(value)

    def clamp(self, value: int) -> int:
        return max(self.min, min(self.max, value))

    def surface_state(self, display_name: str) -> dict:
        return {
            "display_name": display_name,
            "volume_type": "number",
            "volume_min": self.min,
            "volume_max": self.max,
            "volume_value": self.value,
            "volume_step": self.step,
            "is_muted": self.muted,
        }


class SourceControlState:
    """Source status as published on the source surface."""

    def __init__(self, status: str = STANDBY):
        self.status = status

    @property
    def selected(self) -> bool:
        return self.status == SELECTED

    def surface_state(self, display_name: str) -> dict:
        return {
            "display_name": display_name,
            "supports_standby": True,
            "status": self.status,
        }


class ReceiverBridge(ReceiverListener):
    """State machine for one receiver session: uninitialized -> active -> torn down."""

    def __init__(self, receiver, volume_service: ControlService, source_service: ControlService,
                 status: StatusService, source_name: Callable[[], str],
                 display_name: str = DISPLAY_NAME):
        """Initialize bridge.

        Args:
            receiver: Device link used for outbound commands (anything with send())
            volume_service: Registry the volume surface is published to
            source_service: Registry the source surface is published to
            status: Host status line
            source_name: Returns the configured playback source, e.g. 'strm-box'
            display_name: Name shown on both surfaces
        """
        self._receiver = receiver
        self._volume_service = volume_service
        self._source_service = source_service
        self._status = status
        self._source_name = source_name
        self._display_name = display_name
        self._logger = logging.getLogger(__name__)

        self._volume_control: Optional[ControlDevice] = None
        self._source_control: Optional[ControlDevice] = None
        self._torn_down = False

        self.volume: Optional[VolumeState] = None
        self.source = SourceControlState()

        # Last values reported by the receiver
        self._power: Optional[str] = None
        self._input: Optional[str] = None

    # ========== Properties ==========

    @property
    def active(self) -> bool:
        return self._volume_control is not None and self._source_control is not None

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    @property
    def volume_control(self) -> Optional[ControlDevice]:
        return self._volume_control

    @property
    def source_control(self) -> Optional[ControlDevice]:
        return self._source_control

    @property
    def power(self) -> Optional[str]:
        return self._power

    @property
    def input(self) -> Optional[str]:
        return self._input

    # ========== Receiver events ==========

    def connected(self, host: str):
        if self._torn_down:
            return
        if self.active:
            # Transparent reconnect; surfaces stay as they are
            self._logger.debug("Reconnected to receiver...")
            self._status.set_status("Connected to receiver...", False)
            return
        self._activate()

    def disconnected(self):
        if self.active:
            self._status.set_status("Disconnected from receiver, retrying...", True)

    def volume_changed(self, volume: int):
        self._logger.debug(f"Received volume change from device: {volume}")
        if not self.active:
            return
        volume = self.volume.clamp(volume)
        if volume != self.volume.value:
            self.volume.value = volume
            self._volume_control.update_state({"volume_value": volume})

    def mute_changed(self, mute: str):
        self._logger.debug(f"Received mute change from device: {mute}")
        if not self.active:
            return
        self.volume.muted = mute == "on"
        self._volume_control.update_state({"is_muted": self.volume.muted})

    def input_changed(self, names: str):
        self._logger.debug(f"Received source change from device: {names}")
        self._input = names
        if self.active:
            self._publish_source_status(self._evaluate_source_status())

    def power_changed(self, power: str):
        self._logger.debug(f"Received power change from device: {power}")
        self._power = power
        if self.active:
            self._publish_source_status(self._evaluate_source_status())

    def _evaluate_source_status(self) -> str:
        if self._power == STANDBY:
            return STANDBY
        if self._input is not None and self._source_name().lower() in self._input.lower():
            return SELECTED
        return STANDBY

    def _publish_source_status(self, status: str):
        self.source.status = status
        self._source_control.update_state({"status": status})

    # ========== Lifecycle ==========

    def _activate(self):
        self._status.set_status("Connected to receiver...", False)

        self._logger.info("Registering volume control extension...")
        self.volume = VolumeState()
        self._volume_control = self._volume_service.new_device(
            self.volume.surface_state(self._display_name),
            {"set_volume": self.set_volume, "set_mute": self.set_mute},
        )

        self._logger.info("Registering source control extension...")
        self.source = SourceControlState()
        self._source_control = self._source_service.new_device(
            self.source.surface_state(self._display_name),
            {"convenience_switch": self.convenience_switch, "standby": self.standby},
        )

        # Request initial states
        for command in STATE_QUERIES:
            self._receiver.send(command)

    def teardown(self):
        """Destroy both surfaces; the bridge ignores further events."""
        self._torn_down = True
        if self._source_control is not None:
            self._source_control.destroy()
            self._source_control = None
        if self._volume_control is not None:
            self._volume_control.destroy()
            self._volume_control = None
        self.volume = None
        self.source = SourceControlState()

    # ========== Host commands ==========

    def set_volume(self, request: ControlRequest, mode: str, value):
        self._logger.debug(f"set_volume: mode={mode} value={value}")
        if mode not in ("absolute", "relative"):
            self._logger.warning(f"set_volume: unknown mode {mode!r}")
            request.send_complete(INVALID_REQUEST)
            return
        try:
            value = int(value)
        except (TypeError, ValueError):
            self._logger.warning(f"set_volume: invalid value {value!r}")
            request.send_complete(INVALID_REQUEST)
            return

        target = value if mode == "absolute" else self.volume.value + value
        target = self.volume.clamp(target)
        if target != self.volume.value:
            self._receiver.send(f"master-volume={target}")
            self.volume.value = target
            self._volume_control.update_state({"volume_value": target})
            self._logger.debug("set_volume: Succeeded.")
        else:
            self._logger.debug("set_volume: not needed or already in progress...")
        request.send_complete(SUCCESS)

    def set_mute(self, request: ControlRequest, action: str = "toggle"):
        # Mute state is only updated from the receiver's own mute event
        self._logger.debug(f"set_mute: action={action}")
        self._receiver.send("audio-muting=toggle")
        request.send_complete(SUCCESS)

    def convenience_switch(self, request: ControlRequest):
        self._logger.debug("convenience_switch called")
        self._receiver.send(f"input-selector={self._source_name()}")
        request.send_complete(SUCCESS)

    def standby(self, request: ControlRequest):
        if self.source.selected:
            status, power = STANDBY, STANDBY
        else:
            status, power = SELECTED, "on"
        self._logger.debug(f"standby: switching power {power}")
        self._receiver.send(f"system-power={power}")
        self._power = power
        self._publish_source_status(status)
        request.send_complete(SUCCESS)
