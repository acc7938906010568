"""Owns the receiver session and its control surfaces.

One receiver link and one bridge exist at a time. Whenever the configured
hostname changes the old session is torn down completely (surfaces
destroyed, listeners detached, reconnection cancelled) before the new one
is created.
"""

import logging
from typing import Callable, Optional

from onkyobridge.bridge import ReceiverBridge
from onkyobridge.config import (
    CONF_HOSTNAME,
    CONF_SOURCE,
    SETTINGS_KEY,
    load_settings,
    make_layout,
)
from onkyobridge.listener import LoggingListener
from onkyobridge.receiver import ConnectionOptions, OnkyoReceiver
from onkyobridge.surfaces import (
    NOT_VALID,
    SUCCESS,
    ControlRequest,
    ControlService,
    SettingsService,
    StatusService,
)


class SurfaceRegistrar:
    """Creates and destroys the receiver session whenever the target receiver changes."""

    def __init__(self, config_store, volume_service: ControlService, source_service: ControlService,
                 status: StatusService, options: Optional[ConnectionOptions] = None,
                 receiver_factory: Callable[[ConnectionOptions], OnkyoReceiver] = OnkyoReceiver,
                 settings_service: Optional[SettingsService] = None):
        """Initialize registrar.

        Args:
            config_store: Persists the settings record (load_config/save_config)
            volume_service: Host registry for the volume surface
            source_service: Host registry for the source surface
            status: Host status line
            options: Connection options for every receiver link
            receiver_factory: Creates the receiver link for a session
            settings_service: Host settings form, refreshed after a save
        """
        self._config_store = config_store
        self._volume_service = volume_service
        self._source_service = source_service
        self._status = status
        self._options = options or ConnectionOptions()
        self._receiver_factory = receiver_factory
        self._settings_service = settings_service
        self._logger = logging.getLogger(__name__)

        self._settings: dict = load_settings(config_store)
        self._receiver: Optional[OnkyoReceiver] = None
        self._bridge: Optional[ReceiverBridge] = None
        self._device_logger = LoggingListener(logging.getLogger("onkyobridge.device"))

    @property
    def settings(self) -> dict:
        return dict(self._settings)

    @property
    def receiver(self) -> Optional[OnkyoReceiver]:
        return self._receiver

    @property
    def bridge(self) -> Optional[ReceiverBridge]:
        return self._bridge

    def start(self):
        """Connect to the receiver from the stored settings."""
        self.rebind(self._settings[CONF_HOSTNAME])

    def shutdown(self):
        self._teardown()

    def rebind(self, hostname: str):
        """Replace the current session with one targeting hostname."""
        self._logger.debug(f"setup receiver connection ({hostname})")
        self._teardown()

        receiver = self._receiver_factory(self._options)
        bridge = ReceiverBridge(
            receiver,
            self._volume_service,
            self._source_service,
            self._status,
            lambda: self._settings[CONF_SOURCE],
        )
        receiver.register_listener(self._device_logger)
        receiver.register_listener(bridge)
        self._receiver = receiver
        self._bridge = bridge

        self._logger.info(f"Connecting to receiver {hostname or '(auto detect)'}...")
        self._status.set_status(f"Connecting to receiver {hostname or '(auto detect)'}...", False)
        receiver.connect(hostname)

    def _teardown(self):
        if self._bridge is not None:
            self._bridge.teardown()
            if self._receiver is not None:
                self._receiver.unregister_listener(self._bridge)
            self._bridge = None
        if self._receiver is not None:
            self._receiver.unregister_listener(self._device_logger)
            self._receiver.close()
            self._receiver = None

    # ========== Settings ==========

    def get_settings(self) -> dict:
        return make_layout(self._settings)

    def save_settings(self, request: ControlRequest, dry_run: bool, values: dict) -> dict:
        """Validate and (unless dry_run) apply a settings form.

        Only a hostname change disturbs the live session.
        """
        layout = make_layout(values)
        request.send_complete(NOT_VALID if layout["has_error"] else SUCCESS, {"settings": layout})

        if not dry_run and not layout["has_error"]:
            old_hostname = self._settings[CONF_HOSTNAME]
            self._settings = layout["values"]
            if self._settings_service is not None:
                self._settings_service.update_settings(layout)
            if old_hostname != self._settings[CONF_HOSTNAME]:
                self.rebind(self._settings[CONF_HOSTNAME])
            self._config_store.save_config(SETTINGS_KEY, self._settings)
        return layout
