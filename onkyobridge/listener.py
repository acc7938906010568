from abc import ABC, abstractmethod
from typing import List
import logging


class ReceiverListener(ABC):

    @abstractmethod
    def connected(self, host: str):
        pass

    @abstractmethod
    def disconnected(self):
        pass

    @abstractmethod
    def volume_changed(self, volume: int):
        pass

    @abstractmethod
    def input_changed(self, names: str):
        """Called with the comma-joined alias list of the selected input."""
        pass

    @abstractmethod
    def power_changed(self, power: str):
        """Called with 'on' or 'standby'."""
        pass

    @abstractmethod
    def mute_changed(self, mute: str):
        """Called with 'on' or 'off'."""
        pass

    def error(self, error_message: str):
        # By default, do nothing but can be overwritten to be notified of these messages.
        pass

    def debug(self, message: str):
        # By default, do nothing but can be overwritten to be notified of these messages.
        pass


class MultiplexingListener(ReceiverListener):

    _listeners: List[ReceiverListener]

    def __init__(self):
        self._listeners = []
        self._logger = logging.getLogger(__name__)

    def _dispatch(self, name: str, *args):
        for listener in list(self._listeners):
            try:
                getattr(listener, name)(*args)
            except Exception as e:
                self._logger.error(f"Exception in {name}() callback: {e}", exc_info=True)

    def connected(self, host: str):
        self._dispatch("connected", host)

    def disconnected(self):
        self._dispatch("disconnected")

    def volume_changed(self, volume: int):
        self._dispatch("volume_changed", volume)

    def input_changed(self, names: str):
        self._dispatch("input_changed", names)

    def power_changed(self, power: str):
        self._dispatch("power_changed", power)

    def mute_changed(self, mute: str):
        self._dispatch("mute_changed", mute)

    def error(self, error_message: str):
        self._dispatch("error", error_message)

    def debug(self, message: str):
        self._dispatch("debug", message)

    def register_listener(self, listener: ReceiverListener):
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unregister_listener(self, listener: ReceiverListener):
        if listener in self._listeners:
            self._listeners.remove(listener)
        else:
            self._logger.info("Listener isn't registered")

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


class LoggingListener(ReceiverListener):

    def __init__(self, logger=logging):
        self.logger = logger

    def connected(self, host: str):
        self.logger.info(f"Connected to {host}")

    def disconnected(self):
        self.logger.info("Disconnected")

    def volume_changed(self, volume: int):
        self.logger.info(f"Volume: {volume}")

    def input_changed(self, names: str):
        self.logger.info(f"Input changed to: {names}")

    def power_changed(self, power: str):
        self.logger.info(f"Power changed to: {power}")

    def mute_changed(self, mute: str):
        self.logger.info(f"Muting: {mute}")

    def error(self, error_message: str):
        self.logger.error(error_message)

    def debug(self, message: str):
        self.logger.debug(message)
