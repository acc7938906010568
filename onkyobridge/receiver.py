"""Onkyo/Pioneer receiver link - one eISCP session with reconnection.

This module contains the connection side of the bridge:
- Connecting to a configured host, or auto-detecting one via broadcast
- Reconnecting forever (until closed) after failures or connection loss
- Serializing outbound commands through a single worker task
- Fanning decoded events out to registered listeners

Sends are fire-and-forget; nothing here waits for the receiver to confirm
a command, and nothing here re-queries receiver state after a reconnect."""

import asyncio
import logging
import time
from asyncio import Queue, Task
from typing import Any, Optional

from onkyobridge.listener import MultiplexingListener, ReceiverListener
from onkyobridge.protocol import (
    DEFAULT_PORT,
    CommandError,
    ReceiverInfo,
    ReceiverProtocol,
    discover,
    encode_command,
)


class ConnectionOptions:
    """Connection settings for OnkyoReceiver."""

    def __init__(self, auto_reconnect=True, reconnect_delay=5, verify_commands=False,
                 send_delay=0, port=DEFAULT_PORT, discovery_timeout=3.0):
        """
        Args:
            auto_reconnect: Keep retrying after failures and connection loss
            reconnect_delay: Seconds between connection attempts
            verify_commands: Reject raw commands that are not known ISCP commands
            send_delay: Minimum milliseconds between two writes
            port: eISCP TCP port used when the hostname is configured
            discovery_timeout: Seconds to wait for a discovery reply
        """
        self.auto_reconnect = auto_reconnect
        self.reconnect_delay = reconnect_delay
        self.verify_commands = verify_commands
        self.send_delay = send_delay
        self.port = port
        self.discovery_timeout = discovery_timeout


class LinkListener(ReceiverListener):
    """Forwards connection lifecycle events to the receiver link."""

    def __init__(self, receiver):
        self._receiver = receiver

    def connected(self, host: str):
        self._receiver._on_connected(host)

    def disconnected(self):
        self._receiver._on_disconnected()

    def volume_changed(self, volume: int):
        pass

    def input_changed(self, names: str):
        pass

    def power_changed(self, power: str):
        pass

    def mute_changed(self, mute: str):
        pass


class OnkyoReceiver:
    """Device link to a single receiver."""

    def __init__(self, options: Optional[ConnectionOptions] = None):
        self._options = options or ConnectionOptions()
        self._logger = logging.getLogger(__name__)

        self._hostname: str = ""
        self._host: Optional[str] = None
        self._connected = False
        self._reconnect = False
        self._closed = False
        self.info: Optional[ReceiverInfo] = None

        # Tasks
        self._connect_task: Optional[Task[Any]] = None
        self._command_worker_task: Optional[Task[Any]] = None

        # Queue to serialize commands and enforce the send delay
        self._command_queue: Queue = Queue()
        self._last_send_timestamp: float = 0.0

        # Create multiplexing listener for external listeners
        self._multiplex_callback = MultiplexingListener()

        # Internal listener first, so link state is updated before anyone else hears about it
        self._link_listener = LinkListener(self)
        self._multiplex_callback.register_listener(self._link_listener)

        self._protocol = ReceiverProtocol(self._multiplex_callback)

    # ========== Public API ==========

    @property
    def hostname(self) -> str:
        """Configured hostname, empty for auto-detect."""
        return self._hostname

    @property
    def host(self) -> Optional[str]:
        """Address of the connected receiver."""
        return self._host

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def options(self) -> ConnectionOptions:
        return self._options

    def register_listener(self, listener: ReceiverListener):
        """Register external listener for receiver events."""
        self._multiplex_callback.register_listener(listener)

    def unregister_listener(self, listener: ReceiverListener):
        """Unregister external listener."""
        self._multiplex_callback.unregister_listener(listener)

    def connect(self, hostname: str = ""):
        """Start connecting in the background; returns immediately.

        An empty hostname auto-detects the receiver. Failures are reported
        as error events and retried every reconnect_delay seconds until
        close() is called.
        """
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        self._hostname = hostname or ""
        self._closed = False
        self._reconnect = self._options.auto_reconnect
        self._logger.info(f"Connecting to receiver {self._hostname or '(auto detect)'}")
        self._connect_task = asyncio.get_running_loop().create_task(self._connect_loop(initial=True))

    def close(self):
        """Close the connection and stop reconnection attempts."""
        self._closed = True
        self._reconnect = False
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        self._connect_task = None
        self._stop_command_worker()
        if self._protocol.transport is not None:
            self._protocol.transport.close()

    def send(self, command: str):
        """Queue a command like 'master-volume=40'; never waits for the receiver."""
        try:
            message = encode_command(command, verify=self._options.verify_commands)
        except CommandError as e:
            self._report_error(f"Invalid command {command!r}: {e}")
            return
        if not self._connected:
            self._report_error(f"Not connected, dropping command {command!r}")
            return
        if self._command_worker_task is None or self._command_worker_task.done():
            self._command_worker_task = asyncio.get_running_loop().create_task(self._command_worker())
        self._logger.info(f"QUEUE: {command} ({message})")
        self._command_queue.put_nowait(message)

    # ========== Connection lifecycle ==========

    async def _async_connect(self):
        host, port = self._hostname, self._options.port
        if not host:
            self._multiplex_callback.debug("Discovering receiver...")
            self.info = await discover(self._options.port, self._options.discovery_timeout)
            self._logger.info(f"Discovered {self.info}")
            host, port = self.info.host, self.info.port
        loop = asyncio.get_running_loop()
        await loop.create_connection(lambda: self._protocol, host=host, port=port)

    async def _connect_loop(self, initial: bool = False):
        """Connect, then keep retrying while reconnection is enabled."""
        try:
            if not initial:
                await asyncio.sleep(self._options.reconnect_delay)
            while not self._connected and not self._closed:
                try:
                    await self._async_connect()
                except Exception as e:
                    target = self._hostname or "auto-detected receiver"
                    self._report_error(f"Connection to {target} failed: {e!r}")
                if self._connected or not self._reconnect:
                    return
                self._logger.warning(f"Retrying connection in {self._options.reconnect_delay} seconds")
                await asyncio.sleep(self._options.reconnect_delay)
        except asyncio.CancelledError:
            self._logger.debug("Connect task cancelled")
            raise

    def _on_connected(self, host: str):
        self._connected = True
        self._host = host
        self._logger.info(f"Connected to receiver at {host}")

    def _on_disconnected(self):
        self._connected = False
        self._stop_command_worker()
        disconnected_message = f"Disconnected from {self._host}"
        if self._reconnect and not self._closed:
            self._logger.error(
                f"{disconnected_message}, will try to reconnect in {self._options.reconnect_delay} seconds"
            )
            # A connect loop that is still running picks the retry up itself
            if self._connect_task is None or self._connect_task.done():
                self._connect_task = asyncio.get_running_loop().create_task(self._connect_loop())
        else:
            # Only info in here as close has been called.
            self._logger.info(f"{disconnected_message}, not reconnecting")

    def _report_error(self, message: str):
        self._logger.warning(message)
        self._multiplex_callback.error(message)

    # ========== Command worker ==========

    def _stop_command_worker(self):
        if self._command_worker_task is not None and not self._command_worker_task.done():
            self._command_worker_task.cancel()
        self._command_worker_task = None
        # Commands are not carried over to the next connection
        while not self._command_queue.empty():
            self._command_queue.get_nowait()
            self._command_queue.task_done()

    async def _command_worker(self):
        """Worker task that writes queued commands in order."""
        while True:
            try:
                message = await self._command_queue.get()
                try:
                    send_delay_seconds = self._options.send_delay / 1000
                    time_since_last_send = time.monotonic() - self._last_send_timestamp
                    if time_since_last_send < send_delay_seconds:
                        await asyncio.sleep(send_delay_seconds - time_since_last_send)

                    if self._connected and self._protocol.transport is not None:
                        self._protocol.write(message)
                        self._logger.info(f"SEND: {message}")
                    else:
                        self._report_error(f"SEND FAILED: {message} - not connected")
                    self._last_send_timestamp = time.monotonic()
                except OSError as e:
                    self._report_error(f"Error sending {message}: {e}")
                finally:
                    self._command_queue.task_done()
            except asyncio.CancelledError:
                self._logger.debug("Command worker cancelled")
                break
