import asyncio
import logging
import struct
from typing import Optional

from onkyobridge.listener import ReceiverListener

DEFAULT_PORT = 60128

# eISCP frame: "ISCP" + header size + data size (both big-endian uint32)
# + version byte + 3 reserved bytes, followed by the ISCP message.
# The data itself looks like !1MVL28\r where 1 is the unit type (receiver)
# and MVL28 is command code MVL with hex argument 28 (volume 40).
ISCP_MAGIC = b"ISCP"
ISCP_HEADER = struct.Struct(">4sIIB3x")
ISCP_HEADER_SIZE = ISCP_HEADER.size
ISCP_VERSION = 0x01
ISCP_TERMINATORS = "\x1a\r\n"

QUERY = "QSTN"
DISCOVERY_QUERY = "ECNQSTN"

# Human readable command names mapped to their ISCP codes.
COMMANDS = {
    "system-power": "PWR",
    "master-volume": "MVL",
    "audio-muting": "AMT",
    "input-selector": "SLI",
}
COMMAND_NAMES = {code: name for name, code in COMMANDS.items()}

POWER_VALUES = {"on": "01", "standby": "00"}
MUTING_VALUES = {"on": "01", "off": "00", "toggle": "TG"}
VOLUME_STEP_VALUES = {"up": "UP", "down": "DOWN"}
VOLUME_MIN = 0
VOLUME_MAX = 100

# Input selector codes. Every code carries all of the aliases the receivers
# use for it, so a configured source like "bd" matches "dvd,bd,bd/dvd".
INPUTS = {
    "00": ("video1", "vcr/dvr", "stb/dvr"),
    "01": ("video2", "cbl/sat"),
    "02": ("video3", "game/tv", "game", "game1"),
    "03": ("video4", "aux1", "aux"),
    "04": ("video5", "aux2", "game2"),
    "05": ("video6", "pc"),
    "06": ("video7",),
    "07": ("hidden1", "extra1"),
    "08": ("hidden2", "extra2"),
    "09": ("hidden3", "extra3"),
    "10": ("dvd", "bd", "bd/dvd"),
    "11": ("strm-box",),
    "12": ("tv",),
    "20": ("tape-1", "tv/tape"),
    "21": ("tape2",),
    "22": ("phono",),
    "23": ("cd", "tv/cd"),
    "24": ("fm",),
    "25": ("am",),
    "26": ("tuner",),
    "27": ("music-server", "p4s", "dlna"),
    "28": ("internet-radio", "iradio-favorite"),
    "29": ("usb", "usb(front)"),
    "2A": ("usb(rear)",),
    "2B": ("network", "net"),
    "2C": ("usb(toggle)",),
    "2D": ("airplay",),
    "2E": ("bluetooth",),
    "30": ("multi-ch",),
    "31": ("xm",),
    "32": ("sirius",),
    "33": ("dab",),
    "40": ("universal-port",),
    "80": ("source",),
    "FF": ("off",),
}
INPUT_CODES = {alias: code for code, aliases in INPUTS.items() for alias in aliases}


class CommandError(ValueError):
    """Raised when a command cannot be translated to an ISCP message."""


class ProtocolError(Exception):
    """Raised when received data is not a valid eISCP message."""


class ReceiverInfo:
    """A receiver that answered the discovery broadcast."""

    def __init__(self, host: str, port: int, model: str, identifier: str):
        self.host = host
        self.port = port
        self.model = model
        self.identifier = identifier

    def __repr__(self):
        return f"ReceiverInfo({self.model} at {self.host}:{self.port}, id={self.identifier})"


def build_packet(message: str, unit: str = "1") -> bytes:
    """Wrap an ISCP message like 'MVLQSTN' into an eISCP frame."""
    data = f"!{unit}{message}\r".encode("ascii")
    return ISCP_HEADER.pack(ISCP_MAGIC, ISCP_HEADER_SIZE, len(data), ISCP_VERSION) + data


def parse_message(data: bytes) -> str:
    """Strip the start character, unit type and terminators from ISCP data.

    Returns the bare message, e.g. 'MVL28'.
    """
    try:
        text = data.decode("ascii")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Non-ascii message {data!r}") from e
    text = text.rstrip(ISCP_TERMINATORS)
    if len(text) < 5 or text[0] != "!":
        raise ProtocolError(f"Malformed message {text!r}")
    return text[2:]


def parse_packet(packet: bytes) -> str:
    """Decode one complete eISCP frame (e.g. a discovery datagram)."""
    if len(packet) < ISCP_HEADER_SIZE:
        raise ProtocolError(f"Short packet ({len(packet)} bytes)")
    magic, header_size, data_size, _ = ISCP_HEADER.unpack_from(packet)
    if magic != ISCP_MAGIC or header_size < ISCP_HEADER_SIZE:
        raise ProtocolError(f"Invalid eISCP header {packet[:ISCP_HEADER_SIZE]!r}")
    if len(packet) < header_size + data_size:
        raise ProtocolError("Truncated packet")
    return parse_message(packet[header_size:header_size + data_size])


def encode_command(command: str, verify: bool = False) -> str:
    """Translate 'name=value' into an ISCP message ('master-volume=40' -> 'MVL28').

    Anything that is not a name=value pair is treated as a raw ISCP message
    and sent unchanged, unless verify is set, in which case its code must be
    one of the known commands.
    """
    command = command.strip()
    if "=" not in command:
        if verify and command[:3].upper() not in COMMAND_NAMES:
            raise CommandError(f"Unknown raw command {command!r}")
        if len(command) < 3:
            raise CommandError(f"Raw command {command!r} is too short")
        return command
    name, value = (part.strip().lower() for part in command.split("=", 1))
    code = COMMANDS.get(name)
    if code is None:
        raise CommandError(f"Unknown command {name!r}")
    return code + _encode_value(name, value)


def _encode_value(name: str, value: str) -> str:
    if value == "query":
        return QUERY
    if name == "master-volume":
        if value in VOLUME_STEP_VALUES:
            return VOLUME_STEP_VALUES[value]
        try:
            level = int(value)
        except ValueError:
            raise CommandError(f"Invalid volume {value!r}") from None
        if not VOLUME_MIN <= level <= VOLUME_MAX:
            raise CommandError(f"Volume {level} out of range {VOLUME_MIN}-{VOLUME_MAX}")
        return f"{level:02X}"
    if name == "input-selector":
        if value in INPUT_CODES:
            return INPUT_CODES[value]
        if value.upper() in INPUTS:
            return value.upper()
        raise CommandError(f"Unknown input {value!r}")
    values = POWER_VALUES if name == "system-power" else MUTING_VALUES
    if value not in values:
        raise CommandError(f"Invalid value {value!r} for {name}")
    return values[value]


def decode_message(message: str) -> tuple[Optional[str], object]:
    """Decode a bare ISCP message into (command name, value).

    The command name is None for messages this library does not track;
    the receiver reports those as debug events.
    """
    code, value = message[:3].upper(), message[3:].strip()
    name = COMMAND_NAMES.get(code)
    # N/A is what the receiver answers for properties it can't report right now (e.g. in standby)
    if name is None or value.upper() == "N/A":
        return None, value
    if name == "master-volume":
        try:
            return name, int(value, 16)
        except ValueError:
            raise ProtocolError(f"Invalid volume value {value!r}") from None
    if name == "input-selector":
        aliases = INPUTS.get(value.upper())
        if aliases is None:
            raise ProtocolError(f"Unknown input code {value!r}")
        return name, ",".join(aliases)
    if name == "audio-muting":
        # Only 01 means muted; anything else the receiver reports is treated as unmuted
        return name, "on" if value.upper() == MUTING_VALUES["on"] else "off"
    for decoded, raw in POWER_VALUES.items():
        if raw == value.upper():
            return name, decoded
    raise ProtocolError(f"Invalid value {value!r} for {name}")


class ReceiverProtocol(asyncio.Protocol):
    """Stream protocol for one receiver connection.

    The same instance is reused across reconnections; received frames are
    decoded and dispatched to the callback one event per message.
    """

    _buffer: bytes
    _callback: ReceiverListener

    def __init__(self, callback: ReceiverListener):
        self._logger = logging.getLogger(__name__)
        self._callback = callback
        self._transport = None
        self._buffer = b""
        self.peer_name = None

    @property
    def transport(self):
        return self._transport

    def connection_made(self, transport):
        """Method from asyncio.Protocol"""
        self._transport = transport
        self._buffer = b""
        self.peer_name = transport.get_extra_info("peername")
        self._logger.info(f"Connection Made: {self.peer_name}")
        host = self.peer_name[0] if self.peer_name else ""
        self._callback.connected(host)

    def connection_lost(self, exc):
        """Method from asyncio.Protocol"""
        self._logger.info(f"Connection Lost: {self.peer_name} ({exc})")
        self._transport = None
        self._buffer = b""
        self._callback.disconnected()

    def data_received(self, data):
        """Method from asyncio.Protocol"""
        self._logger.debug(f"data_received client: {data}")
        self._buffer += data

        # A single read can hold several frames, or only part of one
        while self._buffer:
            start = self._buffer.find(ISCP_MAGIC)
            if start < 0:
                # Keep a possible partial magic at the end
                keep = len(ISCP_MAGIC) - 1
                if len(self._buffer) > keep:
                    self._discard(len(self._buffer) - keep)
                return
            if start > 0:
                self._discard(start)
            if len(self._buffer) < ISCP_HEADER_SIZE:
                return
            _, header_size, data_size, _ = ISCP_HEADER.unpack_from(self._buffer)
            if header_size < ISCP_HEADER_SIZE:
                self._callback.error(f"Invalid eISCP header size {header_size}")
                self._buffer = self._buffer[len(ISCP_MAGIC):]
                continue
            end = header_size + data_size
            if len(self._buffer) < end:
                return
            payload = self._buffer[header_size:end]
            self._buffer = self._buffer[end:]
            self._process_received_packet(payload)

    def _discard(self, count: int):
        self._callback.error(f"Discarding {count} bytes of unframed data: {self._buffer[:count]!r}")
        self._buffer = self._buffer[count:]

    def _process_received_packet(self, payload: bytes):
        try:
            message = parse_message(payload)
            name, value = decode_message(message)
        except ProtocolError as e:
            self._logger.error(f"RECV: Undecodable message {payload!r}: {e}")
            self._callback.error(f"Undecodable message {payload!r}: {e}")
            return

        self._logger.info(f"RECV: {message}")
        if name == "master-volume":
            self._callback.volume_changed(value)
        elif name == "input-selector":
            self._callback.input_changed(value)
        elif name == "system-power":
            self._callback.power_changed(value)
        elif name == "audio-muting":
            self._callback.mute_changed(value)
        else:
            self._callback.debug(f"Unhandled message: {message}")

    def write(self, message: str):
        """Frame and write an encoded ISCP message."""
        if self._transport is None:
            raise ConnectionError("Not connected")
        self._transport.write(build_packet(message))


class DiscoveryProtocol(asyncio.DatagramProtocol):
    """Broadcasts the ECNQSTN query and resolves with the first answer."""

    def __init__(self, future: asyncio.Future, port: int = DEFAULT_PORT):
        self._logger = logging.getLogger(__name__)
        self._future = future
        self._port = port

    def connection_made(self, transport):
        transport.sendto(build_packet(DISCOVERY_QUERY, unit="x"), ("255.255.255.255", self._port))

    def datagram_received(self, data, addr):
        try:
            message = parse_packet(data)
        except ProtocolError as e:
            self._logger.debug(f"Ignoring discovery reply from {addr}: {e}")
            return
        # ECN reply: model/port/region/identifier, e.g. ECNTX-NR609/60128/DX/0009B0123456
        if not message.startswith("ECN"):
            return
        parts = message[3:].split("/")
        if len(parts) < 4:
            self._logger.debug(f"Ignoring short discovery reply from {addr}: {message}")
            return
        try:
            port = int(parts[1])
        except ValueError:
            port = self._port
        if not self._future.done():
            self._future.set_result(ReceiverInfo(addr[0], port, parts[0], parts[3]))

    def error_received(self, exc):
        if not self._future.done():
            self._future.set_exception(exc)


async def discover(port: int = DEFAULT_PORT, timeout: float = 3.0) -> ReceiverInfo:
    """Find a receiver on the local network.

    Raises asyncio.TimeoutError if nothing answers within timeout.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()
    transport, _ = await loop.create_datagram_endpoint(
        lambda: DiscoveryProtocol(future, port),
        local_addr=("0.0.0.0", 0),
        allow_broadcast=True,
    )
    try:
        return await asyncio.wait_for(future, timeout)
    finally:
        transport.close()
