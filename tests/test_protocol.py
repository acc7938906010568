import asyncio
import struct

import pytest

from onkyobridge.config import SUGGESTED_SOURCES
from onkyobridge.protocol import (
    CommandError,
    DiscoveryProtocol,
    ProtocolError,
    ReceiverProtocol,
    build_packet,
    decode_message,
    encode_command,
    parse_packet,
)
from tests.fakes import RecordingListener


class FakeTransport:

    def __init__(self, peername=("192.168.1.20", 60128)):
        self.peername = peername
        self.written = []
        self.closed = False

    def get_extra_info(self, name, default=None):
        return self.peername if name == "peername" else default

    def write(self, data):
        self.written.append(data)

    def close(self):
        self.closed = True


def test_build_packet_layout():
    packet = build_packet("PWRQSTN")
    magic, header_size, data_size, version = struct.unpack(">4sIIB", packet[:13])
    assert magic == b"ISCP"
    assert header_size == 16
    assert version == 1
    assert packet[13:16] == b"\x00\x00\x00"
    assert packet[16:] == b"!1PWRQSTN\r"
    assert data_size == len(b"!1PWRQSTN\r")


def test_parse_packet_strips_terminators():
    data = b"!1MVL28\x1a\r\n"
    packet = struct.pack(">4sIIB3x", b"ISCP", 16, len(data), 1) + data
    assert parse_packet(packet) == "MVL28"


def test_parse_packet_rejects_bad_magic():
    with pytest.raises(ProtocolError):
        parse_packet(b"XXXX" + build_packet("PWR01")[4:])


@pytest.mark.parametrize(
    "command, message",
    [
        ("master-volume=40", "MVL28"),
        ("master-volume=100", "MVL64"),
        ("master-volume=query", "MVLQSTN"),
        ("master-volume=up", "MVLUP"),
        ("system-power=on", "PWR01"),
        ("system-power=standby", "PWR00"),
        ("audio-muting=toggle", "AMTTG"),
        ("audio-muting=query", "AMTQSTN"),
        ("input-selector=strm-box", "SLI11"),
        ("input-selector=bd/dvd", "SLI10"),
        ("input-selector=bd", "SLI10"),
        ("input-selector=dvd", "SLI10"),
        ("input-selector=net", "SLI2B"),
        ("input-selector=query", "SLIQSTN"),
        (" Input-Selector = STRM-BOX ", "SLI11"),
    ],
)
def test_encode_command(command, message):
    assert encode_command(command) == message


@pytest.mark.parametrize(
    "command",
    [
        "master-volume=101",
        "master-volume=loud",
        "system-power=sleep",
        "input-selector=nothing",
        "tone-front=up",
    ],
)
def test_encode_command_rejects_invalid(command):
    with pytest.raises(CommandError):
        encode_command(command)


@pytest.mark.parametrize("source", SUGGESTED_SOURCES)
def test_suggested_sources_are_known_inputs(source):
    message = encode_command(f"input-selector={source}")
    _, names = decode_message(message)
    assert source in names.split(",")


def test_raw_commands_pass_through_unless_verified():
    assert encode_command("NRIQSTN") == "NRIQSTN"
    assert encode_command("PWRQSTN", verify=True) == "PWRQSTN"
    with pytest.raises(CommandError):
        encode_command("NRIQSTN", verify=True)


@pytest.mark.parametrize(
    "message, expected",
    [
        ("MVL28", ("master-volume", 40)),
        ("MVL00", ("master-volume", 0)),
        ("PWR01", ("system-power", "on")),
        ("PWR00", ("system-power", "standby")),
        ("AMT01", ("audio-muting", "on")),
        ("AMT00", ("audio-muting", "off")),
        ("AMT02", ("audio-muting", "off")),
        ("SLI11", ("input-selector", "strm-box")),
        ("SLI10", ("input-selector", "dvd,bd,bd/dvd")),
        ("MVLN/A", (None, "N/A")),
        ("NRI<xml/>", (None, "<xml/>")),
    ],
)
def test_decode_message(message, expected):
    assert decode_message(message) == expected


@pytest.mark.parametrize("message", ["MVLZZ", "PWR07", "SLI99"])
def test_decode_message_rejects_bad_values(message):
    with pytest.raises(ProtocolError):
        decode_message(message)


@pytest.fixture
def protocol():
    listener = RecordingListener()
    protocol = ReceiverProtocol(listener)
    protocol.connection_made(FakeTransport())
    listener.events.clear()
    return protocol, listener


def test_connection_made_reports_peer_host():
    listener = RecordingListener()
    ReceiverProtocol(listener).connection_made(FakeTransport())
    assert listener.events == [("connected", "192.168.1.20")]


def test_connection_lost_reports_disconnect(protocol):
    protocol, listener = protocol
    protocol.connection_lost(None)
    assert listener.events == [("disconnected", None)]
    assert protocol.transport is None


def test_several_frames_in_one_read(protocol):
    protocol, listener = protocol
    protocol.data_received(build_packet("MVL14") + build_packet("AMT01") + build_packet("PWR00"))
    assert listener.events == [("volume", 20), ("mute", "on"), ("power", "standby")]


def test_frame_split_across_reads(protocol):
    protocol, listener = protocol
    packet = build_packet("SLI11")
    protocol.data_received(packet[:3])
    protocol.data_received(packet[3:20])
    assert listener.events == []
    protocol.data_received(packet[20:])
    assert listener.events == [("input", "strm-box")]


def test_garbage_before_frame_is_reported_and_skipped(protocol):
    protocol, listener = protocol
    protocol.data_received(b"junk" + build_packet("MVL0A"))
    assert listener.kinds() == ["error", "volume"]
    assert listener.events[-1] == ("volume", 10)


def test_undecodable_message_is_an_error_event(protocol):
    protocol, listener = protocol
    protocol.data_received(build_packet("MVLZZ") + build_packet("PWR01"))
    assert listener.kinds() == ["error", "power"]


def test_unknown_message_is_a_debug_event(protocol):
    protocol, listener = protocol
    protocol.data_received(build_packet("NLSC-P"))
    assert listener.events == [("debug", "Unhandled message: NLSC-P")]


def test_write_frames_message(protocol):
    protocol, _ = protocol
    protocol.write("AMTTG")
    assert protocol.transport.written == [build_packet("AMTTG")]


def test_write_without_connection_raises():
    protocol = ReceiverProtocol(RecordingListener())
    with pytest.raises(ConnectionError):
        protocol.write("PWR01")


def test_discovery_resolves_with_first_reply():
    async def scenario():
        future = asyncio.get_running_loop().create_future()
        discovery = DiscoveryProtocol(future)
        discovery.datagram_received(b"not a packet", ("192.168.1.5", 60128))
        discovery.datagram_received(build_packet("ECNTX-NR609/60129/DX/0009B0123456"), ("192.168.1.20", 60128))
        discovery.datagram_received(build_packet("ECNTX-NR509/60128/DX/0009B0654321"), ("192.168.1.21", 60128))
        return await future

    info = asyncio.run(scenario())
    assert info.host == "192.168.1.20"
    assert info.port == 60129
    assert info.model == "TX-NR609"
    assert info.identifier == "0009B0123456"


def test_discovery_sends_broadcast_query():
    async def scenario():
        future = asyncio.get_running_loop().create_future()
        transport = SentDatagrams()
        DiscoveryProtocol(future).connection_made(transport)
        return transport.sent

    sent = asyncio.run(scenario())
    assert sent == [(build_packet("ECNQSTN", unit="x"), ("255.255.255.255", 60128))]


class SentDatagrams:

    def __init__(self):
        self.sent = []

    def sendto(self, data, addr):
        self.sent.append((data, addr))
