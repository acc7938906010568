"""
Main command-line interface for onkyobridge.

This script runs the receiver bridge against in-process volume and source
controls, or performs a single control action and exits.
"""

import argparse
import asyncio
import logging

from onkyobridge.config import CONF_HOSTNAME, CONF_SOURCE, JsonConfigStore
from onkyobridge.receiver import ConnectionOptions
from onkyobridge.registrar import SurfaceRegistrar
from onkyobridge.surfaces import CompletedRequest, LocalControlService, LocalSettings, LoggingStatus


def build_registrar(args) -> SurfaceRegistrar:
    options = ConnectionOptions(
        reconnect_delay=args.reconnect_delay,
        verify_commands=args.verify_commands,
        send_delay=args.send_delay,
        port=args.port,
    )
    return SurfaceRegistrar(
        JsonConfigStore(args.config),
        LocalControlService("volume"),
        LocalControlService("source"),
        LoggingStatus(),
        options=options,
        settings_service=LocalSettings(),
    )


def apply_overrides(registrar: SurfaceRegistrar, host, source) -> bool:
    """Save --host/--source into the stored settings. Returns False if they are invalid."""
    if host is None and source is None:
        return True
    values = registrar.settings
    if host is not None:
        values[CONF_HOSTNAME] = host
    if source is not None:
        values[CONF_SOURCE] = source
    request = CompletedRequest()
    layout = registrar.save_settings(request, False, values)
    if layout["has_error"]:
        for field in layout["layout"]:
            if "error" in field:
                print(f"Error: {field['setting']}: {field['error']}")
        return False
    return True


async def wait_until_active(registrar: SurfaceRegistrar, timeout: float) -> bool:
    """Wait for the first connection to register the controls."""
    loop = asyncio.get_running_loop()
    start = loop.time()
    while loop.time() - start < timeout:
        if registrar.bridge is not None and registrar.bridge.active:
            return True
        await asyncio.sleep(0.1)
    return False


async def run(args):
    """Run the bridge until interrupted."""
    registrar = build_registrar(args)
    if not apply_overrides(registrar, args.host, args.source):
        return
    if registrar.receiver is None:
        registrar.start()
    try:
        await asyncio.Event().wait()
    finally:
        registrar.shutdown()


async def control(args):
    """Connect, perform one control action, and disconnect."""
    registrar = build_registrar(args)
    if not apply_overrides(registrar, args.host, args.source):
        return
    if registrar.receiver is None:
        registrar.start()

    hostname = registrar.settings[CONF_HOSTNAME] or "(auto detect)"
    print(f"Connecting to receiver {hostname}...")
    try:
        if not await wait_until_active(registrar, args.timeout):
            print("Error: receiver did not connect")
            return

        # Let the initial state queries come back
        await asyncio.sleep(1)
        bridge = registrar.bridge

        if args.command == "volume":
            request = bridge.volume_control.invoke("set_volume", "absolute", args.level)
        elif args.command == "mute":
            request = bridge.volume_control.invoke("set_mute", "toggle")
        elif args.command == "select":
            request = bridge.source_control.invoke("convenience_switch")
        elif args.command == "standby":
            request = bridge.source_control.invoke("standby")
        else:
            request = None

        if request is not None:
            print(f"{args.command}: {request.status}")
            # Wait for the command to be written and echoed
            await asyncio.sleep(1)

        volume = bridge.volume
        print("-" * 60)
        print(f"Receiver:  {registrar.receiver.host}")
        print(f"Power:     {bridge.power or 'unknown'}")
        print(f"Input:     {bridge.input or 'unknown'}")
        print(f"Volume:    {volume.value} (muted: {volume.muted})")
        print(f"Source:    {bridge.source.status} ({registrar.settings[CONF_SOURCE]})")
        print("-" * 60)
    finally:
        registrar.shutdown()


def main():
    parser = argparse.ArgumentParser(description="Onkyo/Pioneer receiver volume and source control bridge")
    parser.add_argument("--config", default="config.json", help="Settings file (default: config.json)")
    parser.add_argument("--host", help="Receiver hostname or IP, stored in the settings ('' to auto detect)")
    parser.add_argument("--source", help="Receiver input used for playback, stored in the settings (e.g. strm-box)")
    parser.add_argument("--port", type=int, default=60128, help="eISCP port (default: 60128)")
    parser.add_argument("--reconnect-delay", type=float, default=5, help="Seconds between connection attempts (default: 5)")
    parser.add_argument("--send-delay", type=int, default=0, help="Minimum milliseconds between commands (default: 0)")
    parser.add_argument("--verify-commands", action="store_true", help="Reject unknown raw commands")
    parser.add_argument("--timeout", type=float, default=15, help="Seconds to wait for a connection (default: 15)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("run", help="Run the bridge until interrupted")
    subparsers.add_parser("status", help="Show receiver power, input, volume and source status")

    volume_parser = subparsers.add_parser("volume", help="Set the volume")
    volume_parser.add_argument("level", type=int, help="Volume level (1-100)")

    subparsers.add_parser("mute", help="Toggle muting")
    subparsers.add_parser("select", help="Switch the receiver to the configured source")
    subparsers.add_parser("standby", help="Toggle between standby and the configured source")

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)

    try:
        if args.command in (None, "run"):
            asyncio.run(run(args))
        else:
            asyncio.run(control(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
