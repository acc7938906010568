"""onkyobridge Python Package

Bridges Onkyo/Pioneer receivers (eISCP) to host volume and source controls.
"""

from onkyobridge.bridge import ReceiverBridge
from onkyobridge.receiver import ConnectionOptions, OnkyoReceiver
from onkyobridge.registrar import SurfaceRegistrar

__all__ = ["ConnectionOptions", "OnkyoReceiver", "ReceiverBridge", "SurfaceRegistrar"]
