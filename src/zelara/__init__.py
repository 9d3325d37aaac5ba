"""Zelara - link the phone to the Desktop and keep score."""

from .config import Settings, load_settings
from .link import DeviceLinkingClient
from .pairing import PairingInfo, parse_pairing_uri
from .progress import ProgressStore

__version__ = "0.1.0"

__all__ = ["DeviceLinkingClient", "PairingInfo", "ProgressStore", "Settings", "load_settings", "parse_pairing_uri"]
