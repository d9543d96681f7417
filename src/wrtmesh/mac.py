"""Generated MAC addresses.

Every address produced here starts with ``F2`` so it can be told apart from
hardware-assigned ones. The value stays clear of the sequence OpenWrt walks
when it derives addresses for extra wifi-ifaces from the Morse OUI
(0c, 0e, ...).
"""

import random
import re
from typing import Iterable, Optional

from .network import NetDevice

MAC_PREFIX = "F2"
# Radio mode reported by HaLow (802.11ah) devices.
HALOW_HWMODE = "ah"

_MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}(:[0-9A-Fa-f]{2}){5}$")


def get_random_mac(rng: Optional[random.Random] = None) -> str:
    """``F2`` followed by five random octets."""
    rng = rng or random.Random()
    return ":".join([MAC_PREFIX] + [f"{rng.randrange(256):02x}" for _ in range(5)])


def get_fake_morse_mac(devices: Iterable[NetDevice]) -> Optional[str]:
    """
    Bridge MAC derived from the HaLow radio's MAC.

    Keeps the last five octets of the first HaLow device that reports a
    well-formed MAC, so the bridge and the radio are recognisably related
    in topology views.

    Returns:
        The derived MAC, or None if no HaLow device has a valid MAC
    """
    for device in devices:
        if HALOW_HWMODE in device.hwmodes and device.mac and is_valid_mac(device.mac):
            return f"{MAC_PREFIX}:{device.mac[-14:].lower()}"
    return None


def is_valid_mac(mac: str) -> bool:
    return bool(_MAC_RE.match(mac))


def is_generated_mac(mac: Optional[str]) -> bool:
    """Whether ``mac`` was produced by this module."""
    return bool(mac) and is_valid_mac(mac) and mac.split(":", 1)[0].upper() == MAC_PREFIX  # type: ignore[union-attr]
