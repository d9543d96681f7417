"""Tests for generated MAC addresses."""

import random
import re

from wrtmesh.mac import get_fake_morse_mac, get_random_mac, is_generated_mac, is_valid_mac
from wrtmesh.network import NetDevice

MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}(:[0-9A-Fa-f]{2}){5}$")


def test_random_mac_format():
    """Test that random MACs are well formed and tagged."""
    rng = random.Random(99)
    for _ in range(200):
        mac = get_random_mac(rng)
        assert MAC_RE.match(mac)
        assert mac.split(":")[0] == "F2"
        assert is_generated_mac(mac)


def test_random_mac_reproducible():
    """Test that the same seed gives the same MAC."""
    assert get_random_mac(random.Random(5)) == get_random_mac(random.Random(5))


def test_fake_morse_mac():
    """Test deriving the bridge MAC from the HaLow radio."""
    devices = [
        NetDevice(name="eth0", mac="00:11:22:33:44:55"),
        NetDevice(name="phy1", type="wifi", mac="00:AA:BB:CC:DD:EE", hwmodes=["b", "g", "n"]),
        NetDevice(name="phy0", type="wifi", mac="0C:BF:74:01:02:AB", hwmodes=["ah"]),
    ]

    mac = get_fake_morse_mac(devices)

    assert mac == "F2:bf:74:01:02:ab"
    assert MAC_RE.match(mac)
    assert mac.split(":")[0] == "F2"


def test_fake_morse_mac_needs_halow_with_mac():
    """Test that there is no derived MAC without a HaLow radio reporting one."""
    assert get_fake_morse_mac([]) is None
    assert get_fake_morse_mac([NetDevice(name="phy0", type="wifi", hwmodes=["ah"])]) is None
    assert get_fake_morse_mac([NetDevice(name="phy1", type="wifi", mac="00:11:22:33:44:55", hwmodes=["n"])]) is None


def test_fake_morse_mac_skips_malformed():
    """Test that a HaLow radio with a malformed MAC is not used."""
    devices = [
        NetDevice(name="phy0", type="wifi", mac="aa:bb", hwmodes=["ah"]),
        NetDevice(name="phy2", type="wifi", mac="0C:BF:74:0G:02:AB", hwmodes=["ah"]),
        NetDevice(name="phy3", type="wifi", mac="0c:bf:74:09:08:07", hwmodes=["ah"]),
    ]

    assert get_fake_morse_mac(devices) == "F2:bf:74:09:08:07"
    assert get_fake_morse_mac(devices[:2]) is None


def test_mac_validation():
    """Test MAC syntax checks."""
    assert is_valid_mac("0c:bf:74:01:02:ab")
    assert not is_valid_mac("0c:bf:74:01:02")
    assert not is_valid_mac("0c-bf-74-01-02-ab")
    assert not is_generated_mac("0c:bf:74:01:02:ab")
    assert not is_generated_mac(None)
