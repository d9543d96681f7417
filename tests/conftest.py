"""Shared fixtures: a stock OpenWrt config on a board with a HaLow radio."""

import copy
import random

import pytest

from wrtmesh.network import EthernetPort
from wrtmesh.store import UCIStore

STOCK_CONFIG = {
    "network": {
        "loopback": {
            ".type": "interface",
            "device": "lo",
            "proto": "static",
            "ipaddr": "127.0.0.1",
            "netmask": "255.0.0.0",
        },
        "cfg030f15": {
            ".type": "device",
            ".anonymous": True,
            "name": "br-lan",
            "type": "bridge",
            "ports": ["lan1", "lan2"],
        },
        "lan": {
            ".type": "interface",
            "device": "br-lan",
            "proto": "static",
            "ipaddr": "192.168.1.1",
            "netmask": "255.255.255.0",
        },
        "wan": {".type": "interface", "device": "wan", "proto": "dhcp"},
    },
    "wireless": {
        "radio0": {".type": "wifi-device", "type": "morse", "band": "s1g"},
        "radio1": {".type": "wifi-device", "type": "mac80211", "band": "2g"},
        "default_radio0": {
            ".type": "wifi-iface",
            "device": "radio0",
            "network": "lan",
            "mode": "ap",
            "ssid": "halow",
            "encryption": "sae",
            "key": "halowkey",
        },
        "default_radio1": {
            ".type": "wifi-iface",
            "device": "radio1",
            "network": "lan",
            "mode": "ap",
            "ssid": "OpenWrt",
            "encryption": "none",
        },
    },
    "firewall": {
        "cfg01e63d": {".type": "zone", ".anonymous": True, "name": "lan", "network": ["lan"],
                      "input": "ACCEPT", "output": "ACCEPT", "forward": "ACCEPT"},
        "cfg02dc81": {".type": "zone", ".anonymous": True, "name": "wan", "network": ["wan", "wan6"],
                      "input": "REJECT", "output": "ACCEPT", "forward": "REJECT", "masq": "1", "mtu_fix": "1"},
        "cfg03ad58": {".type": "forwarding", ".anonymous": True, "src": "lan", "dest": "wan"},
    },
    "dhcp": {
        "cfg01411c": {".type": "dnsmasq", ".anonymous": True, "domainneeded": "1", "local": "/lan/",
                      "domain": "lan"},
        "lan": {".type": "dhcp", "interface": "lan", "start": "100", "limit": "150", "leasetime": "12h"},
        "wan": {".type": "dhcp", "interface": "wan", "ignore": "1"},
    },
    "system": {
        "cfg01e48a": {".type": "system", ".anonymous": True, "hostname": "halow-gw"},
    },
}


@pytest.fixture
def stock_store():
    return UCIStore.from_dict(copy.deepcopy(STOCK_CONFIG))


@pytest.fixture
def empty_store():
    return UCIStore()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def two_ports():
    return [EthernetPort(device="lan1"), EthernetPort(device="lan2")]


@pytest.fixture
def three_ports():
    return [EthernetPort(device="lan1"), EthernetPort(device="lan2"), EthernetPort(device="wan", role="wan")]
