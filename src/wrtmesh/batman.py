"""batman-adv mesh devices.

batman-adv itself runs in the kernel; this only writes its netifd config:
a ``batadv`` interface (the mesh device, e.g. ``bat0``) and a
``batadv_hardif`` interface that attaches the HaLow wifi-iface to it.
"""

import logging
from typing import Optional

from .base import as_list
from .firewall import FirewallForwarding, zone_for_network
from .network import find_bridge
from .store import UCIStore

logger = logging.getLogger(__name__)

BATMAN_HARDIF_NAME = "batmesh0"
BATMAN_BRIDGE = "br-ahwlan"

BATMAN_DEVICE_OPTIONS = {
    "proto": "batadv",
    "routing_algo": "BATMAN_V",
    "bridge_loop_avoidance": "1",
    "hop_penalty": "30",
    "bonding": "1",
    "aggregated_ogms": "1",
    "ap_isolation": "0",
    "fragmentation": "1",
    "orig_interval": "1000",
    "distributed_arp_table": "1",
    "multicast_mode": "1",
    "network_coding": "1",
    "isolation_mark": "0x00000000/0x00000000",
}


def setup_batman_device_on_network(store: UCIStore, gw_mode: str = "client", device_name: str = "bat0") -> str:
    """Create or update the batman-adv mesh interface ``device_name``."""
    if store.get_section("network", device_name) is None:
        store.add("network", "interface", device_name)
        logger.debug("Created batman-adv interface %s", device_name)

    for option, value in BATMAN_DEVICE_OPTIONS.items():
        store.set("network", device_name, option, value)
    store.set("network", device_name, "gw_mode", gw_mode)

    return device_name


def _morse_device(store: UCIStore) -> Optional[str]:
    for section in store.sections("wireless", "wifi-device"):
        if section.get_str("type") == "morse":
            return section.name
    return None


def _allow_forwarding(store: UCIStore, src_network: str, dest_network: str) -> str:
    """Add a bare forwarding rule unless an enabled one exists. NAT and other rules are untouched."""
    src = zone_for_network(store, src_network) or src_network
    dest = zone_for_network(store, dest_network) or dest_network
    for section in store.sections("firewall", "forwarding"):
        rule = FirewallForwarding.from_section(section)
        if rule.src == src and rule.dest == dest and rule.is_enabled:
            return rule.section_name

    forwarding_id = store.add("firewall", "forwarding")
    store.set("firewall", forwarding_id, "src", src)
    store.set("firewall", forwarding_id, "dest", dest)
    logger.debug("Added forwarding %s -> %s", src, dest)
    return forwarding_id


def setup_batman_interface_on_device(store: UCIStore, device_name: str = "bat0") -> str:
    """
    Attach the HaLow interface to the batman-adv device.

    Adds ``device_name`` to the ``br-ahwlan`` bridge, moves the HaLow
    wifi-iface onto the hard interface, turns off 802.11s forwarding and
    lets the mesh reach the lan.

    Returns:
        Name of the hard interface section
    """
    for section in store.sections("network", "interface"):
        if section.get_str("proto") == "batadv_hardif" and section.get_str("master") == device_name:
            return section.name

    store.add("network", "interface", BATMAN_HARDIF_NAME)
    store.set("network", BATMAN_HARDIF_NAME, "proto", "batadv_hardif")
    store.set("network", BATMAN_HARDIF_NAME, "master", device_name)

    bridge = find_bridge(store, BATMAN_BRIDGE)
    if bridge is not None:
        ports = as_list(bridge.ports)
        if device_name not in ports:
            ports.append(device_name)
        store.set("network", bridge.section_name, "ports", ports)
        # Helps multicast over batman-adv.
        store.set("network", bridge.section_name, "igmp_snooping", "1")

    morse_device = _morse_device(store)
    if morse_device is not None:
        morse_iface = f"default_{morse_device}"
        if store.get_section("wireless", morse_iface) is not None:
            store.set("wireless", morse_iface, "network", BATMAN_HARDIF_NAME)

    store.ensure_section("mesh11sd", "mesh11sd", "mesh_params")
    store.set("mesh11sd", "mesh_params", "mesh_fwding", "0")

    # Clients need a resolver that works across the mesh.
    if store.get_section("network", "lan") is not None:
        store.set("network", "lan", "dns", "1.1.1.1")

    _allow_forwarding(store, "ahwlan", "lan")
    logger.debug("Attached %s to batman-adv device %s", BATMAN_HARDIF_NAME, device_name)

    return BATMAN_HARDIF_NAME
