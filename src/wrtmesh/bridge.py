"""Bridge devices for network interfaces.

A network interface gets a bridge device when it has to carry more than one
datapath (ethernet ports, or wifi-ifaces, some of which create several
netdevs). Bridges are added and removed conservatively: only when the
current state disagrees with what the interface needs, and never when
removing one would be ambiguous.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field

from .base import as_scalar
from .errors import BridgeValidationError
from .network import find_bridge, get_network_devices
from .store import UCIStore
from .wireless import WirelessInterface, get_network_wifi_ifaces, get_radio_types

logger = logging.getLogger(__name__)

BRIDGED_NON_WDS_CLIENT_ERROR_TEMPLATE = """\
The configuration for the "{network}" network is not supported.

If a network has a non-WDS Wi-Fi client, it must be the only device.

This network currently has non-WDS Wi-Fi clients: {clients}

This network currently has other devices: {others}

Please do one of:
 - remove the non-WDS Wi-Fi clients;
 - enable WDS for the Wi-Fi clients (if possible); or
 - remove all other devices from this network to leave a single non-WDS Wi-Fi client.
"""


class BridgedPort(BaseModel):
    """A port of a bridge device."""

    name: str

    def describe(self) -> str:
        return f'A "{self.name}" port'


class BridgedWifi(BaseModel):
    """A wifi-iface that ends up in a bridge."""

    section: str
    device_type: str = "unknown"
    mode: Optional[str] = None
    ssid: Optional[str] = None

    def describe(self) -> str:
        return f'A {self.device_type} Wi-Fi device in "{self.mode}" mode with SSID "{self.ssid}"'


class BridgeConflict(BaseModel):
    """A bridge that mixes non-WDS Wi-Fi clients with other devices."""

    network: str
    non_wds_clients: List[BridgedWifi] = Field(default_factory=list)
    other_devices: List[Union[BridgedPort, BridgedWifi]] = Field(default_factory=list)

    def format_message(self) -> str:
        """Human readable description, for display to the user."""
        def bullets(items: Sequence[Union[BridgedPort, BridgedWifi]]) -> str:
            return "\n - ".join([""] + [item.describe() for item in items])

        return BRIDGED_NON_WDS_CLIENT_ERROR_TEMPLATE.format(
            network=self.network,
            clients=bullets(self.non_wds_clients),
            others=bullets(self.other_devices),
        )


def has_multiple_devices(store: UCIStore, network: str) -> bool:
    """
    Report whether several devices will appear on ``network`` (bridge required).

    Unlike ``get_network_devices`` this counts wifi-ifaces, and counts twice
    the ones that generate multiple netdevs (WDS APs, mesh).
    """
    count = len(get_network_devices(store, network))
    for iface in get_network_wifi_ifaces(store, network):
        count += iface.datapath_count
    return count > 1


def force_bridge(store: UCIStore, network: str, bridge_name: str, mac: Optional[str] = None) -> None:
    """Put ``network`` on the bridge ``bridge_name``, creating or stealing it as needed."""
    current_device = as_scalar(store.get("network", network, "device"))
    bridge = find_bridge(store, bridge_name)

    if bridge is None:
        bridge_id = store.add("network", "device")
        store.set("network", bridge_id, "name", bridge_name)
        store.set("network", bridge_id, "type", "bridge")
        if mac:
            store.set("network", bridge_id, "macaddr", mac)
        logger.debug("Created bridge %s for %s", bridge_name, network)
    else:
        bridge_id = bridge.section_name
        for iface in store.sections("network", "interface"):
            if as_scalar(iface.get("device")) == bridge_name and iface.name != network:
                store.unset("network", iface.name, "device")
                logger.debug("Detached bridge %s from %s", bridge_name, iface.name)
        if mac:
            store.set("network", bridge_id, "macaddr", mac)

    if current_device == bridge_name:
        return

    # Move the ports of whatever bridge the network was on.
    existing = find_bridge(store, current_device)
    if existing is not None:
        store.unset("network", network, "device")
        if existing.ports:
            store.set("network", bridge_id, "ports", existing.ports)
        store.unset("network", existing.section_name, "ports")

    store.set("network", network, "device", bridge_name)


def set_bridge_with_ports(store: UCIStore, network: str, ports: Sequence[str]) -> str:
    """
    Put ``network`` on a bridge with ``ports`` and return the bridge name.

    An existing bridge only has its ports replaced, and only with a non-empty
    list. Otherwise ``br-<network>`` (or ``br-<network>N``) is created, or
    reused if a bridge of that name exists but no interface points at it.
    """
    current_device = as_scalar(store.get("network", network, "device"))
    existing = find_bridge(store, current_device)
    if existing is not None:
        if ports:
            store.set("network", existing.section_name, "ports", list(ports))
        return existing.name  # type: ignore[return-value]

    name_prefix = f"br-{network}"
    proposed_name, i = name_prefix, 0
    used = {as_scalar(s.get("device")) for s in store.sections("network", "interface")}

    while True:
        existing_device = next(
            (s for s in store.sections("network", "device") if s.get_str("name") == proposed_name), None
        )
        if existing_device is None:
            bridge_id = store.add("network", "device")
            store.set("network", bridge_id, "name", proposed_name)
            store.set("network", bridge_id, "type", "bridge")
            logger.debug("Created bridge %s for %s", proposed_name, network)
            break
        elif proposed_name not in used:
            bridge_id = existing_device.name
            logger.debug("Reusing unused bridge %s for %s", proposed_name, network)
            break

        i += 1
        proposed_name = f"{name_prefix}{i}"

    if ports:
        store.set("network", bridge_id, "ports", list(ports))

    store.set("network", network, "device", proposed_name)
    return proposed_name


def set_network_devices(store: UCIStore, network: str, devices: Sequence[str]) -> None:
    """Set the devices of a network, creating a bridge if necessary."""
    device = as_scalar(store.get("network", network, "device"))
    device_section = next(
        (s for s in store.sections("network", "device") if device and s.get_str("name") == device), None
    )

    if device_section is not None and device_section.get_str("type") == "bridge":
        store.set("network", device_section.name, "ports", list(devices))
    elif len(devices) == 1:
        store.set("network", network, "device", devices[0])
    elif len(devices) > 1:
        set_bridge_with_ports(store, network, devices)


def create_or_remove_bridge_as_needed(store: UCIStore, network: str) -> None:
    """
    Add a bridge to ``network`` if it needs one, or drop one it can't have.

    Only a bridge whose sole remaining member is a non-WDS client is dropped.
    With anything else left on it, removal isn't safe and validation is left
    to flag the problem.
    """
    current_device = as_scalar(store.get("network", network, "device"))
    has_bridge = find_bridge(store, current_device) is not None
    need_bridge = has_multiple_devices(store, network)

    if has_bridge and not need_bridge:
        # has_multiple_devices() being false leaves at most one wifi-iface.
        wifi_ifaces = get_network_wifi_ifaces(store, network)
        if len(wifi_ifaces) == 1 and wifi_ifaces[0].is_non_wds_client:
            store.unset("network", network, "device")
            logger.debug("Dropped bridge %s from %s", current_device, network)
    elif not has_bridge and need_bridge:
        set_bridge_with_ports(store, network, [current_device] if current_device else [])


def _bridged_wifi(iface: WirelessInterface, radio_types: Mapping[str, str]) -> BridgedWifi:
    return BridgedWifi(
        section=iface.section_name,
        device_type=radio_types.get(iface.device or "", "unknown"),
        mode=iface.mode,
        ssid=iface.ssid,
    )


def find_bridge_conflict(
    store: UCIStore, network: str, wifi_device_types: Optional[Mapping[str, str]] = None
) -> Optional[BridgeConflict]:
    """
    Check that a non-WDS Wi-Fi client on a bridge is its only member.

    Args:
        store: Staged configuration
        network: Network interface to check
        wifi_device_types: Radio type per wifi-device name; read from the
            store when not given

    Returns:
        The conflict, or None if the bridge (or lack of one) is fine
    """
    current_device = as_scalar(store.get("network", network, "device"))
    bridge = find_bridge(store, current_device)
    if bridge is None:
        return None

    wifi_ifaces = get_network_wifi_ifaces(store, network)
    clients = [i for i in wifi_ifaces if i.is_non_wds_client]
    if not clients:
        return None

    radio_types: Dict[str, str] = dict(wifi_device_types if wifi_device_types is not None else get_radio_types(store))
    others: List[Union[BridgedPort, BridgedWifi]] = [BridgedPort(name=p) for p in bridge.ports]
    others.extend(_bridged_wifi(i, radio_types) for i in wifi_ifaces if not i.is_non_wds_client)

    if not others and len(clients) == 1:
        return None

    return BridgeConflict(
        network=network,
        non_wds_clients=[_bridged_wifi(i, radio_types) for i in clients],
        other_devices=others,
    )


def validate_bridge(
    store: UCIStore, network: str, wifi_device_types: Optional[Mapping[str, str]] = None
) -> None:
    """Raise ``BridgeValidationError`` if ``network``'s bridge has a conflict."""
    conflict = find_bridge_conflict(store, network, wifi_device_types)
    if conflict is not None:
        raise BridgeValidationError(conflict)
