"""Network configuration components."""

import ipaddress
import logging
from typing import ClassVar, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from .base import OptionValue, UCISection, as_scalar
from .firewall import get_or_create_zone
from .store import UCIStore

logger = logging.getLogger(__name__)

# ARPHRD type of the HaLow monitor interface, reported as ethernet by the OS.
ARPHRD_MONITOR = 803


class NetworkDevice(UCISection):
    """Represents a network device configuration."""

    _package: ClassVar[str] = "network"
    _section_type: ClassVar[str] = "device"
    _list_fields: ClassVar[Tuple[str, ...]] = ("ports",)

    name: Optional[str] = None
    type: Optional[str] = None
    ports: List[str] = Field(default_factory=list)
    macaddr: Optional[str] = None
    ifname: Optional[str] = None
    vid: Optional[str] = None

    @property
    def is_bridge(self) -> bool:
        return self.type == "bridge"


class NetworkInterface(UCISection):
    """Represents a network interface configuration."""

    _package: ClassVar[str] = "network"
    _section_type: ClassVar[str] = "interface"
    _list_fields: ClassVar[Tuple[str, ...]] = ("ip6class",)

    device: Optional[str] = None
    proto: Optional[str] = None
    ipaddr: Optional[OptionValue] = None
    netmask: Optional[str] = None
    gateway: Optional[str] = None
    dns: Optional[OptionValue] = None
    master: Optional[str] = None
    ip6assign: Optional[str] = None
    ip6ifaceid: Optional[str] = None
    ip6class: List[str] = Field(default_factory=list)


class NetDevice(BaseModel):
    """A network device as enumerated by the operating system."""

    name: str
    type: str = "ethernet"
    mac: Optional[str] = None
    hwmodes: List[str] = Field(default_factory=list, description="Radio modes (wireless only)")
    arphrd: Optional[int] = Field(default=None, description="Kernel link type")


class EthernetPort(BaseModel):
    """An ethernet port that can be assigned to a network."""

    device: str
    builtin: bool = True
    role: str = "lan"


class EthernetPortInfo(BaseModel):
    """Which networks currently use the ethernet ports, and how."""

    eth_dhcp_network: Optional[str] = None
    eth_dhcp_port: Optional[str] = None
    eth_static_network: Optional[str] = None


def find_bridge(store: UCIStore, name: Optional[str]) -> Optional[NetworkDevice]:
    """Return the bridge device section named ``name``, if any."""
    if not name:
        return None
    for section in store.sections("network", "device"):
        if section.get_str("type") == "bridge" and section.get_str("name") == name:
            return NetworkDevice.from_section(section)
    return None


def get_network_interfaces(store: UCIStore) -> List[str]:
    """Names of all network interface sections."""
    return [s.name for s in store.sections("network", "interface")]


def get_network_devices(store: UCIStore, network: str) -> List[str]:
    """
    Devices carried by a network interface.

    The ports of its bridge if it uses one, otherwise its single device.
    Wireless interfaces are not included.
    """
    device = as_scalar(store.get("network", network, "device"))
    bridge = find_bridge(store, device)
    if bridge is not None:
        return list(bridge.ports)
    return [device] if device else []


def setup_network_iface(store: UCIStore, name: str) -> str:
    """Make sure a network interface section exists and has a firewall zone."""
    if store.get_section("network", name) is None:
        store.add("network", "interface", name)
        logger.debug("Created network interface %s", name)
    return get_or_create_zone(store, name)


def get_first_ipaddr_and_netmask(store: UCIStore, iface: str) -> Tuple[Optional[str], Optional[str]]:
    """
    First ipaddr/netmask of an interface.

    uci allows either ``ipaddr`` + ``netmask`` or a list of ``a.b.c.d/len``
    in ``ipaddr`` (netmask ignored). Both are reduced to the first form;
    additional addresses are ignored.
    """
    netmask = as_scalar(store.get("network", iface, "netmask"))
    ipaddr = as_scalar(store.get("network", iface, "ipaddr"))

    if ipaddr and "/" in ipaddr:
        ipaddr, prefix = ipaddr.split("/", 1)
        netmask = str(ipaddress.IPv4Network(f"0.0.0.0/{prefix}").netmask)

    return ipaddr, netmask


def get_first_ipaddr(store: UCIStore, iface: str) -> Optional[str]:
    return get_first_ipaddr_and_netmask(store, iface)[0]


def get_first_netmask(store: UCIStore, iface: str) -> Optional[str]:
    return get_first_ipaddr_and_netmask(store, iface)[1]


def get_ethernet_ports(builtin_ports: Iterable[EthernetPort], devices: Iterable[NetDevice]) -> List[EthernetPort]:
    """
    Merge the board's builtin ports with enumerated devices.

    Devices that aren't builtin (USB dongles, tethered phones) are given the
    ``wan`` role. Switch ports show up as vlan devices and are kept; the
    HaLow monitor interface is skipped.
    """
    ports: Dict[str, EthernetPort] = {}
    for port in builtin_ports:
        ports[port.device] = port.model_copy(update={"builtin": True})

    for device in devices:
        if device.type not in ("ethernet", "vlan") or device.arphrd == ARPHRD_MONITOR:
            continue
        if device.name not in ports:
            ports[device.name] = EthernetPort(device=device.name, builtin=False, role="wan")

    return list(ports.values())


def get_ethernet_static_ip(store: UCIStore, ports: Iterable[EthernetPort]) -> Optional[str]:
    """Static IP of a network using one of ``ports`` (builtin ports win)."""
    by_device = {p.device: p for p in ports}
    builtin_ips: List[Optional[str]] = []
    external_ips: List[Optional[str]] = []

    for section in store.sections("network", "interface"):
        if as_scalar(section.get("proto")) != "static":
            continue
        for device in get_network_devices(store, section.name):
            if device in by_device:
                target = builtin_ips if by_device[device].builtin else external_ips
                target.append(get_first_ipaddr(store, section.name))

    if builtin_ips:
        return builtin_ips[0]
    elif external_ips:
        return external_ips[0]
    return None


def read_ethernet_port_info(store: UCIStore, ports: Iterable[EthernetPort]) -> EthernetPortInfo:
    """Find the first DHCP-client and static networks that use an ethernet port."""
    port_names = {p.device for p in ports}
    info = EthernetPortInfo()

    for section in store.sections("network", "interface"):
        proto = as_scalar(section.get("proto"))
        for device in get_network_devices(store, section.name):
            if device not in port_names:
                continue
            if proto == "dhcp" and info.eth_dhcp_network is None:
                info.eth_dhcp_network = section.name
                info.eth_dhcp_port = device
            elif proto == "static" and info.eth_static_network is None:
                info.eth_static_network = section.name

    return info
