"""wrtmesh - HaLow EasyMesh topology reconciliation for OpenWrt UCI configuration."""

from .store import UCIStore, Section
from .ssh import SSHConnection
from .errors import (
    WrtMeshError,
    SectionNotFoundError,
    DuplicateSectionError,
    InvalidIPAddressError,
    BridgeValidationError,
    IntentError,
    PlanError,
)
from .network import NetworkDevice, NetworkInterface, NetDevice, EthernetPort
from .wireless import WirelessRadio, WirelessInterface
from .firewall import FirewallZone, FirewallForwarding, get_or_create_zone, get_or_create_forwarding
from .dhcp import DHCPSection, DnsmasqSection, setup_network_with_dnsmasq
from .bridge import BridgeConflict, validate_bridge
from .planner import DeviceRole, TrafficMode, MeshIntent, SectionInfo, TopologyPlanner, plan_topology
from .plan import PlanConfig, load_plan

__version__ = "0.1.0"

__all__ = [
    "UCIStore",
    "Section",
    "SSHConnection",
    # Errors
    "WrtMeshError",
    "SectionNotFoundError",
    "DuplicateSectionError",
    "InvalidIPAddressError",
    "BridgeValidationError",
    "IntentError",
    "PlanError",
    # Section views
    "NetworkDevice",
    "NetworkInterface",
    "NetDevice",
    "EthernetPort",
    "WirelessRadio",
    "WirelessInterface",
    "FirewallZone",
    "FirewallForwarding",
    "DHCPSection",
    "DnsmasqSection",
    # Reconciliation
    "get_or_create_zone",
    "get_or_create_forwarding",
    "setup_network_with_dnsmasq",
    "BridgeConflict",
    "validate_bridge",
    "DeviceRole",
    "TrafficMode",
    "MeshIntent",
    "SectionInfo",
    "TopologyPlanner",
    "plan_topology",
    "PlanConfig",
    "load_plan",
]
