"""EasyMesh topology planner.

Turns the three choices a user makes about a HaLow EasyMesh device (role,
uplink, traffic mode) into config: prplmesh role, Multi-AP wireless
settings, which networks the ethernet ports and wifi-ifaces sit on,
forwarding, and DHCP/DNS service.

Networks used:
    ahwlan  the HaLow side, always on the ``br-prpl`` bridge
    lan     the non-HaLow side
    wan     the ethernet uplink when there is more than one port
"""

import logging
import random
import re
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator

from .base import as_list, as_scalar
from .bridge import create_or_remove_bridge_as_needed, force_bridge, set_network_devices, validate_bridge
from .dhcp import MESH_NETWORK, setup_network_with_dnsmasq
from .errors import IntentError
from .firewall import FirewallForwarding, get_or_create_forwarding, get_or_create_zone, zone_for_network
from .mac import get_fake_morse_mac, get_random_mac
from .network import (
    EthernetPort,
    NetDevice,
    find_bridge,
    get_ethernet_ports,
    get_first_ipaddr,
    read_ethernet_port_info,
    setup_network_iface,
)
from .store import UCIStore
from .wireless import get_default_ssid, get_default_wifi_key

logger = logging.getLogger(__name__)

LAN_NETWORK = "lan"
WAN_NETWORK = "wan"
PRPL_BRIDGE = "br-prpl"
PRPL_HOSTAP_IFNAME = "wlan-prpl"
PRPL_STA_IFNAME = "wlan-prpl-1"

DEFAULT_LAN_IP = "192.168.1.1"
DEFAULT_WLAN_IP = "10.42.0.1"
LAN_NETMASK = "255.255.255.0"

_UPLINK_RE = re.compile(r"^(none|ethernet(-.+)?|wifi-.+)$")


class DeviceRole(str, Enum):
    CONTROLLER = "controller"
    AGENT = "agent"


class TrafficMode(str, Enum):
    """How an agent connects its non-HaLow side."""

    NONE = "none"
    BRIDGE = "bridge"
    EXTENDER = "extender"


class MeshIntent(BaseModel):
    """What the user asked for."""

    role: Optional[DeviceRole] = None
    uplink: Optional[str] = Field(
        default=None, description="none, ethernet, ethernet-<port> or wifi-<sta section> (controller)"
    )
    traffic_mode: Optional[TrafficMode] = Field(default=None, description="Agent traffic mode")
    ssid: Optional[str] = Field(default=None, description="EasyMesh SSID (controller)")
    key: Optional[str] = Field(default=None, description="EasyMesh passphrase (controller)")
    uplink_ssid: Optional[str] = None
    uplink_encryption: Optional[str] = None
    uplink_key: Optional[str] = None

    @field_validator("uplink")
    @classmethod
    def _check_uplink(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _UPLINK_RE.match(value):
            raise ValueError(f"Unknown uplink '{value}'")
        return value


class WifiDevice(BaseModel):
    """A non-HaLow radio and the AP/STA sections that belong to it."""

    name: str
    ap_interface_name: str
    sta_interface_name: str
    band: Optional[str] = None


class SectionInfo(BaseModel):
    """Names of the wireless sections the planner manages."""

    wifi_devices: List[WifiDevice] = Field(default_factory=list)
    morse_device_name: str
    morse_interface_name: str
    morse_backhaul_sta_name: str
    lan_ip: str = DEFAULT_LAN_IP
    wlan_ip: str = DEFAULT_WLAN_IP

    @classmethod
    def from_store(cls, store: UCIStore) -> "SectionInfo":
        """
        Derive section names from the wireless config.

        The HaLow radio is the ``morse`` wifi-device; every other radio gets
        an AP (``default_<radio>``) and a STA (``sta_<radio>``).
        """
        morse_device = None
        wifi_devices = []
        for section in store.sections("wireless", "wifi-device"):
            if section.get_str("type") == "morse":
                if morse_device is None:
                    morse_device = section.name
            else:
                wifi_devices.append(WifiDevice(
                    name=section.name,
                    ap_interface_name=f"default_{section.name}",
                    sta_interface_name=f"sta_{section.name}",
                    band=as_scalar(section.get("band")),
                ))

        if morse_device is None:
            raise IntentError("No HaLow (morse) wifi-device in the wireless config")

        return cls(
            wifi_devices=wifi_devices,
            morse_device_name=morse_device,
            morse_interface_name=f"default_{morse_device}",
            morse_backhaul_sta_name=f"bh_sta_{morse_device}",
            lan_ip=get_first_ipaddr(store, LAN_NETWORK) or DEFAULT_LAN_IP,
            wlan_ip=get_first_ipaddr(store, MESH_NETWORK) or DEFAULT_WLAN_IP,
        )


class TopologyPlanner:
    """Applies a ``MeshIntent`` to a staged store."""

    def __init__(
        self,
        store: UCIStore,
        info: SectionInfo,
        ethernet_ports: Sequence[EthernetPort],
        net_devices: Iterable[NetDevice] = (),
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.info = info
        self.net_devices = list(net_devices)
        # USB ethernet dongles and the like join as wan ports.
        self.ethernet_ports = get_ethernet_ports(ethernet_ports, self.net_devices)
        self.rng = rng or random.Random()
        self._aps_enabled: Dict[str, bool] = {}

    # Before intent is collected
    def prepare(self) -> None:
        """Create the wireless and prplmesh sections the planner relies on."""
        store, info = self.store, self.info

        for wifi_device in info.wifi_devices:
            store.ensure_section("wireless", "wifi-iface", wifi_device.ap_interface_name)
            store.set("wireless", wifi_device.ap_interface_name, "device", wifi_device.name)
            store.set("wireless", wifi_device.ap_interface_name, "mode", "ap")

            store.ensure_section("wireless", "wifi-iface", wifi_device.sta_interface_name)
            store.set("wireless", wifi_device.sta_interface_name, "device", wifi_device.name)
            store.set("wireless", wifi_device.sta_interface_name, "mode", "sta")

        store.ensure_section("wireless", "wifi-iface", info.morse_interface_name)
        store.set("wireless", info.morse_interface_name, "device", info.morse_device_name)
        store.ensure_section("wireless", "wifi-iface", info.morse_backhaul_sta_name)
        store.set("wireless", info.morse_backhaul_sta_name, "device", info.morse_device_name)

        store.ensure_section("prplmesh", "prplmesh", "config")
        if as_scalar(store.get("prplmesh", "config", "enable")) != "1":
            # Coming from a non-EasyMesh setup: the old role means nothing.
            store.unset("prplmesh", "config", "master")
            store.set("prplmesh", "config", "enable", "1")

        store.ensure_section("prplmesh", "wifi-device", info.morse_device_name)

    def load_intent(self) -> MeshIntent:
        """Infer the intent the current config was generated from."""
        store, info = self.store, self.info
        enabled = as_scalar(store.get("prplmesh", "config", "enable")) == "1"
        master = as_scalar(store.get("prplmesh", "config", "master"))

        role = None
        if enabled and master == "1":
            role = DeviceRole.CONTROLLER
        elif enabled and master == "0":
            role = DeviceRole.AGENT

        port_info = read_ethernet_port_info(store, self.ethernet_ports)

        uplink = None
        if role == DeviceRole.CONTROLLER:
            for wifi_device in info.wifi_devices:
                sta = store.get_section("wireless", wifi_device.sta_interface_name)
                if sta is not None and sta.get_str("disabled") != "1":
                    uplink = f"wifi-{wifi_device.sta_interface_name}"
                    break
            else:
                halow_networks = as_list(store.get("wireless", info.morse_interface_name, "network"))
                if port_info.eth_dhcp_network:
                    uplink = f"ethernet-{port_info.eth_dhcp_port}" if len(self.ethernet_ports) > 1 else "ethernet"
                elif port_info.eth_static_network not in halow_networks:
                    # HaLow separate from ethernet, no ethernet DHCP client.
                    uplink = "none"

        traffic_mode = None
        if role == DeviceRole.AGENT:
            if port_info.eth_static_network == LAN_NETWORK:
                traffic_mode = TrafficMode.EXTENDER if self._forwards(LAN_NETWORK, MESH_NETWORK) else TrafficMode.NONE
            else:
                traffic_mode = TrafficMode.BRIDGE

        ssid = key = None
        if as_scalar(store.get("wireless", info.morse_interface_name, "mode")) == "ap":
            ssid = as_scalar(store.get("wireless", info.morse_interface_name, "ssid"))
            key = as_scalar(store.get("wireless", info.morse_interface_name, "key"))

        return MeshIntent(role=role, uplink=uplink, traffic_mode=traffic_mode, ssid=ssid, key=key)

    def _forwards(self, src_network: str, dest_network: str) -> bool:
        src = zone_for_network(self.store, src_network)
        dest = zone_for_network(self.store, dest_network)
        return any(
            f.src == src and f.dest == dest and f.is_enabled
            for f in (FirewallForwarding.from_section(s) for s in self.store.sections("firewall", "forwarding"))
        )

    # Applying intent
    def _check_intent(self, intent: MeshIntent) -> None:
        if intent.role is None:
            raise IntentError("Device role (controller or agent) is required")

        if intent.role == DeviceRole.CONTROLLER:
            if intent.uplink is None:
                raise IntentError("An uplink is required for an EasyMesh controller")
            kind, _, target = intent.uplink.partition("-")
            if kind == "ethernet" and target and target not in {p.device for p in self.ethernet_ports}:
                raise IntentError(f"Unknown ethernet port '{target}'")
            if kind == "ethernet" and not self.ethernet_ports:
                raise IntentError("Ethernet uplink requested but the device has no ethernet ports")
            if kind == "wifi" and target not in {d.sta_interface_name for d in self.info.wifi_devices}:
                raise IntentError(f"Unknown Wi-Fi station '{target}'")
        elif intent.traffic_mode is None:
            raise IntentError("A traffic mode is required for an EasyMesh agent")

    def apply(self, intent: MeshIntent) -> None:
        """
        Reconcile the store with ``intent``.

        Safe to call repeatedly: a second call with the same intent stages
        no further changes.

        Raises:
            IntentError: if the intent is incomplete
            BridgeValidationError: if the result would bridge a non-WDS client
        """
        self._check_intent(intent)
        self.prepare()
        store, info = self.store, self.info
        is_controller = intent.role == DeviceRole.CONTROLLER

        store.set("prplmesh", "config", "enable", "1")
        store.set("prplmesh", "config", "master", "1" if is_controller else "0")

        setup_network_iface(store, LAN_NETWORK)
        setup_network_iface(store, MESH_NETWORK)
        # Keep wan (and its firewall rules) even when unused.
        setup_network_iface(store, WAN_NETWORK)

        # Relate the bridge MAC to the HaLow radio so topology views line up.
        bridge_mac = get_fake_morse_mac(self.net_devices)
        if bridge_mac is None:
            existing = find_bridge(store, PRPL_BRIDGE)
            bridge_mac = existing.macaddr if existing is not None and existing.macaddr else get_random_mac(self.rng)
        force_bridge(store, MESH_NETWORK, PRPL_BRIDGE, bridge_mac)

        aps_enabled = {}
        for wifi_device in info.wifi_devices:
            ap_disabled = as_scalar(store.get("wireless", wifi_device.ap_interface_name, "disabled"))
            aps_enabled[wifi_device.name] = ap_disabled != "1"
            # Which STA is on is decided by the uplink.
            is_uplink = intent.uplink == f"wifi-{wifi_device.sta_interface_name}"
            store.set("wireless", wifi_device.sta_interface_name, "disabled", "0" if is_uplink else "1")
        self._aps_enabled = aps_enabled

        self._set_easymesh_config(is_controller)
        self._set_multiap_wireless_config(intent, is_controller)
        self._set_wps_config()

        if is_controller:
            touched = self._apply_controller(intent)
        else:
            touched = self._apply_agent(intent)

        for network in touched:
            validate_bridge(store, network)

    def _apply_controller(self, intent: MeshIntent) -> List[str]:
        store, info = self.store, self.info
        uplink = intent.uplink or ""

        if uplink.startswith("ethernet"):
            upstream = WAN_NETWORK if len(self.ethernet_ports) > 1 else LAN_NETWORK
            if upstream == WAN_NETWORK:
                self._forward(MESH_NETWORK, WAN_NETWORK)
            else:
                self._forward(MESH_NETWORK, LAN_NETWORK, "mmrouter")

            store.set("wireless", info.morse_interface_name, "network", MESH_NETWORK)
            self._attach_aps(MESH_NETWORK)

            _, _, port = uplink.partition("-")
            all_ports = [p.device for p in self.ethernet_ports]
            if port:
                self._assign_ports(upstream, [port])
                self._assign_ports(MESH_NETWORK, [p for p in all_ports if p != port])
            else:
                self._assign_ports(upstream, all_ports)

            create_or_remove_bridge_as_needed(store, upstream)
            store.set("network", upstream, "proto", "dhcp")
            setup_network_with_dnsmasq(store, MESH_NETWORK, info.wlan_ip, rng=self.rng)
            return [MESH_NETWORK, upstream]

        elif uplink == "none":
            self._non_bridge_mode()
            self._ensure_static(LAN_NETWORK, info.lan_ip)
            setup_network_with_dnsmasq(store, LAN_NETWORK, info.lan_ip, uplink=False, rng=self.rng)
            setup_network_with_dnsmasq(store, MESH_NETWORK, info.wlan_ip, uplink=False, rng=self.rng)
            return [MESH_NETWORK, LAN_NETWORK]

        # wifi-<sta>
        _, _, sta = uplink.partition("-")
        self._bridge_mode()
        store.set("network", LAN_NETWORK, "proto", "dhcp")
        store.set("wireless", sta, "network", LAN_NETWORK)
        if intent.uplink_ssid:
            store.set("wireless", sta, "ssid", intent.uplink_ssid)
        if intent.uplink_encryption:
            store.set("wireless", sta, "encryption", intent.uplink_encryption)
        if intent.uplink_key:
            store.set("wireless", sta, "key", intent.uplink_key)
        # A STA can't sit in a bridge, so lan loses any bridge it had.
        create_or_remove_bridge_as_needed(store, LAN_NETWORK)
        setup_network_with_dnsmasq(store, MESH_NETWORK, info.wlan_ip, rng=self.rng)
        self._forward(MESH_NETWORK, LAN_NETWORK, "mmrouter")
        return [MESH_NETWORK, LAN_NETWORK]

    def _apply_agent(self, intent: MeshIntent) -> List[str]:
        store, info = self.store, self.info

        if intent.traffic_mode == TrafficMode.EXTENDER:
            self._non_bridge_mode()
            store.set("network", MESH_NETWORK, "proto", "dhcp")
            self._ensure_static(LAN_NETWORK, info.lan_ip)
            setup_network_with_dnsmasq(store, LAN_NETWORK, info.lan_ip, rng=self.rng)
            self._forward(LAN_NETWORK, MESH_NETWORK, "mmextender")
        elif intent.traffic_mode == TrafficMode.NONE:
            self._non_bridge_mode()
            store.set("network", MESH_NETWORK, "proto", "dhcp")
            self._ensure_static(LAN_NETWORK, info.lan_ip)
            setup_network_with_dnsmasq(store, LAN_NETWORK, info.lan_ip, uplink=False, rng=self.rng)
        else:
            self._bridge_mode()
            store.set("network", MESH_NETWORK, "proto", "dhcp")

        return [MESH_NETWORK, LAN_NETWORK]

    # Building blocks
    def _forward(self, src_network: str, dest_network: str, name: Optional[str] = None) -> str:
        return get_or_create_forwarding(
            self.store,
            get_or_create_zone(self.store, src_network),
            get_or_create_zone(self.store, dest_network),
            name,
        )

    def _attach_aps(self, network: str) -> None:
        for wifi_device in self.info.wifi_devices:
            if self._aps_enabled.get(wifi_device.name):
                self.store.set("wireless", wifi_device.ap_interface_name, "network", network)

    def _bridge_mode(self) -> None:
        """Everything, HaLow and non-HaLow, on the mesh network."""
        store, info = self.store, self.info
        store.set("wireless", info.morse_interface_name, "network", MESH_NETWORK)
        store.set("wireless", info.morse_backhaul_sta_name, "network", MESH_NETWORK)
        self._attach_aps(MESH_NETWORK)
        self._assign_ports(MESH_NETWORK, [p.device for p in self.ethernet_ports])

    def _non_bridge_mode(self) -> None:
        """HaLow on the mesh network, everything else on lan."""
        store, info = self.store, self.info
        # Leave out USB dongles: one running its own DHCP server on lan
        # would be very confusing.
        self._assign_ports(LAN_NETWORK, [p.device for p in self.ethernet_ports if p.builtin])

        store.set("wireless", info.morse_interface_name, "network", MESH_NETWORK)
        store.set("wireless", info.morse_backhaul_sta_name, "network", MESH_NETWORK)
        self._attach_aps(LAN_NETWORK)

        create_or_remove_bridge_as_needed(store, LAN_NETWORK)

    def _assign_ports(self, network: str, devices: Sequence[str]) -> None:
        """Give ``devices`` to ``network``, taking them off any other network."""
        store = self.store
        moving = set(devices)

        for iface in store.sections("network", "interface"):
            if iface.name == network:
                continue
            device = as_scalar(iface.get("device"))
            bridge = find_bridge(store, device)
            if bridge is not None:
                remaining = [p for p in bridge.ports if p not in moving]
                if remaining != bridge.ports:
                    store.set("network", bridge.section_name, "ports", remaining)
            elif device in moving:
                store.unset("network", iface.name, "device")

        set_network_devices(store, network, list(devices))

    def _ensure_static(self, network: str, ip: str) -> None:
        if as_scalar(self.store.get("network", network, "proto")) != "static":
            self.store.set("network", network, "proto", "static")
            self.store.set("network", network, "ipaddr", ip)
            self.store.set("network", network, "netmask", LAN_NETMASK)

    def _set_easymesh_config(self, is_controller: bool) -> None:
        store, info = self.store, self.info
        if is_controller:
            store.set("prplmesh", "config", "gateway", "1")
            store.set("prplmesh", "config", "management_mode", "Multi-AP-Controller-and-Agent")
            store.set("prplmesh", "config", "operating_mode", "Gateway")
            store.set("prplmesh", "config", "wired_backhaul", "1")
            store.set("wireless", info.morse_backhaul_sta_name, "disabled", "1")
        else:
            store.set("prplmesh", "config", "gateway", "0")
            store.set("prplmesh", "config", "management_mode", "Multi-AP-Agent")
            store.set("prplmesh", "config", "operating_mode", "WDS-Repeater")
            store.set("prplmesh", "config", "wired_backhaul", "0")
            store.set("wireless", info.morse_backhaul_sta_name, "disabled", "0")

        store.ensure_section("prplmesh", "wifi-device", info.morse_device_name)
        store.set("prplmesh", info.morse_device_name, "hostap_iface", PRPL_HOSTAP_IFNAME)
        store.set("prplmesh", info.morse_device_name, "sta_iface", PRPL_STA_IFNAME)

    def _set_multiap_wireless_config(self, intent: MeshIntent, is_controller: bool) -> None:
        store, info = self.store, self.info
        iface, bh_sta = info.morse_interface_name, info.morse_backhaul_sta_name

        # EasyMesh requires the fronthaul BSS to run WPA3 transition mode.
        store.set("wireless", iface, "encryption", "sae-mixed")
        store.set("wireless", iface, "mode", "ap")
        store.set("wireless", iface, "wds", "1")
        store.set("wireless", iface, "bss_transition", "1")
        store.set("wireless", iface, "multi_ap", "3")
        store.set("wireless", iface, "ieee80211k", "1")
        store.set("wireless", iface, "ieee80211w", "2")
        store.set("wireless", iface, "disabled", "0")
        store.set("wireless", iface, "ifname", PRPL_HOSTAP_IFNAME)

        # Agents get SSID and key from the controller when they pair.
        if is_controller:
            ssid = intent.ssid or as_scalar(store.get("wireless", iface, "ssid")) or get_default_ssid(store)
            if ssid:
                store.set("wireless", iface, "ssid", ssid)
            key = intent.key or as_scalar(store.get("wireless", iface, "key"))
            store.set("wireless", iface, "key", key or get_default_wifi_key(store, self.rng))

        store.set("wireless", bh_sta, "mode", "sta")
        store.set("wireless", bh_sta, "multi_ap", "1")
        store.set("wireless", bh_sta, "wds", "1")
        store.set("wireless", bh_sta, "ifname", PRPL_STA_IFNAME)

    def _set_wps_config(self) -> None:
        iface = self.info.morse_interface_name
        self.store.set("wireless", iface, "wps_virtual_push_button", "1")
        self.store.set("wireless", iface, "wps_independent", "0")
        self.store.set("wireless", iface, "auth_cache", "0")


def plan_topology(
    store: UCIStore,
    intent: MeshIntent,
    ethernet_ports: Sequence[EthernetPort],
    net_devices: Iterable[NetDevice] = (),
    info: Optional[SectionInfo] = None,
    rng: Optional[random.Random] = None,
) -> TopologyPlanner:
    """Apply ``intent`` with section names read from the store."""
    planner = TopologyPlanner(store, info or SectionInfo.from_store(store), ethernet_ports, net_devices, rng)
    planner.apply(intent)
    logger.info(
        "Planned %s topology: %d staged changes in %s",
        intent.role.value if intent.role else "unknown",
        len(store.changes()),
        ", ".join(sorted(store.changed_packages())) or "no packages",
    )
    return planner
