"""DHCP pools and dnsmasq instances."""

import logging
import random
from typing import ClassVar, List, Optional, Tuple

from pydantic import Field

from .base import UCISection, as_list, as_scalar
from .errors import InvalidIPAddressError
from .store import UCIStore

logger = logging.getLogger(__name__)

# The HaLow mesh-facing network.
MESH_NETWORK = "ahwlan"
MESH_NETMASK = "255.255.0.0"

DHCP_POOL_SIZE = 16
DHCP_LEASETIME = "3m"
# Cloudflare
IPV4_DNS = "1.1.1.1"
IPV6_DNS = "2606:4700:4700::1111"
# Suppressed when the network isn't an uplink: router (3) and DNS server (6).
NO_UPLINK_DHCP_OPTIONS = ["3", "6"]


class DHCPSection(UCISection):
    """Represents a DHCP pool."""

    _package: ClassVar[str] = "dhcp"
    _section_type: ClassVar[str] = "dhcp"
    _list_fields: ClassVar[Tuple[str, ...]] = ("dhcp_option",)

    interface: Optional[str] = None
    instance: Optional[str] = None
    start: Optional[str] = None
    limit: Optional[str] = None
    leasetime: Optional[str] = None
    ignore: Optional[str] = None
    dhcp_option: List[str] = Field(default_factory=list)

    @property
    def is_ignored(self) -> bool:
        return self.ignore == "1"

    def serves(self, network: str, dnsmasq: str) -> bool:
        return self.interface == network and (not self.instance or self.instance == dnsmasq)


class DnsmasqSection(UCISection):
    """Represents a dnsmasq instance."""

    _package: ClassVar[str] = "dhcp"
    _section_type: ClassVar[str] = "dnsmasq"
    _list_fields: ClassVar[Tuple[str, ...]] = ("interface", "notinterface")

    interface: List[str] = Field(default_factory=list)
    notinterface: List[str] = Field(default_factory=list)
    domain: Optional[str] = None
    local: Optional[str] = None

    def is_generic_for(self, network: str) -> bool:
        """Serves every interface not explicitly excluded, including ``network``."""
        return not self.interface and network not in self.notinterface

    def is_scoped_to(self, network: str) -> bool:
        return network in self.interface


def setup_dnsmasq(store: UCIStore, dnsmasq: str, network: str) -> None:
    """Apply the stock OpenWrt dnsmasq options to a new instance."""
    store.set("dhcp", dnsmasq, "domainneeded", "1")
    store.set("dhcp", dnsmasq, "localise_queries", "1")
    store.set("dhcp", dnsmasq, "rebind_localhost", "1")
    store.set("dhcp", dnsmasq, "local", f"/{network}/")
    store.set("dhcp", dnsmasq, "domain", network)
    store.set("dhcp", dnsmasq, "expandhosts", "1")
    store.set("dhcp", dnsmasq, "cachesize", "1000")
    store.set("dhcp", dnsmasq, "authoritative", "1")
    store.set("dhcp", dnsmasq, "readethers", "1")
    store.set("dhcp", dnsmasq, "localservice", "1")
    store.set("dhcp", dnsmasq, "ednspacket_max", "1232")


def _unique_name(store: UCIStore, base: str) -> str:
    taken = {s.name for s in store.sections("dhcp")}
    proposed_name, i = base, 0
    while proposed_name in taken:
        i += 1
        proposed_name = f"{base}{i}"
    return proposed_name


def get_or_create_dnsmasq(store: UCIStore, network: str) -> str:
    """
    Find the dnsmasq instance that serves ``network``, or make one.

    Generic instances win over ones scoped to ``network``; within each kind
    the first in store order wins. With no applicable instance: create a
    generic one if there are none, widen the only one if there is exactly
    one, otherwise add an instance scoped to ``network``.

    Returns:
        Section id of the instance
    """
    instances = [DnsmasqSection.from_section(s) for s in store.sections("dhcp", "dnsmasq")]
    generic = [d for d in instances if d.is_generic_for(network)]
    scoped = [d for d in instances if d.is_scoped_to(network)]

    if len(generic) + len(scoped) > 1:
        logger.warning(
            "More than one applicable dnsmasq for interface %s - probably broken config (%s)",
            network, ", ".join(d.section_name for d in generic + scoped),
        )

    if generic:
        return generic[0].section_name
    elif scoped:
        return scoped[0].section_name
    elif not instances:
        name = store.add("dhcp", "dnsmasq")
        setup_dnsmasq(store, name, network)
        logger.debug("Created dnsmasq %s for %s", name, network)
        return name
    elif len(instances) == 1:
        # Exactly one instance, but it doesn't cover this network: extend it.
        dnsmasq = instances[0]
        if dnsmasq.interface:
            store.unset("dhcp", dnsmasq.section_name, "interface")
        if network in dnsmasq.notinterface:
            store.set(
                "dhcp", dnsmasq.section_name, "notinterface",
                [i for i in dnsmasq.notinterface if i != network],
            )
        logger.debug("Widened dnsmasq %s to cover %s", dnsmasq.section_name, network)
        return dnsmasq.section_name

    # Several instances already: add one that only touches this network.
    proposed_name = _unique_name(store, f"{network}_dns")
    store.add("dhcp", "dnsmasq", proposed_name)
    setup_dnsmasq(store, proposed_name, network)
    store.set("dhcp", proposed_name, "interface", [network])
    store.set("dhcp", proposed_name, "localuse", "0")
    store.set("dhcp", proposed_name, "notinterface", ["loopback"])
    logger.debug("Created dnsmasq %s scoped to %s", proposed_name, network)
    return proposed_name


def random_dhcp_start(rng: Optional[random.Random] = None) -> int:
    """
    Offset of the first leased address.

    Netmasks are /16, so offsets above 255 land in the next /24. A /28 range
    starting at one of 15 slots between x.x.0.255 and x.x.1.239 makes
    collisions between neighbouring devices unlikely.
    """
    rng = rng or random.Random()
    return 255 + DHCP_POOL_SIZE * rng.randrange(15)


def create_dhcp(store: UCIStore, dnsmasq: str, network: str, rng: Optional[random.Random] = None) -> str:
    """Create a DHCP pool for ``network`` served by ``dnsmasq``."""
    proposed_name = _unique_name(store, network)

    store.add("dhcp", "dhcp", proposed_name)
    store.set("dhcp", proposed_name, "start", random_dhcp_start(rng))
    store.set("dhcp", proposed_name, "limit", DHCP_POOL_SIZE)
    store.set("dhcp", proposed_name, "leasetime", DHCP_LEASETIME)
    store.set("dhcp", proposed_name, "ra", "server")
    store.set("dhcp", proposed_name, "ra_slaac", "1")
    store.set("dhcp", proposed_name, "dns_service", "0")
    store.set("dhcp", proposed_name, "ignore", "0")
    store.set("dhcp", proposed_name, "force", "1")
    store.set("dhcp", proposed_name, "dns", IPV6_DNS)
    store.set("dhcp", proposed_name, "ra_flags", "none")
    store.set("dhcp", proposed_name, "interface", network)

    instance = store.get_section("dhcp", dnsmasq)
    if instance is not None and not instance.anonymous:
        store.set("dhcp", proposed_name, "instance", dnsmasq)

    logger.debug("Created DHCP pool %s for %s", proposed_name, network)
    return proposed_name


def get_or_create_dhcp(
    store: UCIStore, dnsmasq: str, network: str, rng: Optional[random.Random] = None
) -> str:
    """Return an enabled DHCP pool for ``network``, re-enabling or creating one."""
    pools = [DHCPSection.from_section(s) for s in store.sections("dhcp", "dhcp")]
    matching = [p for p in pools if p.serves(network, dnsmasq)]

    enabled = [p for p in matching if not p.is_ignored]
    if enabled:
        return enabled[0].section_name

    disabled = [p for p in matching if p.is_ignored]
    if disabled:
        store.unset("dhcp", disabled[0].section_name, "ignore")
        logger.debug("Re-enabled DHCP pool %s", disabled[0].section_name)
        return disabled[0].section_name

    return create_dhcp(store, dnsmasq, network, rng)


def get_random_ipaddr(ip: str, rng: Optional[random.Random] = None) -> str:
    """
    Random host address in the reserved x.x.254.0/24 of ``ip``'s /16.

    Only the first two octets of ``ip`` are kept, so several devices on the
    same uplink don't end up with the same address.

    Raises:
        InvalidIPAddressError: if ``ip`` isn't a dotted quad
    """
    parts = ip.split(".")
    if len(parts) != 4 or not all(p.isdigit() and p.isascii() and int(p) <= 255 for p in parts):
        raise InvalidIPAddressError(ip)

    rng = rng or random.Random()
    return f"{parts[0]}.{parts[1]}.254.{rng.randrange(254)}"


def _in_reserved_range(current: Optional[str], ip: str) -> bool:
    if not current:
        return False
    ours, theirs = current.split("/", 1)[0].split("."), ip.split(".")
    return len(ours) == 4 and ours[:2] == theirs[:2] and ours[2] == "254"


def setup_network_with_dnsmasq(
    store: UCIStore,
    network: str,
    ip: str,
    uplink: bool = True,
    is_mesh_point: bool = True,
    rng: Optional[random.Random] = None,
) -> Tuple[str, str]:
    """
    Serve DHCP/DNS on ``network``.

    Args:
        store: Staged configuration
        network: Network interface to serve
        ip: Reference address; for the mesh network its /16 is kept
        uplink: Whether clients may use this device as their router/DNS
        is_mesh_point: Whether the mesh network gets a static host address
            here (otherwise the mesh routing daemon assigns it)
        rng: Random source

    Returns:
        (dnsmasq instance id, dhcp pool id)
    """
    # Validate before touching the store.
    mesh_ipaddr = get_random_ipaddr(ip, rng) if network == MESH_NETWORK and is_mesh_point else None
    if mesh_ipaddr and _in_reserved_range(as_scalar(store.get("network", network, "ipaddr")), ip):
        # Already picked on an earlier run.
        mesh_ipaddr = None

    dnsmasq = get_or_create_dnsmasq(store, network)
    dhcp = get_or_create_dhcp(store, dnsmasq, network, rng)

    if network == MESH_NETWORK:
        store.set("network", network, "proto", "static")
        store.set("network", network, "netmask", MESH_NETMASK)
        store.set("network", network, "ip6assign", "64")
        # batman-adv tooling (alfred) needs EUI-64 addresses.
        store.set("network", network, "ip6ifaceid", "eui64")

        classes = as_list(store.get("network", network, "ip6class"))
        if "local" not in classes:
            classes.append("local")
        store.set("network", network, "ip6class", classes)

        if mesh_ipaddr:
            store.set("network", network, "ipaddr", mesh_ipaddr)
            store.set("network", network, "dns", IPV4_DNS)

    if not uplink:
        store.set("dhcp", dhcp, "dhcp_option", NO_UPLINK_DHCP_OPTIONS)
    else:
        store.unset("dhcp", dnsmasq, "notinterface")
        store.unset("dhcp", dhcp, "dhcp_option")

    return dnsmasq, dhcp
