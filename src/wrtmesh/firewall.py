"""Firewall zones and forwarding rules.

Forwarding rules are never deleted. A rule that should stop applying is
soft-disabled with ``enabled=0`` so vendor defaults can be brought back by
selecting the same option again.
"""

import logging
from typing import ClassVar, List, Optional, Tuple

from pydantic import Field

from .base import UCISection
from .store import UCIStore

logger = logging.getLogger(__name__)


class FirewallZone(UCISection):
    """Represents a firewall zone configuration."""

    _package: ClassVar[str] = "firewall"
    _section_type: ClassVar[str] = "zone"
    _list_fields: ClassVar[Tuple[str, ...]] = ("network",)

    name: Optional[str] = None
    input: Optional[str] = None
    output: Optional[str] = None
    forward: Optional[str] = None
    masq: Optional[str] = None
    mtu_fix: Optional[str] = None
    network: List[str] = Field(default_factory=list)


class FirewallForwarding(UCISection):
    """Represents a firewall forwarding rule."""

    _package: ClassVar[str] = "firewall"
    _section_type: ClassVar[str] = "forwarding"

    src: Optional[str] = None
    dest: Optional[str] = None
    enabled: Optional[str] = None

    @property
    def is_enabled(self) -> bool:
        return self.enabled != "0"


def _zones(store: UCIStore) -> List[FirewallZone]:
    return [FirewallZone.from_section(s) for s in store.sections("firewall", "zone")]


def _forwardings(store: UCIStore) -> List[FirewallForwarding]:
    return [FirewallForwarding.from_section(s) for s in store.sections("firewall", "forwarding")]


def zone_for_network(store: UCIStore, network: str) -> Optional[str]:
    """
    Zone that a network belongs to.

    Returns the zone's ``name`` option (what forwarding rules refer to), not
    its section id.
    """
    for zone in _zones(store):
        if network in zone.network:
            return zone.name
    return None


def get_or_create_zone(store: UCIStore, network: str) -> str:
    """Return the zone of ``network``, creating an all-ACCEPT zone if it has none."""
    zone = zone_for_network(store, network)
    if zone:
        return zone

    # Avoid clashing with both section ids and zone names.
    taken = set()
    for section in store.sections("firewall"):
        taken.add(section.name)
        taken.update(section.get_list("name"))

    proposed_name, i = network, 0
    while proposed_name in taken:
        i += 1
        proposed_name = f"{network}{i}"

    store.add("firewall", "zone", proposed_name)
    store.set("firewall", proposed_name, "name", proposed_name)
    store.set("firewall", proposed_name, "network", [network])
    store.set("firewall", proposed_name, "input", "ACCEPT")
    store.set("firewall", proposed_name, "output", "ACCEPT")
    store.set("firewall", proposed_name, "forward", "ACCEPT")
    logger.debug("Created firewall zone %s for network %s", proposed_name, network)

    return proposed_name


def get_or_create_forwarding(
    store: UCIStore, src_zone: str, dest_zone: str, name: Optional[str] = None
) -> str:
    """
    Make ``src_zone -> dest_zone`` the one enabled forwarding from ``src_zone``.

    Args:
        store: Staged configuration
        src_zone: Source zone name
        dest_zone: Destination zone name
        name: Section name to use if a new rule has to be created

    Returns:
        Section id of the enabled rule
    """
    # An enabled rule that already does this means the user hasn't changed
    # anything; leave any other hand-made forwards alone.
    for rule in _forwardings(store):
        if rule.src == src_zone and rule.dest == dest_zone and rule.is_enabled:
            return rule.section_name

    dest = next((z for z in _zones(store) if z.name == dest_zone), None)
    if dest is not None:
        store.set("firewall", dest.section_name, "mtu_fix", "1")
        store.set("firewall", dest.section_name, "masq", "1")
    else:
        logger.warning("No firewall zone named %s, forwarding to it without NAT settings", dest_zone)

    for rule in _forwardings(store):
        if rule.src == src_zone and rule.is_enabled:
            store.set("firewall", rule.section_name, "enabled", "0")
            logger.debug("Disabled forwarding %s (%s -> %s)", rule.section_name, rule.src, rule.dest)

    for rule in _forwardings(store):
        if rule.src == src_zone and rule.dest == dest_zone:
            store.set("firewall", rule.section_name, "enabled", "1")
            logger.debug("Re-enabled forwarding %s (%s -> %s)", rule.section_name, src_zone, dest_zone)
            return rule.section_name

    if name is not None and store.get_section("firewall", name) is not None:
        name = None
    forwarding_id = store.add("firewall", "forwarding", name)
    store.set("firewall", forwarding_id, "src", src_zone)
    store.set("firewall", forwarding_id, "dest", dest_zone)
    logger.debug("Created forwarding %s (%s -> %s)", forwarding_id, src_zone, dest_zone)
    return forwarding_id
