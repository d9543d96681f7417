"""Wireless configuration components."""

import random
from typing import ClassVar, List, Optional, Tuple

from pydantic import Field

from .base import UCISection, as_scalar
from .store import UCIStore

WIFI_KEY_CHARS = "abcdefghijklmnopqrstuvwxyz023456789"


class WirelessRadio(UCISection):
    """Represents a wireless radio configuration."""

    _package: ClassVar[str] = "wireless"
    _section_type: ClassVar[str] = "wifi-device"

    type: Optional[str] = None
    channel: Optional[str] = None
    htmode: Optional[str] = None
    country: Optional[str] = None
    disabled: Optional[str] = None


class WirelessInterface(UCISection):
    """Represents a wireless interface configuration."""

    _package: ClassVar[str] = "wireless"
    _section_type: ClassVar[str] = "wifi-iface"
    # LuCI may write "list network", and an iface can sit on several networks.
    _list_fields: ClassVar[Tuple[str, ...]] = ("network",)

    device: Optional[str] = None
    mode: Optional[str] = None
    network: List[str] = Field(default_factory=list)
    ssid: Optional[str] = None
    encryption: Optional[str] = None
    key: Optional[str] = None
    ifname: Optional[str] = None
    wds: Optional[str] = None
    disabled: Optional[str] = None

    @property
    def is_disabled(self) -> bool:
        return self.disabled == "1"

    @property
    def is_non_wds_client(self) -> bool:
        """Clients that can't be bridged: adhoc, or sta without WDS."""
        return self.mode == "adhoc" or (self.mode == "sta" and self.wds != "1")

    @property
    def datapath_count(self) -> int:
        """Number of netdevs this iface will put on its network."""
        # WDS APs create a netdev per station; mesh is counted the same way.
        if (self.mode == "ap" and self.wds == "1") or self.mode == "mesh":
            return 2
        return 1


def get_network_wifi_ifaces(store: UCIStore, network: str) -> List[WirelessInterface]:
    """Enabled wifi-ifaces attached to ``network``."""
    ifaces = [WirelessInterface.from_section(s) for s in store.sections("wireless", "wifi-iface")]
    return [i for i in ifaces if not i.is_disabled and network in i.network]


def get_radio_types(store: UCIStore) -> dict:
    """Map of wifi-device section name to radio type (e.g. morse, mac80211)."""
    return {
        s.name: WirelessRadio.from_section(s).type or "unknown"
        for s in store.sections("wireless", "wifi-device")
    }


def get_default_ssid(store: UCIStore) -> Optional[str]:
    return as_scalar(store.get_first("system", "system", "hostname"))


def get_default_wifi_key(store: UCIStore, rng: Optional[random.Random] = None) -> str:
    """The factory wifi key if the board has one, else a random 8 character key."""
    key = as_scalar(store.get_first("system", "system", "default_wifi_key"))
    if key:
        return key
    rng = rng or random.Random()
    return "".join(rng.choice(WIFI_KEY_CHARS) for _ in range(8))
