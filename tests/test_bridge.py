"""Tests for bridge management and validation."""

import pytest

from wrtmesh.bridge import (
    BridgedPort,
    BridgedWifi,
    create_or_remove_bridge_as_needed,
    find_bridge_conflict,
    force_bridge,
    get_network_devices,
    has_multiple_devices,
    set_bridge_with_ports,
    set_network_devices,
    validate_bridge,
)
from wrtmesh.errors import BridgeValidationError
from wrtmesh.network import find_bridge
from wrtmesh.store import UCIStore


def _mesh_store(ports, wifi=None):
    data = {
        "network": {
            "brdev": {".type": "device", "name": "br-mesh", "type": "bridge", "ports": ports},
            "mesh": {".type": "interface", "device": "br-mesh", "proto": "static"},
        },
        "wireless": {
            "radio0": {".type": "wifi-device", "type": "morse"},
        },
    }
    for name, options in (wifi or {}).items():
        data["wireless"][name] = dict({".type": "wifi-iface", "device": "radio0", "network": "mesh"}, **options)
    return UCIStore(data)


def test_get_network_devices(stock_store):
    """Test listing the devices of bridged and plain interfaces."""
    assert get_network_devices(stock_store, "lan") == ["lan1", "lan2"]
    assert get_network_devices(stock_store, "wan") == ["wan"]
    assert get_network_devices(stock_store, "missing") == []


def test_has_multiple_devices_counts_wds_twice():
    """Test that a WDS AP counts as more than one datapath."""
    store = _mesh_store([], {"ap": {"mode": "ap", "wds": "1"}})
    assert has_multiple_devices(store, "mesh")

    store = _mesh_store([], {"ap": {"mode": "ap"}})
    assert not has_multiple_devices(store, "mesh")


def test_list_valued_options_read_like_scalars():
    """Test bridges whose interface and wifi-iface use "list" syntax."""
    store = _mesh_store([], {"sta": {"mode": "sta", "network": ["mesh"]}, "ap": {"mode": "ap", "network": ["mesh"]}})
    store.set("network", "mesh", "device", ["br-mesh"])

    assert get_network_devices(store, "mesh") == []
    assert has_multiple_devices(store, "mesh")
    with pytest.raises(BridgeValidationError):
        validate_bridge(store, "mesh")

    store.delete("wireless", "ap")
    create_or_remove_bridge_as_needed(store, "mesh")
    assert store.get("network", "mesh", "device") is None


def test_has_multiple_devices_ignores_disabled():
    """Test that disabled wifi-ifaces don't count."""
    store = _mesh_store(["eth0"], {"ap": {"mode": "ap", "disabled": "1"}})
    assert not has_multiple_devices(store, "mesh")


def test_set_network_devices_existing_bridge(stock_store):
    """Test that an existing bridge just gets its ports replaced."""
    set_network_devices(stock_store, "lan", ["lan1"])

    assert stock_store.get("network", "cfg030f15", "ports") == ["lan1"]
    assert stock_store.get("network", "lan", "device") == "br-lan"


def test_set_network_devices_single_device(stock_store):
    """Test that one device is set directly on the interface."""
    set_network_devices(stock_store, "wan", ["lan2"])

    assert stock_store.get("network", "wan", "device") == "lan2"


def test_set_network_devices_creates_bridge(stock_store):
    """Test that several devices on a plain interface get a new bridge."""
    set_network_devices(stock_store, "wan", ["wan", "usb0"])

    assert stock_store.get("network", "wan", "device") == "br-wan"
    bridge = find_bridge(stock_store, "br-wan")
    assert bridge is not None
    assert bridge.ports == ["wan", "usb0"]


def test_set_network_devices_empty_is_noop(stock_store):
    """Test that no devices on a plain interface changes nothing."""
    set_network_devices(stock_store, "wan", [])
    assert not stock_store.has_changes()


def test_set_bridge_with_ports_picks_free_name():
    """Test that bridge names in use by other interfaces are skipped."""
    store = UCIStore({
        "network": {
            "d1": {".type": "device", "name": "br-guest", "type": "bridge"},
            "other": {".type": "interface", "device": "br-guest"},
            "guest": {".type": "interface", "device": "eth1"},
        }
    })

    assert set_bridge_with_ports(store, "guest", ["eth1"]) == "br-guest1"
    assert store.get("network", "guest", "device") == "br-guest1"


def test_set_bridge_with_ports_reuses_unused_bridge():
    """Test that a bridge section nobody points at is reused."""
    store = UCIStore({
        "network": {
            "d1": {".type": "device", "name": "br-guest", "type": "bridge"},
            "guest": {".type": "interface", "device": "eth1"},
        }
    })

    assert set_bridge_with_ports(store, "guest", ["eth1", "eth2"]) == "br-guest"
    assert store.get("network", "d1", "ports") == ["eth1", "eth2"]
    assert len(store.sections("network", "device")) == 1


def test_force_bridge_creates_bridge_and_moves_ports(stock_store):
    """Test that the network's old bridge ports move to the forced bridge."""
    force_bridge(stock_store, "lan", "br-prpl", "F2:00:11:22:33:44")

    bridge = find_bridge(stock_store, "br-prpl")
    assert bridge is not None
    assert bridge.ports == ["lan1", "lan2"]
    assert bridge.macaddr == "F2:00:11:22:33:44"
    assert stock_store.get("network", "lan", "device") == "br-prpl"
    assert stock_store.get("network", "cfg030f15", "ports") is None


def test_force_bridge_steals_from_other_interface(stock_store):
    """Test that another interface using the bridge loses it."""
    stock_store.add("network", "interface", "ahwlan")
    force_bridge(stock_store, "ahwlan", "br-lan")

    assert stock_store.get("network", "ahwlan", "device") == "br-lan"
    assert stock_store.get("network", "lan", "device") is None


def test_force_bridge_idempotent(stock_store):
    """Test that forcing the same bridge twice changes nothing the second time."""
    force_bridge(stock_store, "lan", "br-prpl", "F2:00:11:22:33:44")
    count = len(stock_store.changes())
    force_bridge(stock_store, "lan", "br-prpl", "F2:00:11:22:33:44")

    assert len(stock_store.changes()) == count


def test_two_port_bridge_left_in_place():
    """Test that a bridge is not removed when one plain port remains."""
    store = _mesh_store(["eth0", "eth1"])
    set_network_devices(store, "mesh", ["eth0"])
    store.commit()

    create_or_remove_bridge_as_needed(store, "mesh")

    assert store.get("network", "mesh", "device") == "br-mesh"
    assert not store.has_changes()


def test_bridge_removed_for_single_sta():
    """Test that a bridge holding only a non-WDS station is dropped."""
    store = _mesh_store([], {"sta": {"mode": "sta"}})
    create_or_remove_bridge_as_needed(store, "mesh")

    assert store.get("network", "mesh", "device") is None


def test_bridge_kept_for_single_wds_sta():
    """Test that a WDS station can stay on a bridge."""
    store = _mesh_store([], {"sta": {"mode": "sta", "wds": "1"}})
    create_or_remove_bridge_as_needed(store, "mesh")

    assert store.get("network", "mesh", "device") == "br-mesh"


def test_bridge_added_when_needed():
    """Test that a plain interface with a port and an AP gets a bridge."""
    store = UCIStore({
        "network": {"guest": {".type": "interface", "device": "eth1"}},
        "wireless": {"ap": {".type": "wifi-iface", "mode": "ap", "network": "guest"}},
    })
    create_or_remove_bridge_as_needed(store, "guest")

    assert store.get("network", "guest", "device") == "br-guest"
    assert find_bridge(store, "br-guest").ports == ["eth1"]


def test_validate_adhoc_with_port():
    """Test that an adhoc interface bridged with a port is rejected."""
    store = _mesh_store(["eth0"], {"adhoc0": {"mode": "adhoc", "ssid": "ibss"}})

    with pytest.raises(BridgeValidationError) as exc_info:
        validate_bridge(store, "mesh")

    message = str(exc_info.value)
    assert 'The configuration for the "mesh" network is not supported.' in message
    assert 'A morse Wi-Fi device in "adhoc" mode with SSID "ibss"' in message
    assert 'A "eth0" port' in message

    conflict = exc_info.value.conflict
    assert conflict.network == "mesh"
    assert conflict.non_wds_clients == [BridgedWifi(section="adhoc0", device_type="morse", mode="adhoc", ssid="ibss")]
    assert conflict.other_devices == [BridgedPort(name="eth0")]


def test_validate_sta_with_ap():
    """Test that a station sharing a bridge with an AP is rejected."""
    store = _mesh_store([], {"sta": {"mode": "sta", "ssid": "up"}, "ap": {"mode": "ap", "ssid": "down"}})

    conflict = find_bridge_conflict(store, "mesh", {"radio0": "mac80211"})
    assert conflict is not None
    assert [w.section for w in conflict.non_wds_clients] == ["sta"]
    assert [w.describe() for w in conflict.other_devices] == ['A mac80211 Wi-Fi device in "ap" mode with SSID "down"']


def test_validate_single_sta_is_fine():
    """Test that a lone non-WDS client is accepted."""
    store = _mesh_store([], {"sta": {"mode": "sta"}})
    validate_bridge(store, "mesh")


def test_validate_wds_sta_with_port_is_fine():
    """Test that WDS stations may be bridged with ports."""
    store = _mesh_store(["eth0"], {"sta": {"mode": "sta", "wds": "1"}})
    validate_bridge(store, "mesh")


def test_validate_without_bridge_is_fine(stock_store):
    """Test that unbridged networks always pass."""
    assert find_bridge_conflict(stock_store, "wan") is None
