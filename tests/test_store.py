"""Tests for the staged UCI store."""

import pytest

from wrtmesh.base import UCICommand
from wrtmesh.errors import DuplicateSectionError, SectionNotFoundError
from wrtmesh.store import UCIStore

EXPORT = """\
package network

config interface 'loopback'
	option device 'lo'
	option proto 'static'
	option ipaddr '127.0.0.1'

config device
	option name 'br-lan'
	option type 'bridge'
	list ports 'lan1'
	list ports 'lan2'

config interface 'lan'
	option device 'br-lan'
	option proto 'static'
	option ipaddr '192.168.1.1'
	option netmask '255.255.255.0'
"""


def test_load_package_from_export():
    """Test parsing uci export output."""
    store = UCIStore()
    store.load_package("network", EXPORT)

    sections = store.sections("network")
    assert [s.type for s in sections] == ["interface", "device", "interface"]
    assert store.get("network", "lan", "ipaddr") == "192.168.1.1"

    bridge = store.sections("network", "device")[0]
    assert bridge.anonymous
    assert bridge.get_list("ports") == ["lan1", "lan2"]
    assert not store.has_changes()


def test_from_dict_and_get_first(stock_store):
    """Test loading the dict layout."""
    assert stock_store.get("wireless", "radio0", "type") == "morse"
    assert stock_store.get_first("system", "system", "hostname") == "halow-gw"
    assert stock_store.get("network", "missing", "proto") is None
    assert set(stock_store.packages()) == {"network", "wireless", "firewall", "dhcp", "system"}


def test_from_yaml():
    """Test loading YAML, including non-string values."""
    store = UCIStore.from_yaml("""
network:
  lan:
    .type: interface
    proto: static
    ip6assign: 60
wireless:
  sta:
    .type: wifi-iface
    disabled: true
""")
    assert store.get("network", "lan", "ip6assign") == "60"
    assert store.get("wireless", "sta", "disabled") == "1"


def test_set_records_command():
    """Test that setting an option stages a uci set."""
    store = UCIStore({"network": {"lan": {".type": "interface", "proto": "dhcp"}}})
    store.set("network", "lan", "proto", "static")

    assert store.get("network", "lan", "proto") == "static"
    assert store.changes() == [UCICommand("set", "network.lan.proto", "static")]


def test_set_same_value_records_nothing():
    """Test that re-setting the current value is a no-op."""
    store = UCIStore({"network": {"lan": {".type": "interface", "proto": "dhcp"}}})
    store.set("network", "lan", "proto", "dhcp")

    assert not store.has_changes()


def test_set_list_replaces_list():
    """Test that list values are written as delete + add_list."""
    store = UCIStore({"network": {"dev": {".type": "device", "ports": ["lan1"]}}})
    store.set("network", "dev", "ports", ["lan1", "lan2"])

    assert store.get("network", "dev", "ports") == ["lan1", "lan2"]
    assert store.changes() == [
        UCICommand("delete", "network.dev.ports"),
        UCICommand("add_list", "network.dev.ports", "lan1"),
        UCICommand("add_list", "network.dev.ports", "lan2"),
    ]


def test_set_empty_list_unsets():
    """Test that an empty list removes the option."""
    store = UCIStore({"network": {"dev": {".type": "device", "ports": ["lan1"]}}})
    store.set("network", "dev", "ports", [])

    assert store.get("network", "dev", "ports") is None
    assert store.changes() == [UCICommand("delete", "network.dev.ports")]


def test_set_missing_section_raises():
    """Test that options can't be set on sections that don't exist."""
    store = UCIStore()
    with pytest.raises(SectionNotFoundError):
        store.set("network", "lan", "proto", "dhcp")


def test_add_named_and_duplicate():
    """Test adding named sections."""
    store = UCIStore()
    assert store.add("network", "interface", "ahwlan") == "ahwlan"
    assert store.changes() == [UCICommand("set", "network.ahwlan", "interface")]

    with pytest.raises(DuplicateSectionError):
        store.add("network", "interface", "ahwlan")


def test_unset_missing_option_is_noop():
    """Test that unsetting an absent option records nothing."""
    store = UCIStore({"network": {"lan": {".type": "interface"}}})
    store.unset("network", "lan", "proto")
    store.unset("network", "nope", "proto")

    assert not store.has_changes()


def test_delete_section():
    """Test deleting a section."""
    store = UCIStore({"network": {"lan": {".type": "interface"}}})
    store.delete("network", "lan")

    assert store.get_section("network", "lan") is None
    assert store.changes() == [UCICommand("delete", "network.lan")]


def test_sections_are_snapshots():
    """Test that modifying a returned section doesn't touch the store."""
    store = UCIStore({"network": {"lan": {".type": "interface", "proto": "dhcp"}}})
    section = store.get_section("network", "lan")
    section.options["proto"] = "static"

    assert store.get("network", "lan", "proto") == "dhcp"


def test_anonymous_section_script():
    """Test that new anonymous sections are referenced through shell variables."""
    store = UCIStore()
    section_id = store.add("firewall", "forwarding")
    store.set("firewall", section_id, "src", "ahwlan")

    script = store.to_script(include_commit=False, include_reload=False)
    lines = script.splitlines()
    assert f"{section_id}=$(uci add firewall forwarding)" in lines
    assert f"uci set firewall.${{{section_id}}}.src='ahwlan'" in lines


def test_script_commit_and_reloads():
    """Test the commit line and per-package reloads."""
    store = UCIStore({
        "network": {"lan": {".type": "interface"}},
        "dhcp": {"lan": {".type": "dhcp"}},
    })
    store.set("network", "lan", "proto", "static")
    store.set("dhcp", "lan", "limit", 16)

    script = store.to_script()
    assert script.startswith("#!/bin/sh")
    assert "uci set dhcp.lan.limit='16'" in script
    assert "uci commit" in script
    assert "/etc/init.d/network restart" in script
    assert "/etc/init.d/dnsmasq restart" in script
    assert "wifi reload" not in script
    assert "/etc/init.d/firewall reload" not in script


def test_script_quotes_values():
    """Test that single quotes in values are escaped for the shell."""
    store = UCIStore({"wireless": {"ap": {".type": "wifi-iface"}}})
    store.set("wireless", "ap", "ssid", "Bob's mesh")

    assert "uci set wireless.ap.ssid='Bob'\\''s mesh'" in store.to_script()


def test_commit_and_discard():
    """Test commit makes changes permanent and discard reverts to the last commit."""
    store = UCIStore({"network": {"lan": {".type": "interface", "proto": "dhcp"}}})

    store.set("network", "lan", "proto", "static")
    store.commit()
    assert not store.has_changes()
    assert store.get("network", "lan", "proto") == "static"

    store.set("network", "lan", "proto", "dhcp")
    store.add("network", "interface", "wan")
    store.discard()
    assert not store.has_changes()
    assert store.get("network", "lan", "proto") == "static"
    assert store.get_section("network", "wan") is None


def test_changed_packages(stock_store):
    """Test tracking which packages have staged changes."""
    stock_store.set("wireless", "radio1", "channel", "6")
    stock_store.add("firewall", "zone", "ahwlan")

    assert stock_store.changed_packages() == {"wireless", "firewall"}


def test_from_config_dir(tmp_path):
    """Test loading a directory laid out like /etc/config."""
    (tmp_path / "network").write_text(EXPORT)

    store = UCIStore.from_config_dir(str(tmp_path))
    assert store.get("network", "loopback", "device") == "lo"
    assert store.sections("wireless") == []


def test_yaml_roundtrip(stock_store):
    """Test dumping the staged state as YAML."""
    stock_store.set("network", "lan", "proto", "dhcp")
    reloaded = UCIStore.from_yaml(stock_store.to_yaml())

    assert reloaded.get("network", "lan", "proto") == "dhcp"
    assert reloaded.get_section("network", "cfg030f15").anonymous


FIREWALL_EXPORT = """\
package firewall

config defaults
	option input 'ACCEPT'

config zone
	option name 'lan'
	list network 'lan'

config zone
	option name 'wan'
	list network 'wan'

config forwarding
	option src 'lan'
	option dest 'wan'
"""


def test_exported_anonymous_sections_addressed_by_index():
    """Test that anonymous sections from an export are written as @type[index]."""
    store = UCIStore()
    store.load_package("firewall", FIREWALL_EXPORT)
    wan_zone = store.sections("firewall", "zone")[1].name
    forwarding = store.sections("firewall", "forwarding")[0].name

    store.set("firewall", wan_zone, "masq", "1")
    store.set("firewall", forwarding, "enabled", "0")

    lines = store.to_script(include_commit=False, include_reload=False).splitlines()
    assert "uci set firewall.@zone[1].masq='1'" in lines
    assert "uci set firewall.@forwarding[0].enabled='0'" in lines
    assert not any(wan_zone in line for line in lines)


def test_exported_anonymous_index_follows_deletes():
    """Test that indexes account for sections deleted earlier in the script."""
    store = UCIStore()
    store.load_package("firewall", FIREWALL_EXPORT)
    lan_zone, wan_zone = [s.name for s in store.sections("firewall", "zone")]

    store.delete("firewall", lan_zone)
    store.set("firewall", wan_zone, "masq", "1")

    lines = store.to_script(include_commit=False, include_reload=False).splitlines()
    assert lines[2:] == ["uci delete firewall.@zone[0]", "uci set firewall.@zone[0].masq='1'"]


def test_added_anonymous_sections_indexed_after_commit():
    """Test that sections added and committed are then addressed by index."""
    store = UCIStore()
    store.load_package("firewall", FIREWALL_EXPORT)
    zone = store.add("firewall", "zone")
    store.set("firewall", zone, "name", "ahwlan")
    assert f"uci set firewall.${{{zone}}}.name='ahwlan'" in store.to_script()

    store.commit()
    store.set("firewall", zone, "masq", "1")

    assert "uci set firewall.@zone[2].masq='1'" in store.to_script()


def test_from_dict_anonymous_ids_used_as_is(stock_store):
    """Test that ids given in the dict layout are taken as the device's ids."""
    stock_store.set("firewall", "cfg02dc81", "mtu_fix", "1")

    assert "uci set firewall.cfg02dc81.mtu_fix='1'" in stock_store.to_script()
