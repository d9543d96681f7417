#!/usr/bin/env python3
"""
Simple example demonstrating basic wrtmesh usage.

Turns a stock OpenWrt HaLow board into an EasyMesh controller that routes
the mesh out of its wan port, then prints the uci commands.
"""

import random

from wrtmesh import EthernetPort, MeshIntent, SSHConnection, UCIStore, plan_topology

STOCK_CONFIG = """
network:
  lan:
    .type: interface
    device: br-lan
    proto: static
    ipaddr: 192.168.1.1
    netmask: 255.255.255.0
  cfg030f15:
    .type: device
    .anonymous: true
    name: br-lan
    type: bridge
    ports: [lan1]
  wan:
    .type: interface
    device: wan
    proto: dhcp
wireless:
  radio0:
    .type: wifi-device
    type: morse
  default_radio0:
    .type: wifi-iface
    device: radio0
    network: lan
    mode: ap
    ssid: halow
firewall:
  lanzone:
    .type: zone
    name: lan
    network: [lan]
  wanzone:
    .type: zone
    name: wan
    network: [wan]
    masq: 1
dhcp:
  dns:
    .type: dnsmasq
    .anonymous: true
    domain: lan
"""


def main():
    store = UCIStore.from_yaml(STOCK_CONFIG)
    ports = [EthernetPort(device="lan1"), EthernetPort(device="wan", role="wan")]

    intent = MeshIntent(role="controller", uplink="ethernet-wan", ssid="my-mesh", key="MySecurePassword123")
    plan_topology(store, intent, ports, rng=random.Random(1))

    print("Generated UCI commands:")
    print("=" * 60)
    print(store.to_script())

    # Example of running it on a device (commented out)
    # with SSHConnection(host="192.168.1.1", key_filename="/path/to/ssh/key") as ssh:
    #     store = ssh.fetch_store()
    #     plan_topology(store, intent, ports)
    #     ssh.run_script(store.to_script(include_reload=False))
    #     ssh.reload_services(store.changed_packages())


if __name__ == "__main__":
    main()
