import shutil
from ipaddress import IPv4Address

import pytest
from structlog.testing import capture_logs

from host_telemetry.models.host import UNAVAILABLE
from host_telemetry.services.address_resolver import (
    HOSTNAME_COMMAND,
    INTERFACES_COMMAND,
    AddressResolver,
    default_route_interface,
    hex_to_ipv4,
    is_candidate,
    is_excluded,
    parse_fib_trie,
    parse_neighbor_table,
    prefer_private,
    route_field_addresses,
)

IP_ADDR_OUTPUT = """1: lo: <LOOPBACK,UP,LOWER_UP> mtu 65536 qdisc noqueue state UNKNOWN
    inet 127.0.0.1/8 scope host lo
2: docker0: <BROADCAST,MULTICAST,UP> mtu 1500 qdisc noqueue state UP
    inet 172.17.0.1/16 brd 172.17.255.255 scope global docker0
3: eth0: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500 qdisc fq_codel state UP
    inet 192.168.1.2/24 brd 192.168.1.255 scope global eth0
"""

FIB_TRIE = """Main:
  +-- 0.0.0.0/0 3 0 5
     |-- 0.0.0.0
        /0 universe UNICAST
     +-- 127.0.0.0/8 2 0 2
        +-- 127.0.0.0/31 1 0 0
           |-- 127.0.0.0
              /8 host LOCAL
           |-- 127.0.0.1
              /32 host LOCAL
     |-- 172.17.0.1
        /32 host LOCAL
     +-- 192.168.1.0/24 2 0 2
        |-- 192.168.1.0
           /24 link UNICAST
        |-- 192.168.1.4
           /32 host LOCAL
        |-- 192.168.1.255
           /32 link BROADCAST
"""

ROUTE = """Iface\tDestination\tGateway \tFlags\tRefCnt\tUse\tMetric\tMask\t\tMTU\tWindow\tIRTT
eth1\t00000000\t0101A8C0\t0003\t0\t0\t100\t00000000\t0\t0\t0
eth1\t0001A8C0\t00000000\t0001\t0\t0\t100\t00FFFFFF\t0\t0\t0
docker0\t000011AC\t00000000\t0001\t0\t0\t0\t0000FFFF\t0\t0\t0
"""

ARP = """IP address       HW type     Flags       HW address            Mask     Device
10.0.0.6         0x1         0x2         aa:bb:cc:dd:ee:06     *        eth2
192.168.1.3      0x1         0x2         AA:BB:CC:DD:EE:01     *        eth0
192.168.1.5      0x1         0x2         aa:bb:cc:dd:ee:02     *        eth1
172.17.0.3       0x1         0x2         02:42:ac:11:00:03     *        docker0
"""


class HostNetwork:
    """A fake host where every strategy has its own distinct answer."""

    def __init__(self, fake_host, executor):
        self.fake_host = fake_host
        self.executor = executor
        self.executor.responses.update(
            {
                HOSTNAME_COMMAND: "192.168.1.1 fe80::1",
                INTERFACES_COMMAND: IP_ADDR_OUTPUT,
            }
        )
        self.local = ["172.17.0.2", "192.168.65.3"]
        fake_host.write_host("/sys/class/net/lo/address", "00:00:00:00:00:00")
        fake_host.write_host("/sys/class/net/eth0/address", "aa:bb:cc:dd:ee:01")
        fake_host.write_host("/sys/class/net/eth1/address", "aa:bb:cc:dd:ee:02")
        fake_host.write_host("/proc/net/fib_trie", FIB_TRIE)
        fake_host.write_host("/proc/net/route", ROUTE)
        fake_host.write_host("/proc/net/arp", ARP)

    def disable(self, strategy):
        host_root = self.fake_host.host_root
        if strategy == "hostname_query":
            del self.executor.responses[HOSTNAME_COMMAND]
        elif strategy == "interface_query":
            del self.executor.responses[INTERFACES_COMMAND]
        elif strategy == "net_devices":
            shutil.rmtree(host_root / "sys" / "class" / "net")
        elif strategy == "fib_trie":
            (host_root / "proc" / "net" / "fib_trie").unlink()
        elif strategy == "default_route":
            (host_root / "proc" / "net" / "route").unlink()
        elif strategy == "neighbor_table":
            (host_root / "proc" / "net" / "arp").unlink()
        elif strategy == "container_interfaces":
            self.local = []

    def resolver(self):
        return AddressResolver(
            self.fake_host.resolver(),
            self.executor,
            local_addresses=lambda: self.local,
        )


CASCADE = [
    ("hostname_query", "192.168.1.1"),
    ("interface_query", "192.168.1.2"),
    ("net_devices", "192.168.1.3"),
    ("fib_trie", "192.168.1.4"),
    ("default_route", "192.168.1.5"),
    ("neighbor_table", "10.0.0.6"),
    ("container_interfaces", "192.168.65.3"),
]


@pytest.mark.parametrize("disabled", range(len(CASCADE)))
def test_disabling_a_strategy_falls_through_to_the_next(fake_host, fake_executor, disabled):
    network = HostNetwork(fake_host, fake_executor)
    for name, _ in CASCADE[:disabled]:
        network.disable(name)

    identity = network.resolver().resolve()

    expected_source, expected_ip = CASCADE[disabled]
    assert identity.source == expected_source
    assert identity.ip_address == expected_ip


def test_all_strategies_disabled_yields_unavailable(fake_host, fake_executor):
    network = HostNetwork(fake_host, fake_executor)
    for name, _ in CASCADE:
        network.disable(name)

    identity = network.resolver().resolve()

    assert identity.ip_address == UNAVAILABLE
    assert identity.source == "none"


def test_default_route_with_matching_neighbor_entry(fake_host, fake_executor):
    fake_host.write_host(
        "/proc/net/route",
        "Iface\tDestination\tGateway \tFlags\tRefCnt\tUse\tMetric\tMask\t\tMTU\tWindow\tIRTT\n"
        "eth0\t00000000\t0100A8C0\t0003\t0\t0\t0\t00000000\t0\t0\t0\n"
        "eth0\t0000A8C0\t00000000\t0001\t0\t0\t0\t00FFFFFF\t0\t0\t0\n",
    )
    fake_host.write_host(
        "/proc/net/arp",
        "IP address       HW type     Flags       HW address            Mask     Device\n"
        "192.168.0.19     0x1         0x2         aa:bb:cc:dd:ee:ff     *        eth0\n",
    )
    fake_host.write_host("/sys/class/net/eth0/address", "aa:bb:cc:dd:ee:ff")
    resolver = AddressResolver(fake_host.resolver(), fake_executor, local_addresses=list)

    assert resolver.default_route() == "192.168.0.19"
    assert resolver.resolve().ip_address == "192.168.0.19"


def test_default_route_skips_neighbor_with_other_mac(fake_host, fake_executor):
    fake_host.write_host("/proc/net/route", ROUTE)
    fake_host.write_host(
        "/proc/net/arp",
        "IP address HW type Flags HW address Mask Device\n"
        "192.168.1.77 0x1 0x2 11:22:33:44:55:66 * eth1\n",
    )
    fake_host.write_host("/sys/class/net/eth1/address", "aa:bb:cc:dd:ee:02")
    resolver = AddressResolver(fake_host.resolver(), fake_executor, local_addresses=list)

    # no MAC match, so the gateway column of eth1's routes is used
    assert resolver.default_route() == "192.168.1.1"


def test_undecodable_interface_mac_does_not_abort_default_route(fake_host, fake_executor):
    fake_host.write_host(
        "/proc/net/route",
        "Iface Destination Gateway Flags RefCnt Use Metric Mask MTU Window IRTT\n"
        "eth0 00000000 0100A8C0 0003 0 0 0 00000000 0 0 0\n",
    )
    fake_host.write_host(
        "/proc/net/arp",
        "IP address HW type Flags HW address Mask Device\n"
        "192.168.0.19 0x1 0x2 aa:bb:cc:dd:ee:ff * eth0\n"
        "10.0.0.9 0x1 0x2 aa:bb:cc:dd:ee:09 * eth9\n",
    )
    address = fake_host.host_root / "sys/class/net/eth0/address"
    address.parent.mkdir(parents=True, exist_ok=True)
    address.write_bytes(b"\xff\xfe\xfa")
    resolver = AddressResolver(fake_host.resolver(), fake_executor, local_addresses=list)

    assert resolver.net_devices() is None
    identity = resolver.resolve()
    assert identity.source == "default_route"
    assert identity.ip_address == "192.168.0.19"


def test_default_route_rejects_masks_in_route_fields(fake_host, fake_executor):
    fake_host.write_host(
        "/proc/net/route",
        "Iface Destination Gateway Flags RefCnt Use Metric Mask MTU Window IRTT\n"
        "eth0 00000000 00FFFFFF 0003 0 0 0 00FFFFFF 0 0 0\n",
    )
    resolver = AddressResolver(fake_host.resolver(), fake_executor, local_addresses=list)

    assert resolver.default_route() is None


def test_default_route_ignores_loopback_default(fake_host):
    assert default_route_interface("Iface Destination\nlo 00000000 00000000\n") is None
    assert default_route_interface(ROUTE) == "eth1"


def test_exclusions_hold_across_every_strategy(fake_host, fake_executor):
    fake_host.write_host("/sys/class/net/docker0/address", "02:42:ac:11:00:03")
    fake_host.write_host(
        "/proc/net/fib_trie",
        "|-- 127.0.0.1\n   /32 host LOCAL\n|-- 172.20.0.1\n   /32 host LOCAL\n|-- 255.255.255.255\n",
    )
    fake_host.write_host(
        "/proc/net/route",
        "Iface Destination Gateway Flags RefCnt Use Metric Mask MTU Window IRTT\n"
        "docker0 00000000 010011AC 0003 0 0 0 00000000 0 0 0\n",
    )
    fake_host.write_host(
        "/proc/net/arp",
        "IP address HW type Flags HW address Mask Device\n"
        "172.17.0.3 0x1 0x2 02:42:ac:11:00:03 * docker0\n"
        "0.0.0.0 0x1 0x0 00:00:00:00:00:00 * docker0\n"
        "255.255.255.255 0x1 0x0 00:00:00:00:00:00 * docker0\n"
        "127.0.0.1 0x1 0x2 00:00:00:00:00:00 * lo\n",
    )
    fake_executor.responses.update(
        {
            HOSTNAME_COMMAND: "127.0.1.1 172.31.0.4",
            INTERFACES_COMMAND: "inet 127.0.0.1/8 scope host lo\ninet 172.18.0.1/16 scope global br-1",
        }
    )
    resolver = AddressResolver(
        fake_host.resolver(),
        fake_executor,
        local_addresses=lambda: ["127.0.0.1", "172.31.255.254", "0.0.0.0"],
    )

    for strategy in resolver.strategies():
        assert strategy.run() is None, strategy.name
    assert resolver.resolve().ip_address == UNAVAILABLE


def test_no_executor_skips_namespace_strategies(fake_host):
    resolver = AddressResolver(fake_host.resolver(), None, local_addresses=list)

    assert resolver.hostname_query() is None
    assert resolver.interface_query() is None


def test_resolution_is_logged_with_source(fake_host, fake_executor):
    network = HostNetwork(fake_host, fake_executor)
    network.disable("hostname_query")

    with capture_logs() as logs:
        network.resolver().resolve()

    resolved = [entry for entry in logs if entry["event"] == "address_resolved"]
    assert resolved == [
        {"event": "address_resolved", "ip": "192.168.1.2", "source": "interface_query", "log_level": "info"}
    ]


@pytest.mark.parametrize(
    "address, excluded",
    [
        ("127.0.0.1", True),
        ("127.255.0.9", True),
        ("0.0.0.0", True),
        ("255.255.255.255", True),
        ("172.16.0.1", True),
        ("172.31.255.255", True),
        ("172.15.0.1", False),
        ("172.32.0.1", False),
        ("192.168.0.19", False),
        ("10.1.2.3", False),
        ("8.8.8.8", False),
    ],
)
def test_is_excluded(address, excluded):
    assert is_excluded(IPv4Address(address)) is excluded


def test_is_candidate_rejects_non_ipv4():
    assert is_candidate("192.168.0.19") is True
    assert is_candidate("fe80::1") is False
    assert is_candidate("300.1.1.1") is False
    assert is_candidate("") is False


def test_prefer_private():
    assert prefer_private(["8.8.8.8", "172.17.0.1", "10.0.0.2", "192.168.0.3"]) == "10.0.0.2"
    assert prefer_private(["8.8.8.8", "1.1.1.1"]) == "8.8.8.8"
    assert prefer_private(["127.0.0.1"]) is None


def test_hex_to_ipv4():
    assert hex_to_ipv4("0100A8C0") == "192.168.0.1"
    assert hex_to_ipv4("00FFFFFF") == "255.255.255.0"
    assert hex_to_ipv4("0003") is None


def test_parse_fib_trie_prefers_local_host_entries():
    local, every = parse_fib_trie(FIB_TRIE)

    assert local == ["192.168.1.4"]
    assert "192.168.1.0" in every
    assert not any(address.startswith(("127.", "172.17.")) for address in every)


def test_fib_trie_without_local_entries_uses_any_candidate(fake_host, fake_executor):
    fake_host.write_host("/proc/net/fib_trie", "+-- 8.8.0.0/16\n|-- 10.1.2.3\n   /24 link UNICAST\n")
    resolver = AddressResolver(fake_host.resolver(), fake_executor, local_addresses=list)

    assert resolver.fib_trie() == "10.1.2.3"


def test_parse_neighbor_table_and_route_fields():
    entries = parse_neighbor_table(ARP)

    assert entries[1].ip_address == "192.168.1.3"
    assert entries[1].mac == "aa:bb:cc:dd:ee:01"
    assert entries[1].device == "eth0"
    assert route_field_addresses(ROUTE, "eth1") == ["192.168.1.1"]
