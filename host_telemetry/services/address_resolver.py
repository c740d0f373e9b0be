"""
Infer the host's IPv4 address from inside a container.

Strategies are tried in order; the first address that passes the exclusion
filter wins. Loopback, the unspecified/broadcast addresses and the
172.16.0.0/12 block used by container bridges are never returned.
"""
import re
from ipaddress import IPv4Address, ip_network
from typing import Callable, Iterable, List, NamedTuple, Optional, Tuple

import structlog

from host_telemetry.models.host import UNAVAILABLE, NetworkIdentity
from host_telemetry.services import container_info
from host_telemetry.services.cascade import RECOVERABLE_ERRORS, Strategy, first_successful
from host_telemetry.services.host_paths import HostPathResolver
from host_telemetry.services.namespace_exec import CommandRunner

_LOOPBACK_NETWORK = ip_network("127.0.0.0/8")
_BRIDGE_NETWORK = ip_network("172.16.0.0/12")
_REJECTED_ADDRESSES = (IPv4Address("0.0.0.0"), IPv4Address("255.255.255.255"))
_PREFERRED_PREFIXES = ("192.168.", "10.")

_IPV4_PATTERN = re.compile(r"(?<![\d.])(\d{1,3}(?:\.\d{1,3}){3})(?![\d.])")
_INET_PATTERN = re.compile(r"\binet\s+(\d{1,3}(?:\.\d{1,3}){3})")
# "|-- 192.168.0.19" followed by "/32 host LOCAL" marks an address of this host
_FIB_LEAF_PATTERN = re.compile(r"\|--\s+(\d{1,3}(?:\.\d{1,3}){3})")
_HEX_ADDRESS_PATTERN = re.compile(r"^[0-9a-fA-F]{8}$")

HOSTNAME_COMMAND = "hostname -i 2>/dev/null"
INTERFACES_COMMAND = "ip -4 addr show 2>/dev/null"

DEFAULT_DESTINATION = "00000000"
ROUTE_MASK_COLUMN = 7
LOOPBACK_DEVICE = "lo"


class NeighborEntry(NamedTuple):
    ip_address: str
    mac: str
    device: str


def parse_ipv4(text: str) -> Optional[IPv4Address]:
    try:
        return IPv4Address(text.strip())
    except ValueError:
        return None


def is_excluded(address: IPv4Address) -> bool:
    return (
        address in _LOOPBACK_NETWORK
        or address in _BRIDGE_NETWORK
        or address in _REJECTED_ADDRESSES
    )


def is_candidate(text: str) -> bool:
    """True if ``text`` is a dotted-quad IPv4 address that may identify the host."""
    address = parse_ipv4(text)
    return address is not None and not is_excluded(address)


def prefer_private(addresses: Iterable[str]) -> Optional[str]:
    """First candidate in a 192.168/16 or 10/8 range, else the first candidate."""
    candidates: List[str] = []
    for address in addresses:
        if is_candidate(address) and address not in candidates:
            candidates.append(address)
    for address in candidates:
        if address.startswith(_PREFERRED_PREFIXES):
            return address
    return candidates[0] if candidates else None


def hex_to_ipv4(value: str) -> Optional[str]:
    """Decode a little-endian hex address from /proc/net/route, e.g. 0100A8C0 -> 192.168.0.1."""
    if not _HEX_ADDRESS_PATTERN.match(value):
        return None
    octets = [int(value[i:i + 2], 16) for i in (6, 4, 2, 0)]
    return ".".join(str(octet) for octet in octets)


def parse_neighbor_table(arp: str) -> List[NeighborEntry]:
    """
    Parse /proc/net/arp.

    Format: ``IP address  HW type  Flags  HW address  Mask  Device``.
    """
    entries: List[NeighborEntry] = []
    for line in arp.splitlines():
        parts = line.split()
        if not parts or parts[0] == "IP":
            continue
        if len(parts) >= 6:
            entries.append(NeighborEntry(parts[0], parts[3].lower(), parts[5]))
        else:
            entries.append(NeighborEntry(parts[0], "", ""))
    return entries


def parse_route_rows(route: str) -> List[List[str]]:
    """Rows of /proc/net/route without the ``Iface Destination ...`` header."""
    rows = []
    for line in route.splitlines():
        parts = line.split()
        if len(parts) < 3 or parts[0] == "Iface":
            continue
        rows.append(parts)
    return rows


def default_route_interface(route: str) -> Optional[str]:
    for parts in parse_route_rows(route):
        if parts[0] != LOOPBACK_DEVICE and parts[1] == DEFAULT_DESTINATION:
            return parts[0]
    return None


def route_field_addresses(route: str, interface: str) -> List[str]:
    """
    Addresses found in the hex columns of ``interface``'s routes.

    The mask column is never read, and decoded values starting with 255 are
    treated as masks.
    """
    found: List[str] = []
    for parts in parse_route_rows(route):
        if parts[0] != interface:
            continue
        for column in range(2, min(len(parts), ROUTE_MASK_COLUMN + 1)):
            if column == ROUTE_MASK_COLUMN or parts[column] == DEFAULT_DESTINATION:
                continue
            address = hex_to_ipv4(parts[column])
            if address is None or address.startswith("255."):
                continue
            if is_candidate(address) and address not in found:
                found.append(address)
    return found


def parse_fib_trie(fib_trie: str) -> Tuple[List[str], List[str]]:
    """
    Candidate addresses from /proc/net/fib_trie.

    Returns (local, every): the addresses of local host entries, and every
    candidate dotted quad found anywhere in the file.
    """
    lines = fib_trie.splitlines()
    local: List[str] = []
    for index, line in enumerate(lines[:-1]):
        match = _FIB_LEAF_PATTERN.search(line)
        if match and "host LOCAL" in lines[index + 1]:
            local.append(match.group(1))
    others = [match.group(1) for match in _IPV4_PATTERN.finditer(fib_trie)]
    return (
        [address for address in local if is_candidate(address)],
        [address for address in others if is_candidate(address)],
    )


class AddressResolver:
    """
    Six-strategy cascade for the host's IPv4 address.

    1. ``hostname -i`` in the host namespaces
    2. ``ip -4 addr show`` in the host namespaces
    3. host network devices, matched by MAC against the neighbor table
    4. /proc/net/fib_trie
    5. default route interface from /proc/net/route
    6. /proc/net/arp

    If none of them succeeds, the container's own interfaces are used.
    """

    def __init__(
        self,
        paths: HostPathResolver,
        executor: Optional[CommandRunner] = None,
        local_addresses: Optional[Callable[[], List[str]]] = None,
        logger=None,
    ) -> None:
        self.paths = paths
        self.executor = executor
        self.local_addresses = local_addresses or container_info.ipv4_addresses
        self._log = logger or structlog.get_logger()

    def strategies(self) -> List[Strategy]:
        return [
            Strategy("hostname_query", self.hostname_query),
            Strategy("interface_query", self.interface_query),
            Strategy("net_devices", self.net_devices),
            Strategy("fib_trie", self.fib_trie),
            Strategy("default_route", self.default_route),
            Strategy("neighbor_table", self.neighbor_table),
            Strategy("container_interfaces", self.container_interfaces),
        ]

    def resolve(self) -> NetworkIdentity:
        resolution = first_successful(self.strategies(), logger=self._log, lookup="host_ip")
        if resolution is None:
            self._log.info("address_unavailable")
            return NetworkIdentity(ip_address=UNAVAILABLE, source="none")

        self._log.info("address_resolved", ip=resolution.value, source=resolution.source)
        return NetworkIdentity(ip_address=resolution.value, source=resolution.source)

    # --- strategies ---------------------------------------------------------

    def _run(self, command: str) -> Optional[str]:
        if self.executor is None:
            return None
        return self.executor.run(command)

    def hostname_query(self) -> Optional[str]:
        output = self._run(HOSTNAME_COMMAND)
        if not output:
            return None
        # hostname -i may print several addresses, IPv6 included
        for token in output.split():
            if is_candidate(token):
                return token
        return None

    def interface_query(self) -> Optional[str]:
        output = self._run(INTERFACES_COMMAND)
        if not output:
            return None
        for match in _INET_PATTERN.finditer(output):
            if is_candidate(match.group(1)):
                return match.group(1)
        return None

    def net_devices(self) -> Optional[str]:
        net_dir = self.paths.locate("/sys/class/net")
        if net_dir is None or not net_dir.is_dir():
            return None
        interfaces = sorted(
            entry.name for entry in net_dir.iterdir() if entry.name != LOOPBACK_DEVICE
        )
        self._log.debug("net_devices_found", interfaces=interfaces)
        if not interfaces:
            return None

        neighbors = parse_neighbor_table(self.paths.read("/proc/net/arp"))
        for interface in interfaces:
            mac = self._interface_mac(interface)
            if not mac:
                continue
            for entry in neighbors:
                if entry.device == interface and entry.mac == mac and is_candidate(entry.ip_address):
                    return entry.ip_address
        return None

    def fib_trie(self) -> Optional[str]:
        fib_trie = self.paths.read("/proc/net/fib_trie")
        if not fib_trie:
            return None
        local, every = parse_fib_trie(fib_trie)
        return prefer_private(local) or prefer_private(every)

    def default_route(self) -> Optional[str]:
        route = self.paths.read("/proc/net/route")
        interface = default_route_interface(route)
        if interface is None:
            return None
        self._log.debug("default_route_interface", interface=interface)

        mac = self._interface_mac(interface)
        for entry in parse_neighbor_table(self.paths.read("/proc/net/arp")):
            if entry.device != interface:
                continue
            if mac and entry.mac != mac:
                continue
            if is_candidate(entry.ip_address):
                return entry.ip_address

        return prefer_private(route_field_addresses(route, interface))

    def neighbor_table(self) -> Optional[str]:
        entries = parse_neighbor_table(self.paths.read("/proc/net/arp"))
        return prefer_private(entry.ip_address for entry in entries)

    def container_interfaces(self) -> Optional[str]:
        for address in self.local_addresses():
            if is_candidate(address):
                return address
        return None

    def _interface_mac(self, interface: str) -> Optional[str]:
        path = self.paths.locate(f"/sys/class/net/{interface}/address")
        if path is None:
            return None
        try:
            if not path.is_file():
                return None
            return path.read_text(encoding="utf-8").strip().lower() or None
        except RECOVERABLE_ERRORS as exc:
            self._log.debug("interface_mac_unreadable", interface=interface, error=str(exc))
            return None
