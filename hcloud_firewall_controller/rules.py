"""
Firewall rule model.

Builds the set of rules that should exist on the firewall from the configured
protocols, ports and source networks, and compares two rule sets independent of
ordering and representation.
"""
import enum
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Tuple

from .errors import ConfigurationError

MIN_PORT = 1
MAX_PORT = 65535


class Protocol(enum.Enum):
    ICMP = "icmp"
    GRE = "gre"
    ESP = "esp"
    TCP = "tcp"
    UDP = "udp"

    @property
    def has_ports(self):
        return self in (Protocol.TCP, Protocol.UDP)


SIMPLE_PROTOCOLS = frozenset({Protocol.ICMP, Protocol.GRE, Protocol.ESP})

_PROTOCOL_ORDER = {protocol: index for index, protocol in enumerate(Protocol)}


@dataclass(frozen=True, order=True)
class PortRange:
    """Inclusive port range, a single port when start == end"""

    start: int
    end: int

    def __post_init__(self):
        if not MIN_PORT <= self.start <= self.end <= MAX_PORT:
            raise ValueError(f"Invalid port range {self.start}-{self.end}")

    @classmethod
    def single(cls, port):
        return cls(port, port)

    @classmethod
    def parse(cls, text):
        """Parse '80' or '80-85' (the format of the Hetzner 'port' field)"""
        text = text.strip()
        if text == "any":
            return cls(MIN_PORT, MAX_PORT)
        start, sep, end = text.partition("-")
        try:
            first = int(start)
            last = int(end) if sep else first
        except ValueError:
            raise ValueError(f"Invalid port '{text}'") from None
        return cls(first, last)

    def __str__(self):
        if self.start == self.end:
            return str(self.start)
        return f"{self.start}-{self.end}"


def normalize_ports(ports: Iterable[PortRange]) -> Tuple[PortRange, ...]:
    """Merge overlapping and adjacent ranges into the minimal sorted covering set"""
    merged = []
    for port in sorted(set(ports)):
        if merged and port.start <= merged[-1].end + 1:
            if port.end > merged[-1].end:
                merged[-1] = PortRange(merged[-1].start, port.end)
        else:
            merged.append(port)
    return tuple(merged)


def parse_ports(values: Iterable[str]) -> Tuple[PortRange, ...]:
    """
    Parse port specifications such as '80', '80,443' or '80,443-450'.

    Every value may hold a comma separated list; the values are combined and
    normalized.

    Raises:
        ConfigurationError: if a port is not numeric, out of range or a range
            is reversed.
    """
    ports = []
    for value in values:
        for item in value.split(","):
            if not item.strip():
                continue
            try:
                ports.append(PortRange.parse(item))
            except ValueError as e:
                raise ConfigurationError(f"{e}, expected PORT or START-END between {MIN_PORT} and {MAX_PORT}") from None
    return normalize_ports(ports)


def network_sort_key(network):
    return (network.version, network.network_address, network.prefixlen)


def sort_networks(networks):
    return sorted(networks, key=network_sort_key)


@dataclass(frozen=True)
class RuleSpec:
    """
    One firewall rule as this controller models it.

    TCP and UDP carry a set of port ranges, the other protocols none. Ports
    are normalized on construction, so two specs allowing the same ports
    compare equal whatever ranges they were built from.
    """

    protocol: Protocol
    ports: FrozenSet[PortRange] = frozenset()
    sources: FrozenSet = frozenset()
    direction: str = "in"
    destinations: FrozenSet = frozenset()

    def __post_init__(self):
        if self.protocol.has_ports and not self.ports:
            raise ValueError(f"{self.protocol.name} rules need at least one port")
        if not self.protocol.has_ports and self.ports:
            raise ValueError(f"{self.protocol.name} rules take no ports")
        object.__setattr__(self, "ports", frozenset(normalize_ports(self.ports)))
        object.__setattr__(self, "sources", frozenset(self.sources))
        object.__setattr__(self, "destinations", frozenset(self.destinations))

    def canonical(self):
        return (
            _PROTOCOL_ORDER[self.protocol],
            self.direction,
            tuple(str(port) for port in sorted(self.ports)),
            tuple(str(network) for network in sort_networks(self.sources)),
            tuple(str(network) for network in sort_networks(self.destinations)),
        )


def build_rules(simple_protocols, tcp_ports, udp_ports, sources) -> FrozenSet[RuleSpec]:
    """
    Build the desired rule set.

    One rule per enabled simple protocol, plus one TCP and one UDP rule when
    their port sets are non-empty. Every rule allows the full ``sources`` set,
    which may be empty.
    """
    sources = frozenset(sources)
    rules = set()
    for protocol in simple_protocols:
        if protocol not in SIMPLE_PROTOCOLS:
            raise ValueError(f"{protocol} is not a simple protocol")
        rules.add(RuleSpec(protocol, sources=sources))
    if tcp_ports:
        rules.add(RuleSpec(Protocol.TCP, ports=frozenset(tcp_ports), sources=sources))
    if udp_ports:
        rules.add(RuleSpec(Protocol.UDP, ports=frozenset(udp_ports), sources=sources))
    return frozenset(rules)


def canonicalize(rules: Iterable[RuleSpec]):
    """Sorted, duplicate free representation of a rule set"""
    return tuple(sorted({rule.canonical() for rule in rules}))


def rules_equal(desired: Iterable[RuleSpec], current: Iterable[RuleSpec]) -> bool:
    """True if both rule sets allow exactly the same traffic, in any order"""
    return canonicalize(desired) == canonicalize(current)
