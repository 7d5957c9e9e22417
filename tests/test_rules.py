"""
Tests for rule building and comparison.
"""
import itertools

import pytest

from hcloud_firewall_controller.errors import ConfigurationError
from hcloud_firewall_controller.rules import (
    PortRange,
    Protocol,
    RuleSpec,
    build_rules,
    canonicalize,
    normalize_ports,
    parse_ports,
    rules_equal,
)
from conftest import net


SOURCES = frozenset({net("198.51.100.0/24"), net("203.0.113.9/32")})


def test_parse_ports_single_list_and_ranges():
    assert parse_ports(["80"]) == (PortRange(80, 80),)
    assert parse_ports(["80,443"]) == (PortRange(80, 80), PortRange(443, 443))
    assert parse_ports(["80,443-450", "22"]) == (PortRange(22, 22), PortRange(80, 80), PortRange(443, 450))


def test_parse_ports_merges_overlapping_and_adjacent_ranges():
    assert parse_ports(["80-85,86", "84-90,90"]) == (PortRange(80, 90),)
    assert parse_ports(["443", "443", " 443 "]) == (PortRange(443, 443),)


def test_parse_ports_ignores_empty_items():
    assert parse_ports(["80,,443,"]) == (PortRange(80, 80), PortRange(443, 443))
    assert parse_ports([]) == ()


@pytest.mark.parametrize("value", ["0", "65536", "http", "90-80", "1-", "-5"])
def test_parse_ports_rejects_invalid_ports(value):
    with pytest.raises(ConfigurationError):
        parse_ports([value])


def test_port_range_text_form():
    assert str(PortRange(80, 80)) == "80"
    assert str(PortRange(80, 85)) == "80-85"
    assert PortRange.parse("any") == PortRange(1, 65535)


def test_normalize_ports_keeps_disjoint_ranges():
    ports = [PortRange(100, 200), PortRange(1, 10), PortRange(12, 12)]
    assert normalize_ports(ports) == (PortRange(1, 10), PortRange(12, 12), PortRange(100, 200))


def test_build_rules_example_configuration():
    rules = build_rules(
        {Protocol.ICMP},
        parse_ports(["80,443"]),
        parse_ports(["51820"]),
        SOURCES,
    )

    assert rules == {
        RuleSpec(Protocol.ICMP, sources=SOURCES),
        RuleSpec(Protocol.TCP, ports=frozenset({PortRange(80, 80), PortRange(443, 443)}), sources=SOURCES),
        RuleSpec(Protocol.UDP, ports=frozenset({PortRange(51820, 51820)}), sources=SOURCES),
    }


def test_build_rules_skips_tcp_and_udp_without_ports():
    rules = build_rules({Protocol.GRE, Protocol.ESP}, (), (), SOURCES)
    assert {rule.protocol for rule in rules} == {Protocol.GRE, Protocol.ESP}


def test_build_rules_with_empty_sources_still_emits_rules():
    rules = build_rules({Protocol.ICMP, Protocol.GRE}, parse_ports(["22"]), (), frozenset())

    assert len(rules) == 3
    assert all(rule.sources == frozenset() for rule in rules)


def test_build_rules_rejects_port_protocol_as_simple():
    with pytest.raises(ValueError):
        build_rules({Protocol.TCP}, (), (), SOURCES)


def test_rule_spec_validates_ports():
    with pytest.raises(ValueError):
        RuleSpec(Protocol.TCP)
    with pytest.raises(ValueError):
        RuleSpec(Protocol.ICMP, ports=frozenset({PortRange(80, 80)}))


def test_rule_spec_normalizes_port_representation():
    split = RuleSpec(Protocol.TCP, ports=frozenset({PortRange(80, 85), PortRange(86, 86)}))
    merged = RuleSpec(Protocol.TCP, ports=frozenset({PortRange(80, 86)}))
    assert split == merged


def test_rules_equal_is_order_insensitive():
    desired = list(build_rules(
        {Protocol.ICMP, Protocol.ESP},
        parse_ports(["22,80,443"]),
        parse_ports(["53"]),
        {net("2001:db8::/64"), net("198.51.100.0/24"), net("203.0.113.9/32")},
    ))

    for permutation in itertools.permutations(desired):
        assert rules_equal(desired, list(permutation))


def test_rules_equal_detects_differences():
    desired = build_rules({Protocol.ICMP}, parse_ports(["80"]), (), SOURCES)

    other_sources = build_rules({Protocol.ICMP}, parse_ports(["80"]), (), {net("203.0.113.10/32")})
    other_ports = build_rules({Protocol.ICMP}, parse_ports(["81"]), (), SOURCES)
    fewer_rules = build_rules(set(), parse_ports(["80"]), (), SOURCES)
    outbound = {RuleSpec(Protocol.ICMP, sources=SOURCES, direction="out")} | (desired - {RuleSpec(Protocol.ICMP, sources=SOURCES)})

    assert not rules_equal(desired, other_sources)
    assert not rules_equal(desired, other_ports)
    assert not rules_equal(desired, fewer_rules)
    assert not rules_equal(desired, outbound)
    assert not rules_equal(desired, frozenset())


def test_canonicalize_sorts_by_protocol_then_networks():
    rules = [
        RuleSpec(Protocol.UDP, ports=frozenset({PortRange(53, 53)}), sources={net("2001:db8::/64"), net("10.0.0.0/8")}),
        RuleSpec(Protocol.ICMP, sources={net("10.0.0.0/8")}),
    ]

    canonical = canonicalize(rules)

    assert [entry[0] for entry in canonical] == [0, 4]
    assert canonical[1][3] == ("10.0.0.0/8", "2001:db8::/64")
