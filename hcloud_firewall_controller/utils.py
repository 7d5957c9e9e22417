import ipaddress
import logging
from dataclasses import dataclass
from typing import FrozenSet, Optional

import requests
from hcloud import Client, HCloudException
from hcloud.firewalls.domain import Firewall, FirewallRule

from . import __version__
from .errors import ApiFailure, ConfigurationError
from .rules import PortRange, Protocol, RuleSpec, sort_networks

logger = logging.getLogger(__name__)

APPLICATION_NAME = "hcloud-firewall-controller"

API_ERRORS = (HCloudException, requests.RequestException, ValueError)


def get_hcloud_client(token, timeout=None):
    """Create and return an authenticated Hetzner Cloud client"""
    if not token:
        raise ConfigurationError("Hetzner Cloud API token is required but not provided or empty")
    return Client(
        token=token,
        application_name=APPLICATION_NAME,
        application_version=__version__,
        timeout=timeout,
    )


@dataclass(frozen=True)
class RemoteFirewall:
    """A firewall as currently stored by Hetzner Cloud"""

    id: int
    name: str
    rules: FrozenSet[RuleSpec]
    duplicate_rules: int = 0


def to_firewall_rules(rules):
    """
    Convert rule specs into Hetzner firewall rules.

    Hetzner rules hold a single port or port range, so TCP and UDP specs
    become one rule per range. The result is in canonical order.
    """
    firewall_rules = []
    for rule in sorted(rules, key=RuleSpec.canonical):
        source_ips = [str(network) for network in sort_networks(rule.sources)]
        destination_ips = [str(network) for network in sort_networks(rule.destinations)]
        if rule.protocol.has_ports:
            for port in sorted(rule.ports):
                firewall_rules.append(
                    FirewallRule(
                        direction=rule.direction,
                        protocol=rule.protocol.value,
                        source_ips=source_ips,
                        destination_ips=destination_ips,
                        port=str(port),
                        description=f"{rule.protocol.name}-{port}",
                    )
                )
        else:
            firewall_rules.append(
                FirewallRule(
                    direction=rule.direction,
                    protocol=rule.protocol.value,
                    source_ips=source_ips,
                    destination_ips=destination_ips,
                    description=rule.protocol.name,
                )
            )
    return firewall_rules


def from_firewall_rules(firewall_rules) -> FrozenSet[RuleSpec]:
    """
    Convert Hetzner firewall rules back into rule specs.

    Rules sharing protocol, direction, sources and destinations are folded
    into one spec holding the union of their ports, the inverse of
    to_firewall_rules().

    Raises:
        ValueError: for a protocol, port or network this controller does not know.
    """
    groups = {}
    for firewall_rule in firewall_rules or []:
        protocol = Protocol(firewall_rule.protocol)
        sources = frozenset(ipaddress.ip_network(ip, strict=False) for ip in firewall_rule.source_ips or [])
        destinations = frozenset(ipaddress.ip_network(ip, strict=False) for ip in firewall_rule.destination_ips or [])
        ports = groups.setdefault((protocol, firewall_rule.direction, sources, destinations), set())
        if protocol.has_ports and firewall_rule.port:
            ports.add(PortRange.parse(firewall_rule.port))

    return frozenset(
        RuleSpec(protocol, ports=frozenset(ports), sources=sources, direction=direction, destinations=destinations)
        for (protocol, direction, sources, destinations), ports in groups.items()
    )


def count_duplicate_rules(firewall_rules):
    """Number of rules that repeat an earlier rule exactly, ignoring descriptions and ordering"""
    seen = set()
    duplicates = 0
    for firewall_rule in firewall_rules or []:
        key = (
            firewall_rule.direction,
            firewall_rule.protocol,
            firewall_rule.port,
            frozenset(ipaddress.ip_network(ip, strict=False) for ip in firewall_rule.source_ips or []),
            frozenset(ipaddress.ip_network(ip, strict=False) for ip in firewall_rule.destination_ips or []),
        )
        if key in seen:
            duplicates += 1
        seen.add(key)
    return duplicates


def _remote_firewall(firewall):
    return RemoteFirewall(
        id=firewall.id,
        name=firewall.name,
        rules=from_firewall_rules(firewall.rules),
        duplicate_rules=count_duplicate_rules(firewall.rules),
    )


class HcloudFirewallApi:
    """
    Firewall operations of one Hetzner Cloud project.

    Every failure is raised as ApiFailure naming the stage it happened in.
    """

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_token(cls, token, timeout=None):
        return cls(get_hcloud_client(token, timeout=timeout))

    def find(self, name) -> Optional[RemoteFirewall]:
        try:
            firewall = self.client.firewalls.get_by_name(name)
            if firewall is None:
                return None
            logger.debug("Firewall '%s' (id: %s) found with %d rules", firewall.name, firewall.id, len(firewall.rules or []))
            return _remote_firewall(firewall)
        except API_ERRORS as e:
            raise ApiFailure("lookup", e) from e

    def create(self, name) -> RemoteFirewall:
        try:
            response = self.client.firewalls.create(name=name, rules=[])
            for action in response.actions or []:
                action.wait_until_finished()
            return _remote_firewall(response.firewall)
        except API_ERRORS as e:
            raise ApiFailure("create", e) from e

    def update(self, firewall_id, rules):
        """Replace all rules of the firewall and wait until Hetzner applied them"""
        try:
            actions = self.client.firewalls.set_rules(Firewall(id=firewall_id), to_firewall_rules(rules))
            for action in actions or []:
                action.wait_until_finished()
        except API_ERRORS as e:
            raise ApiFailure("apply", e) from e
