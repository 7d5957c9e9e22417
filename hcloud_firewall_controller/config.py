"""
Controller configuration.

Built once at startup from the command line and environment, then passed to
the controller. Every validation problem is reported as ConfigurationError
before the first reconciliation cycle runs.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

from .errors import ConfigurationError
from .ip import DEFAULT_IP_ENDPOINT, parse_static_cidrs
from .rules import PortRange, Protocol, parse_ports

DEFAULT_FIREWALL_NAME = "hcloud-firewall-controller"
DEFAULT_RECONCILIATION_INTERVAL = 60
DEFAULT_HTTP_TIMEOUT = 10
DEFAULT_ACCOUNT_PAUSE = 0.5


@dataclass(frozen=True)
class Account:
    """One Hetzner Cloud project: an API token and the firewall to manage"""

    token: str = field(repr=False)
    firewall_name: str
    label: str


@dataclass(frozen=True)
class ControllerConfig:
    accounts: Tuple[Account, ...]
    simple_protocols: FrozenSet[Protocol] = frozenset()
    tcp_ports: Tuple[PortRange, ...] = ()
    udp_ports: Tuple[PortRange, ...] = ()
    static_cidrs: FrozenSet = frozenset()
    enable_ipv4: bool = True
    enable_ipv6: bool = True
    reconciliation_interval: float = DEFAULT_RECONCILIATION_INTERVAL
    run_once: bool = False
    ip_endpoint: str = DEFAULT_IP_ENDPOINT
    ipv6_endpoint: Optional[str] = None
    ipv6_prefix: int = 128
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    account_pause: float = DEFAULT_ACCOUNT_PAUSE


def parse_accounts(values, default_firewall_name=DEFAULT_FIREWALL_NAME):
    """
    Parse API tokens, comma separated or one per value.

    A token may be given as TOKEN=FIREWALL_NAME to manage a differently named
    firewall in that project.
    """
    accounts = []
    for value in values:
        for item in value.split(","):
            item = item.strip()
            if not item:
                continue
            token, _, firewall_name = item.partition("=")
            token = token.strip()
            firewall_name = firewall_name.strip() or default_firewall_name
            if not token:
                raise ConfigurationError(f"Empty API token for firewall '{firewall_name}'")
            accounts.append(Account(token, firewall_name, f"account {len(accounts) + 1}"))
    if not accounts:
        raise ConfigurationError("At least one Hetzner Cloud API token is required")
    return tuple(accounts)


def build_config(
    tokens,
    firewall_name=DEFAULT_FIREWALL_NAME,
    tcp=(),
    udp=(),
    icmp=False,
    gre=False,
    esp=False,
    ips=(),
    disable_ipv4=False,
    disable_ipv6=False,
    reconciliation_interval=DEFAULT_RECONCILIATION_INTERVAL,
    run_once=False,
    ip_endpoint=DEFAULT_IP_ENDPOINT,
    ipv6_endpoint=None,
    ipv6_prefix=128,
    http_timeout=DEFAULT_HTTP_TIMEOUT,
    account_pause=DEFAULT_ACCOUNT_PAUSE,
):
    """Validate raw option values and return a ControllerConfig"""
    if not firewall_name:
        raise ConfigurationError("Firewall name must not be empty")
    if reconciliation_interval <= 0:
        raise ConfigurationError(f"Reconciliation interval must be positive, got {reconciliation_interval}")
    if http_timeout <= 0:
        raise ConfigurationError(f"HTTP timeout must be positive, got {http_timeout}")
    if not 1 <= ipv6_prefix <= 128:
        raise ConfigurationError(f"IPv6 prefix length must be between 1 and 128, got {ipv6_prefix}")
    if not ip_endpoint:
        raise ConfigurationError("IP endpoint must not be empty")

    simple_protocols = set()
    if icmp:
        simple_protocols.add(Protocol.ICMP)
    if gre:
        simple_protocols.add(Protocol.GRE)
    if esp:
        simple_protocols.add(Protocol.ESP)

    return ControllerConfig(
        accounts=parse_accounts(tokens, firewall_name),
        simple_protocols=frozenset(simple_protocols),
        tcp_ports=parse_ports(tcp),
        udp_ports=parse_ports(udp),
        static_cidrs=parse_static_cidrs(ips),
        enable_ipv4=not disable_ipv4,
        enable_ipv6=not disable_ipv6,
        reconciliation_interval=reconciliation_interval,
        run_once=run_once,
        ip_endpoint=ip_endpoint,
        ipv6_endpoint=ipv6_endpoint or None,
        ipv6_prefix=ipv6_prefix,
        http_timeout=http_timeout,
        account_pause=account_pause,
    )
