"""
Public address discovery.

The public IPv4 and IPv6 addresses are looked up from a plain text "what is my
IP" endpoint and merged with the statically configured networks.
"""
import enum
import ipaddress
import logging

import requests
from requests.adapters import HTTPAdapter

from .errors import ConfigurationError, DiscoveryFailure

logger = logging.getLogger(__name__)

DEFAULT_IP_ENDPOINT = "https://ip.fotoallerlei.com"


class AddressFamily(enum.Enum):
    IPV4 = 4
    IPV6 = 6

    @property
    def wildcard(self):
        """Local address that makes the OS pick a source of this family"""
        return "0.0.0.0" if self is AddressFamily.IPV4 else "::"

    @property
    def host_prefix(self):
        return 32 if self is AddressFamily.IPV4 else 128

    def __str__(self):
        return "IPv4" if self is AddressFamily.IPV4 else "IPv6"


class SourceAddressAdapter(HTTPAdapter):
    """Transport adapter binding outgoing connections to a local address"""

    def __init__(self, source_address, **kwargs):
        self.source_address = source_address
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        kwargs["source_address"] = self.source_address
        super().init_poolmanager(*args, **kwargs)


def family_session(family):
    """Create a requests session that only connects over the given address family"""
    session = requests.Session()
    adapter = SourceAddressAdapter((family.wildcard, 0))
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def is_public_candidate(address):
    """
    False for addresses that can never be the source of traffic from the internet.

    Link-local, loopback, unspecified and multicast addresses, and IPv6
    addresses carrying a zone (fe80::1%eth0), are rejected by the Hetzner
    Cloud API as firewall sources.
    """
    if getattr(address, "scope_id", None):
        return False
    return not (address.is_link_local or address.is_loopback or address.is_unspecified or address.is_multicast)


class IpDiscovery:
    """Discover the public address of this host, one address family at a time"""

    def __init__(self, endpoint=DEFAULT_IP_ENDPOINT, ipv6_endpoint=None, timeout=10, ipv6_prefix=128):
        self.endpoints = {
            AddressFamily.IPV4: endpoint,
            AddressFamily.IPV6: ipv6_endpoint or endpoint,
        }
        self.timeout = timeout
        self.prefixes = {
            AddressFamily.IPV4: AddressFamily.IPV4.host_prefix,
            AddressFamily.IPV6: ipv6_prefix,
        }
        self._sessions = {family: family_session(family) for family in AddressFamily}

    def discover(self, family):
        """
        Return the public address of ``family`` as a network.

        IPv4 addresses become a /32, IPv6 addresses a network of the configured
        prefix length (/128 unless configured otherwise), masked to its network id.

        Raises:
            DiscoveryFailure: if the endpoint is unreachable, answers with an
                error or with something that is not an address of ``family``.
        """
        endpoint = self.endpoints[family]
        try:
            response = self._sessions[family].get(endpoint, timeout=self.timeout)
            response.raise_for_status()
            address = ipaddress.ip_address(response.text.strip())
        except (requests.RequestException, ValueError) as e:
            raise DiscoveryFailure(family, e) from e

        if address.version != family.value:
            raise DiscoveryFailure(family, f"{endpoint} answered with {address}")
        if not is_public_candidate(address):
            raise DiscoveryFailure(family, f"{endpoint} answered with non-routable address {address}")

        network = ipaddress.ip_network(f"{address}/{self.prefixes[family]}", strict=False)
        logger.debug("Public %s address is %s", family, network)
        return network

    def close(self):
        for session in self._sessions.values():
            session.close()


def parse_static_cidrs(values):
    """
    Parse static networks in CIDR notation, comma separated or one per value.

    The Hetzner Cloud API only accepts network ids, so 198.51.100.0/24 is
    valid while 198.51.100.1/24 is rejected here instead of on every cycle.
    """
    networks = set()
    for value in values:
        for item in value.split(","):
            item = item.strip()
            if not item:
                continue
            try:
                networks.add(ipaddress.ip_network(item, strict=True))
            except ValueError as e:
                raise ConfigurationError(f"Invalid static network '{item}': {e}") from None
    return frozenset(networks)


def resolve(discover, enable_ipv4, enable_ipv6, static_cidrs, failures=None):
    """
    Merge the discovered dynamic addresses with the static networks.

    ``discover`` is called once per enabled family. A failing family is
    logged, appended to ``failures`` when given, and left out of the result;
    the other family and the static networks are still returned.
    """
    addresses = set(static_cidrs)
    enabled = []
    if enable_ipv4:
        enabled.append(AddressFamily.IPV4)
    if enable_ipv6:
        enabled.append(AddressFamily.IPV6)

    for family in enabled:
        try:
            addresses.add(discover(family))
        except DiscoveryFailure as e:
            logger.warning("%s, continuing without a dynamic %s address", e, family)
            if failures is not None:
                failures.append(e)

    if not addresses:
        logger.warning("No source addresses known, firewall rules will not allow any traffic")
    return frozenset(addresses)
