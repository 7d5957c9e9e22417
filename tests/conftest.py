"""
Pytest configuration and fixtures.
"""
import ipaddress

import pytest

from hcloud_firewall_controller.config import Account
from hcloud_firewall_controller.errors import ApiFailure
from hcloud_firewall_controller.utils import RemoteFirewall


class FakeFirewallApi:
    """In-memory stand-in for HcloudFirewallApi that records every call"""

    def __init__(self, firewalls=None, fail_on=None):
        self.firewalls = {firewall.name: firewall for firewall in firewalls or []}
        self.fail_on = fail_on
        self.calls = []
        self._next_id = 100

    def _maybe_fail(self, stage):
        if self.fail_on == stage:
            raise ApiFailure(stage, "simulated failure")

    def find(self, name):
        self.calls.append(("find", name))
        self._maybe_fail("lookup")
        return self.firewalls.get(name)

    def create(self, name):
        self.calls.append(("create", name))
        self._maybe_fail("create")
        self._next_id += 1
        firewall = RemoteFirewall(id=self._next_id, name=name, rules=frozenset())
        self.firewalls[name] = firewall
        return firewall

    def update(self, firewall_id, rules):
        self.calls.append(("update", firewall_id, frozenset(rules)))
        self._maybe_fail("apply")
        for name, firewall in self.firewalls.items():
            if firewall.id == firewall_id:
                self.firewalls[name] = RemoteFirewall(id=firewall_id, name=name, rules=frozenset(rules))

    def count(self, method):
        return sum(1 for call in self.calls if call[0] == method)


def net(text):
    return ipaddress.ip_network(text)


@pytest.fixture
def account():
    return Account("secret-token", "home", "account 1")


@pytest.fixture
def fake_api():
    return FakeFirewallApi()
