import enum
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import ApiFailure
from .rules import rules_equal, sort_networks

logger = logging.getLogger(__name__)


class Outcome(enum.Enum):
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconcileResult:
    """What happened to one account's firewall during one cycle"""

    account: str
    firewall_name: str
    outcome: Outcome
    firewall_id: Optional[int] = None
    created: bool = False
    error: Optional[ApiFailure] = None

    @property
    def ok(self):
        return self.outcome is not Outcome.FAILED

    @property
    def stage(self):
        """Stage that failed: lookup, create or apply"""
        return self.error.stage if self.error else None


def _format_addresses(addresses):
    return [str(network) for network in sort_networks(addresses)]


def reconcile_account(api, account, desired, addresses=()):
    """
    Converge the firewall of one account towards the desired rules.

    Looks the firewall up by name and creates it (without rules) if it does
    not exist yet. The rules are only replaced when they differ from the
    desired ones, so running this repeatedly with the same input updates the
    firewall at most once.

    API failures are logged and returned as a failed result; they never
    propagate to the caller.
    """
    name = account.firewall_name
    created = False
    try:
        firewall = api.find(name)
        if firewall is None:
            firewall = api.create(name)
            created = True
            logger.info("Created new firewall '%s' (id: %s) for %s", name, firewall.id, account.label)
        else:
            logger.debug("Existing firewall found '%s' (id: %s)", name, firewall.id)

        if firewall.duplicate_rules:
            logger.info("Firewall '%s' (id: %s) holds %d duplicate rule(s)", name, firewall.id, firewall.duplicate_rules)
        elif rules_equal(desired, firewall.rules):
            logger.info(
                "Rules of '%s' (id: %s) are already up to date for %s",
                name, firewall.id, _format_addresses(addresses),
            )
            return ReconcileResult(account.label, name, Outcome.UNCHANGED, firewall.id, created)

        api.update(firewall.id, desired)
        logger.info(
            "Rules of '%s' (id: %s) have been updated for %s",
            name, firewall.id, _format_addresses(addresses),
        )
        return ReconcileResult(account.label, name, Outcome.UPDATED, firewall.id, created)
    except ApiFailure as e:
        logger.error("Firewall '%s' of %s: %s", name, account.label, e)
        return ReconcileResult(account.label, name, Outcome.FAILED, created=created, error=e)
