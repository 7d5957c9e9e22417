import logging
import signal
import threading
from dataclasses import dataclass
from typing import FrozenSet, Tuple

from .errors import DiscoveryFailure
from .firewall import ReconcileResult, reconcile_account
from .ip import IpDiscovery, resolve
from .rules import build_rules
from .utils import HcloudFirewallApi

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleReport:
    """Outcome of one reconciliation cycle over all accounts"""

    addresses: FrozenSet
    discovery_failures: Tuple[DiscoveryFailure, ...]
    results: Tuple[ReconcileResult, ...]
    skipped: int = 0

    @property
    def ok(self):
        """True if every account was reconciled and none failed"""
        return not self.skipped and all(result.ok for result in self.results)

    @property
    def failed(self):
        return [result for result in self.results if not result.ok]


class Controller:
    """
    Reconciles the firewall of every configured account, once or on an interval.

    A failing account never keeps the other accounts of the same cycle from
    being reconciled and never ends the loop; it is simply tried again on the
    next cycle.
    """

    def __init__(self, config, discovery=None, api_factory=None, stop_event=None):
        self.config = config
        self.discovery = discovery or IpDiscovery(
            endpoint=config.ip_endpoint,
            ipv6_endpoint=config.ipv6_endpoint,
            timeout=config.http_timeout,
            ipv6_prefix=config.ipv6_prefix,
        )
        if api_factory is None:
            def api_factory(token):
                return HcloudFirewallApi.from_token(token, timeout=config.http_timeout)
        self.accounts = [(account, api_factory(account.token)) for account in config.accounts]
        self.stop_event = stop_event or threading.Event()

    def stop(self, signum=None, frame=None):
        if signum is not None:
            logger.info("Received %s, shutting down", signal.Signals(signum).name)
        self.stop_event.set()

    def install_signal_handlers(self):
        signal.signal(signal.SIGINT, self.stop)
        signal.signal(signal.SIGTERM, self.stop)

    def run_cycle(self) -> CycleReport:
        """
        Run one reconciliation cycle.

        Addresses are discovered once and the desired rules built once, then
        every account is reconciled in turn. A requested shutdown skips the
        accounts not yet started; an account already in progress is finished.
        """
        config = self.config
        failures = []
        addresses = resolve(
            self.discovery.discover,
            config.enable_ipv4,
            config.enable_ipv6,
            config.static_cidrs,
            failures=failures,
        )
        desired = build_rules(config.simple_protocols, config.tcp_ports, config.udp_ports, addresses)

        results = []
        for index, (account, api) in enumerate(self.accounts):
            # rate limit courtesy pause between projects
            if index and self.stop_event.wait(config.account_pause):
                break
            if self.stop_event.is_set():
                break
            results.append(reconcile_account(api, account, desired, addresses))

        skipped = len(self.accounts) - len(results)
        if skipped:
            logger.info("Shutdown requested, skipped %d account(s)", skipped)

        return CycleReport(addresses, tuple(failures), tuple(results), skipped)

    def run(self) -> int:
        """Run the controller and return the process exit status"""
        config = self.config
        if config.run_once:
            report = self.run_cycle()
            if report.failed:
                logger.error("Reconciliation failed for %d of %d account(s)", len(report.failed), len(report.results))
            if report.skipped:
                logger.error("Reconciliation interrupted, %d account(s) were not reconciled", report.skipped)
            if not report.ok:
                return 1
            logger.debug("Reconciliation succeeded")
            return 0

        while not self.stop_event.is_set():
            logger.debug("Reconciliation loop started")
            self.run_cycle()
            logger.debug("Reconciliation loop finished, sleeping for %s seconds", config.reconciliation_interval)
            self.stop_event.wait(config.reconciliation_interval)
        logger.info("Controller stopped")
        return 0

    def close(self):
        close = getattr(self.discovery, "close", None)
        if close is not None:
            close()
