import argparse
import logging
import os
import sys

from . import __version__
from .config import (
    DEFAULT_FIREWALL_NAME,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_RECONCILIATION_INTERVAL,
    build_config,
)
from .controller import Controller
from .errors import ConfigurationError
from .ip import DEFAULT_IP_ENDPOINT

logger = logging.getLogger(__name__)

TRUE_VALUES = ("1", "true", "yes", "on")
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def env_flag(name, environ=os.environ):
    return environ.get(name, "").strip().lower() in TRUE_VALUES


def env_number(name, default, convert, environ=os.environ):
    value = environ.get(name)
    if not value:
        return default
    try:
        return convert(value)
    except ValueError:
        raise ConfigurationError(f"Invalid value for {name}: '{value}'") from None


def parse_log_level(value):
    name = str(value).strip().upper()
    if name not in LOG_LEVELS:
        raise ConfigurationError(f"Invalid log level '{value}', expected one of {', '.join(LOG_LEVELS)}")
    return getattr(logging, name)


def setup_logging(log_level=logging.INFO):
    """Configure application logging"""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    root = logging.getLogger()
    root.setLevel(log_level)
    root.addHandler(handler)
    # keep connection chatter out of debug output
    logging.getLogger("urllib3").setLevel(max(log_level, logging.INFO))


def build_parser():
    parser = argparse.ArgumentParser(
        prog="hcloud-firewall-controller",
        description="Keep a Hetzner Cloud firewall in sync with your dynamic public IP addresses.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-1", "--run-once", action="store_true", default=None,
        help="Run only once and exit, useful if run by cron or other tools [HFC_RUN_ONCE]",
    )
    parser.add_argument(
        "-t", "--hcloud-token", action="append", metavar="TOKEN[=FIREWALL]",
        help="Hetzner Cloud API token with read and write permissions. Can be given multiple times or as a "
        "comma separated list to manage several projects; TOKEN=NAME overrides the firewall name for that "
        "project [HFC_HCLOUD_TOKEN, HCLOUD_TOKEN]",
    )
    parser.add_argument(
        "-f", "--firewall-name",
        help=f"Name of the firewall to create (default: {DEFAULT_FIREWALL_NAME}) [HFC_FIREWALL_NAME]",
    )
    parser.add_argument(
        "--tcp", action="append", metavar="PORT | PORT RANGE",
        help="Comma separated list of TCP ports or port ranges to allow traffic for, e.g. '80', '80,443', "
        "'80-85' or '80,443-450'. Can be given multiple times [HFC_TCP]",
    )
    parser.add_argument(
        "--udp", action="append", metavar="PORT | PORT RANGE",
        help="Comma separated list of UDP ports or port ranges, see --tcp [HFC_UDP]",
    )
    parser.add_argument("--icmp", action="store_true", default=None, help="Allow ICMP traffic [HFC_ICMP]")
    parser.add_argument("--gre", action="store_true", default=None, help="Allow GRE traffic [HFC_GRE]")
    parser.add_argument("--esp", action="store_true", default=None, help="Allow ESP traffic [HFC_ESP]")
    parser.add_argument(
        "--ip", action="append", metavar="STATIC IP",
        help="Comma separated list of static networks in CIDR notation to allow in addition to the discovered "
        "addresses. Must be network ids: 127.0.0.0/24 works, 127.0.0.1/24 does not [HFC_IP]",
    )
    parser.add_argument(
        "--disable-ipv4", action="store_true", default=None,
        help="Disable the detection of the public IPv4 address [HFC_DISABLE_IPV4]",
    )
    parser.add_argument(
        "--disable-ipv6", action="store_true", default=None,
        help="Disable the detection of the public IPv6 address [HFC_DISABLE_IPV6]",
    )
    parser.add_argument(
        "-r", "--reconciliation-interval", type=float,
        help=f"Reconciliation interval in seconds (default: {DEFAULT_RECONCILIATION_INTERVAL}) "
        "[HFC_RECONCILIATION_INTERVAL]",
    )
    parser.add_argument(
        "-i", "--ip-endpoint",
        help=f"Endpoint to query your public IP from (default: {DEFAULT_IP_ENDPOINT}) [HFC_IP_ENDPOINT]",
    )
    parser.add_argument(
        "--ipv6-endpoint",
        help="Separate endpoint to query your public IPv6 address from (default: --ip-endpoint) [HFC_IPV6_ENDPOINT]",
    )
    parser.add_argument(
        "--ipv6-prefix", type=int,
        help="Prefix length allowed around the discovered IPv6 address, e.g. 64 (default: 128) [HFC_IPV6_PREFIX]",
    )
    parser.add_argument(
        "--http-timeout", type=float,
        help=f"Timeout in seconds for each HTTP request (default: {DEFAULT_HTTP_TIMEOUT}) [HFC_HTTP_TIMEOUT]",
    )
    parser.add_argument("--log-level", help="Logging level (default: INFO) [HFC_LOG_LEVEL, LOG_LEVEL]")
    return parser


def _values(option, name, environ):
    if option:
        return option
    value = environ.get(name)
    return [value] if value else []


def config_from_args(args, environ=os.environ):
    """
    Build the controller configuration from parsed arguments.

    Options not given on the command line fall back to their HFC_*
    environment variable, then to the default.
    """
    tokens = _values(args.hcloud_token, "HFC_HCLOUD_TOKEN", environ) or _values(None, "HCLOUD_TOKEN", environ)
    return build_config(
        tokens=tokens,
        firewall_name=args.firewall_name or environ.get("HFC_FIREWALL_NAME") or DEFAULT_FIREWALL_NAME,
        tcp=_values(args.tcp, "HFC_TCP", environ),
        udp=_values(args.udp, "HFC_UDP", environ),
        icmp=args.icmp or env_flag("HFC_ICMP", environ),
        gre=args.gre or env_flag("HFC_GRE", environ),
        esp=args.esp or env_flag("HFC_ESP", environ),
        ips=_values(args.ip, "HFC_IP", environ),
        disable_ipv4=args.disable_ipv4 or env_flag("HFC_DISABLE_IPV4", environ),
        disable_ipv6=args.disable_ipv6 or env_flag("HFC_DISABLE_IPV6", environ),
        reconciliation_interval=(
            args.reconciliation_interval
            if args.reconciliation_interval is not None
            else env_number("HFC_RECONCILIATION_INTERVAL", DEFAULT_RECONCILIATION_INTERVAL, float, environ)
        ),
        run_once=args.run_once or env_flag("HFC_RUN_ONCE", environ),
        ip_endpoint=args.ip_endpoint or environ.get("HFC_IP_ENDPOINT") or DEFAULT_IP_ENDPOINT,
        ipv6_endpoint=args.ipv6_endpoint or environ.get("HFC_IPV6_ENDPOINT"),
        ipv6_prefix=(
            args.ipv6_prefix
            if args.ipv6_prefix is not None
            else env_number("HFC_IPV6_PREFIX", 128, int, environ)
        ),
        http_timeout=(
            args.http_timeout
            if args.http_timeout is not None
            else env_number("HFC_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT, float, environ)
        ),
    )


def main(argv=None, environ=os.environ):
    args = build_parser().parse_args(argv)
    try:
        log_level = parse_log_level(args.log_level or environ.get("HFC_LOG_LEVEL") or environ.get("LOG_LEVEL") or "INFO")
        config = config_from_args(args, environ)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    setup_logging(log_level)

    logger.info(
        "Managing %d project(s), reconciling %s",
        len(config.accounts),
        "once" if config.run_once else f"every {config.reconciliation_interval:g} seconds",
    )
    controller = Controller(config)
    controller.install_signal_handlers()
    try:
        return controller.run()
    finally:
        controller.close()
