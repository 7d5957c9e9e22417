"""Keep a Hetzner Cloud firewall in sync with your dynamic public IP addresses."""

__version__ = "0.4.0"
