"""Identity reconciliation service: consolidates contacts sharing an email or phone number."""

__version__ = "0.1.0"
