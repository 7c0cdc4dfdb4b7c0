"""SMS relay with Telnyx delivery status reconciliation."""

__version__ = "1.0.0"
