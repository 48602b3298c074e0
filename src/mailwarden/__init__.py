"""Rule-driven IMAP message processing."""

__version__ = "0.1.0"
