"""feed-relay: poll web feeds and fan new entries out to chat destinations."""

__version__ = "0.1.0"
