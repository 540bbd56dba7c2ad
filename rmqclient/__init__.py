"""Message queue client building blocks: wire codec, response futures, headers, models and routing."""

__version__ = "2.1.0"