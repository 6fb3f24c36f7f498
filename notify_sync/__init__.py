"""Real-time notification delivery and synchronization client."""

__version__ = "0.1.0"
