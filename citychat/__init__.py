"""citychat: city rooms and private chat synchronization engine."""

__version__ = "0.1.0"
