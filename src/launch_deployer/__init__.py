"""Step-scoped deployment runner that streams its progress as JSON events."""

__version__ = "0.1.0"
