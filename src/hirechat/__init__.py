"""HireChat: keeps a remote chat server in step with hiring platform records."""

__version__ = "0.1.0"
