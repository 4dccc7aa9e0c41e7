"""Graduate program administration backend."""

__version__ = "0.3.0"
