"""Living Map core: memorial connections, viewport queries and notification fanout."""

__version__ = "0.1.0"
