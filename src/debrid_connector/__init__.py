"""Real-Debrid connector: account linking, resilient API access and file index sync."""

__version__ = "1.0.0"
