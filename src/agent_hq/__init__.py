"""agent-hq: a live dashboard for coding-agent sessions."""

__version__ = "0.1.0"
