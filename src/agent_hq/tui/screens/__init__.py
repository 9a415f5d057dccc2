"""TUI screens."""

from .dashboard import DashboardScreen

__all__ = ["DashboardScreen"]
