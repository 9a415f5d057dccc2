"""Terminal dashboard."""

from .app import AgentHQApp

__all__ = ["AgentHQApp"]
