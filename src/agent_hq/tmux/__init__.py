"""Tmux integration."""

from .controller import TmuxController, TmuxPane

__all__ = ["TmuxController", "TmuxPane"]
