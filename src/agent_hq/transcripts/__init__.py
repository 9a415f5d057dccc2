"""Transcript reading for both agents."""
