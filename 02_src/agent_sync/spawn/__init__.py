"""Spawn-time configuration lookup."""

from .resolver import SpawnConfigResolver, SpawnDecision

__all__ = ["SpawnConfigResolver", "SpawnDecision"]
