"""Test helpers for code that drives the cmdvault sync engine."""

from cmdvault.testing.fakes import InMemoryRemote

__all__ = ["InMemoryRemote"]
