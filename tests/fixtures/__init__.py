"""Test fixtures package."""

from .executors import CountingExecutor, FakeExecutor, GatedExecutor

__all__ = [
    "CountingExecutor",
    "FakeExecutor",
    "GatedExecutor",
]
