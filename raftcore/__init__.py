"""Raft replicated-log state, unstable tail, membership changes and logging."""

__version__ = "0.1.0"
__all__ = ["types", "logger", "unstable", "log", "confchange", "restore"]