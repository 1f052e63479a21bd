"""The Raft replicated log: stable and unstable entries, commit and apply tracking."""

__version__ = "0.1.0"
__all__ = ["log", "logger", "unstable"]