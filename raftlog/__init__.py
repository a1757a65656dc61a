"""The replicated log of a Raft node: unstable tail, storage view, commit and apply tracking."""

__version__ = "0.1.0"
__all__ = ["log", "logger", "unstable"]