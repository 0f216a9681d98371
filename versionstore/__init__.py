"""Multi-version key-value storage server fed by a replicated commit log."""

__version__ = "0.1.0"

__all__ = [
    "errors",
    "storage",
    "records",
    "memstate",
    "log2storage",
    "service",
    "server",
    "cli",
]