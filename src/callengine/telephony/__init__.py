"""
Telephony package: event store, session reconstruction, metrics and worktime.

Keep package import side-effects to a minimum to avoid circular imports.
Do not import models or services here.
"""

__all__ = [
    "directory",
    "events",
    "metrics",
    "models",
    "reconstructor",
    "repository",
    "worktime",
]
