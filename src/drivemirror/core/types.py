"""Shared types for drivemirror."""

from __future__ import annotations

from enum import Enum


class OperationStatus(str, Enum):
    """Completion status of a sync run.

    UNKNOWN is the status of a run that has not finished yet.
    """

    COMPLETED = "completed"
    STOPPED = "stopped"
    ERROR = "error"
    WARNING = "warning"
    UNKNOWN = "unknown"
