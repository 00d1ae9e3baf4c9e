"""Domain modules for sync business rules.

This package centralizes business logic for the sync system:
- conflicts: Decision table for files that already exist remotely

Architecture:
    domain/ contains pure business logic without external dependencies.
    Implementation details (API calls, retries) stay in transfers/.
"""

from drivemirror.client.sync.domain.conflicts import (
    UploadAction,
    UploadDecision,
    all_identical,
    decide_upload,
)

__all__ = [
    "UploadAction",
    "UploadDecision",
    "all_identical",
    "decide_upload",
]
