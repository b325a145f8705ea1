"""Progress milestones reported while a job runs."""

from __future__ import annotations

from typing import Final

# Milestones are coarse on purpose: the model call is a single opaque request.
PROGRESS_QUEUED: Final[int] = 0
PROGRESS_STARTED: Final[int] = 5
PROGRESS_AFTER_DISPATCH: Final[int] = 15
PROGRESS_AFTER_RESPONSE: Final[int] = 80
PROGRESS_COMPLETE: Final[int] = 100

MILESTONES: Final[tuple[int, ...]] = (PROGRESS_QUEUED, PROGRESS_STARTED, PROGRESS_AFTER_DISPATCH, PROGRESS_AFTER_RESPONSE, PROGRESS_COMPLETE)
