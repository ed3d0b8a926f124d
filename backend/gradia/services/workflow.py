from __future__ import annotations

from backend.gradia.models import PipelineAction, PipelineStatus

ALLOWED_TRANSITIONS = {
    PipelineStatus.in_progress: {
        PipelineStatus.in_progress,
        PipelineStatus.rejected,
        PipelineStatus.hired,
    },
    PipelineStatus.rejected: set(),
    PipelineStatus.hired: set(),
}

ACTIONS_BY_STATUS = {
    PipelineStatus.in_progress: {
        PipelineAction.advance,
        PipelineAction.reject,
        PipelineAction.evaluate,
    },
    # re-rejecting is accepted and resolves to a no-op
    PipelineStatus.rejected: {PipelineAction.reject},
    PipelineStatus.hired: set(),
}
