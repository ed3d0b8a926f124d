from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    code = "pipeline_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidStageError(PipelineError):
    code = "invalid_stage"


class TerminalStateError(PipelineError):
    code = "terminal_state"


class PipelineNotFoundError(PipelineError):
    code = "not_found"


class ConcurrentModificationError(PipelineError):
    code = "concurrent_modification"


class CollaboratorUnavailableError(PipelineError):
    """Raised by notification and AI adapters; never aborts a committed transition."""

    code = "collaborator_unavailable"

    def __init__(self, collaborator: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.collaborator = collaborator
        self.status_code = status_code


class CatalogError(ValueError):
    pass
