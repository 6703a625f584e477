"""Errors raised by the signal pipeline stages."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Pipeline-fatal failure; the orchestrator turns it into a failed run."""

    def __init__(self, message: str, code: str = "PIPELINE_ERROR") -> None:
        super().__init__(message)
        self.code = code
