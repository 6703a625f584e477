"""Error classes for the signal store."""

from __future__ import annotations


class SignalStoreError(RuntimeError):
    """Raised when the store fails to save or retrieve pipeline state."""

    def __init__(self, message: str, code: str = "SIGNAL_STORE_ERROR") -> None:
        super().__init__(message)
        self.code = code


class RecordNotFoundError(SignalStoreError):
    """Raised when a run or lead lookup misses."""

    def __init__(self, message: str, code: str = "404_NOT_FOUND") -> None:
        super().__init__(message, code=code)
