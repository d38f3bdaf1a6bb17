"""Domain-specific exceptions for call relay operations.

These exceptions are safe to import from API layers without triggering heavy ML imports.
"""

from __future__ import annotations


class RelayError(Exception):
    status_code: int = 500
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class EngineUnavailableError(RelayError):
    status_code = 503
    default_detail = "Conversational engine unavailable."


class TranscriptionFailedError(RelayError):
    status_code = 503
    default_detail = "Transcription failed."


class SummaryFailedError(RelayError):
    status_code = 503
    default_detail = "Summary generation failed."


class CallPlacementError(RelayError):
    status_code = 502
    default_detail = "Outbound call could not be placed."
