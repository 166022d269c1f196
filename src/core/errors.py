"""Exceptions raised across the core/adapter boundary."""

from __future__ import annotations

from typing import Any, Optional


class TriageError(Exception):
    """Base error for the triage pipeline."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class OracleError(TriageError):
    """The categorization oracle failed or could not be reached."""


class OracleResponseError(OracleError):
    """The oracle answered, but the answer could not be parsed."""


class HistoryUnavailableError(TriageError):
    """Message history could not be fetched."""


class DeliveryError(TriageError):
    """A send to a destination channel failed and may be retried."""

    def __init__(self, channel_id: str, message: str) -> None:
        self.channel_id = channel_id
        super().__init__(f"{channel_id}: {message}", {"channel_id": channel_id})
