from __future__ import annotations


class RelayError(Exception):
    """Base error for the suggestion relay."""


class BusinessNotFound(RelayError):
    def __init__(self, business_id: str) -> None:
        super().__init__(f"Business not found: {business_id}")
        self.business_id = business_id


class MalformedCallback(RelayError):
    def __init__(self, reason: str, *, status_code: int = 422) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class GenerationInProgress(RelayError):
    def __init__(self, business_id: str, question_id: str) -> None:
        super().__init__(f"Generation already in progress for {business_id}/{question_id}")
        self.business_id = business_id
        self.question_id = question_id


class SuggestionsReadError(RelayError):
    def __init__(self, business_id: str, question_id: str, detail: str) -> None:
        super().__init__(f"Could not read suggestions for {business_id}/{question_id}: {detail}")
        self.business_id = business_id
        self.question_id = question_id
        self.detail = detail


class SignatureRejected(RelayError):
    """Raised only under the strict signature policy."""

    status_code = 401

    def __init__(self, reason: str = "invalid signature") -> None:
        super().__init__(reason)
        self.reason = reason


class StorageError(RelayError):
    def __init__(self, business_id: str, question_id: str, detail: str) -> None:
        super().__init__(f"Could not store suggestions for {business_id}/{question_id}: {detail}")
        self.business_id = business_id
        self.question_id = question_id
        self.detail = detail
