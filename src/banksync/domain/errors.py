"""Shared domain error messages and error types."""

from typing import Optional


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""


class NotFoundError(DomainError):
    """Requested domain entity does not exist."""


class ConflictError(DomainError):
    """Domain conflict, such as uniqueness violations or diverged remote state."""


class SyncError(Exception):
    """Base class for failures talking to the bank API."""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientError(SyncError):
    """Network failure, 5xx or rate-limit response. Always retried within budget."""

    retryable = True

    def __init__(
        self, message: str, status_code: Optional[int] = None, rate_limited: bool = False
    ):
        super().__init__(message, status_code)
        self.rate_limited = rate_limited


class PermanentError(SyncError):
    """4xx other than rate-limit, or a rejected value. Never retried."""


def transaction_not_found(transaction_id: int) -> str:
    """Return message for missing transaction."""
    return f"Transaction {transaction_id} not found"


def concurrent_edit(transaction_id: int) -> str:
    """Return message for a write that lost a race with another writer."""
    return f"Transaction {transaction_id} was changed by another writer; reload and try again"


def external_transaction_not_found(external_id: str) -> str:
    """Return message for missing transaction by bank id."""
    return f"Transaction with external id '{external_id}' not found"


def rule_not_found(rule_id: int) -> str:
    """Return message for missing rule."""
    return f"Rule {rule_id} not found"


def sync_item_not_found(item_id: int) -> str:
    """Return message for missing sync queue item."""
    return f"Sync queue item {item_id} not found"


def duplicate_external_id(external_id: str) -> str:
    """Return message for duplicate bank transaction id."""
    return f"Transaction with external id '{external_id}' already exists"


def empty_search_criteria() -> str:
    """Return message when a rule would match every transaction."""
    return (
        "Search criteria is empty and would match every transaction. "
        "Pass confirm_match_all to create it anyway."
    )


def remote_diverged(transaction_id: int, field: str, remote, local, synced) -> str:
    """Return message describing a third-party edit on the bank side."""
    return (
        f"Transaction {transaction_id} {field} diverged: remote={remote!r}, "
        f"local={local!r}, last synced={synced!r}"
    )
