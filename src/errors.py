"""
errors.py

Typed exception hierarchy for the project state engine.

Every error carries a machine-readable `code`; validation and not-found
errors additionally carry a `kind` so callers can branch without parsing
messages, and validation errors name the offending `field` so the
presentation layer can surface field-level messages.

    EngineError
    ├── ValidationError          (also a ValueError)
    ├── NotFoundError
    ├── InvalidTransitionError
    └── StorageError
        └── ConcurrencyError

The domain and service layers only raise; they never log or swallow.
"""

from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base class for all errors raised by the engine."""

    code: str = "ENGINE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationKind:
    DEADLINE_OUT_OF_RANGE = "deadline-out-of-range"
    LOCKED_FOR_EDIT = "locked-for-edit"
    DUPLICATE_KEY = "duplicate-key"
    NON_POSITIVE_VALUE = "non-positive-value"
    TITLE_TOO_SHORT = "title-too-short"

    ALL = (
        DEADLINE_OUT_OF_RANGE,
        LOCKED_FOR_EDIT,
        DUPLICATE_KEY,
        NON_POSITIVE_VALUE,
        TITLE_TOO_SHORT,
    )


class ValidationError(EngineError, ValueError):
    """An edit precondition failed; the aggregate was not touched."""

    code = "VALIDATION_FAILED"

    def __init__(self, kind: str, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.field = field


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

class NotFoundKind:
    PROJECT = "project"
    INTERVENTION = "intervention"
    SUB_INTERVENTION = "sub-intervention"
    STAGE = "stage"
    CATALOG_ENTRY = "catalog-entry"
    CONTACT = "contact"


class NotFoundError(EngineError):
    """A mutation or query targeted an id that does not exist."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} '{entity_id}' not found.")
        self.kind = kind
        self.entity_id = entity_id


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class InvalidTransitionError(EngineError):
    """A stage or project status change is not allowed by its state machine."""

    code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str, subject: str = "stage"):
        super().__init__(
            f"Cannot move a {subject} from '{current}' to '{requested}'."
        )
        self.current = current
        self.requested = requested
        self.subject = subject


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class StorageError(EngineError):
    """
    Raised by the storage collaborator.  Always raised before or during the
    single aggregate write, so the whole operation may be retried.
    """

    code = "STORAGE_FAILED"


class ConcurrencyError(StorageError):
    """The aggregate changed between load and save (version mismatch)."""

    code = "VERSION_CONFLICT"

    def __init__(self, project_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Project '{project_id}' was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})."
        )
        self.project_id = project_id
        self.expected_version = expected_version
        self.actual_version = actual_version
