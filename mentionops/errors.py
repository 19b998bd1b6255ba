"""Error taxonomy for mentionops workflows."""

from __future__ import annotations


class MentionOpsError(Exception):
    """Base class for all workflow errors.

    ``code`` is a stable, user-safe identifier that may be surfaced to the
    conversational surface in place of the raw message.
    """

    code = "internal_error"


class SchemaViolation(MentionOpsError):
    """Planner output did not match the Intent schema."""

    code = "schema_violation"


class BudgetExceeded(MentionOpsError):
    """No execution channel has remaining budget for the intent."""

    code = "budget_exceeded"


class LockUnavailable(MentionOpsError):
    """A lease on a coordination key could not be acquired."""

    code = "lock_unavailable"


class RecordLocked(LockUnavailable):
    """A single downstream record is being modified by another job."""

    code = "record_locked"


class ExecutorError(MentionOpsError):
    """The downstream channel failed to execute the intent."""

    code = "executor_error"


class LedgerError(MentionOpsError):
    """The step ledger rejected a write."""

    code = "ledger_error"


class IllegalTransition(LedgerError):
    """A job status change would move the job backwards."""

    code = "illegal_transition"


__all__ = [
    "MentionOpsError",
    "SchemaViolation",
    "BudgetExceeded",
    "LockUnavailable",
    "RecordLocked",
    "ExecutorError",
    "LedgerError",
    "IllegalTransition",
]
