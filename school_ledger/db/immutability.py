"""
ORM-level append-only enforcement for the ledger.

Posted journal entries are never edited or deleted.  The only way to
neutralize a posted entry is a reversal, which adds a new entry and flips
the original from ``posted`` to ``reversed`` while setting its
``reversed_by_id`` back-link exactly once.

SQLAlchemy fires events before UPDATE/DELETE statements reach the database.
The listeners below inspect attribute history and raise
ImmutabilityViolationError before any SQL is emitted:

    session.flush()
         |
         v
    [before_flush]   --> account deletion with posted lines --> AccountReferencedError
    [before_update]  --> posted/reversed entry or its lines  --> ImmutabilityViolationError
    [before_delete]  --> posted/reversed entry or its lines  --> ImmutabilityViolationError

Entity         | Immutable when
---------------|------------------------------------------------------
JournalEntry   | status is posted or reversed (except the reversal flip)
JournalLine    | parent entry is posted or reversed
Account        | delete blocked while it or a descendant has posted lines

``init_engine_from_url`` registers the listeners.  Code that builds its
own engine calls ``register_immutability_listeners()`` once at startup.

Tests that need to corrupt data on purpose may call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event, inspect, text
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from school_ledger.exceptions import AccountReferencedError, ImmutabilityViolationError
from school_ledger.logging_config import get_logger

logger = get_logger("db.immutability")

_FROZEN_STATUSES = ("posted", "reversed")

# Audit metadata may change on any row.
_AUDIT_FIELDS = frozenset({"updated_at", "updated_by"})

# Fields the reversal transition is allowed to touch on the original entry.
_REVERSAL_FIELDS = frozenset({"status", "reversed_by_id"}) | _AUDIT_FIELDS


def _status_value(status) -> str | None:
    if status is None:
        return None
    return getattr(status, "value", status)


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


_POSTED_IN_SUBTREE = text("""
    WITH RECURSIVE account_tree AS (
        SELECT id FROM accounts WHERE id = :account_id
        UNION ALL
        SELECT a.id
        FROM accounts a
        JOIN account_tree t ON a.parent_id = t.id
    )
    SELECT EXISTS (
        SELECT 1 FROM journal_lines jl
        JOIN journal_entries je ON jl.journal_entry_id = je.id
        WHERE jl.account_id IN (SELECT id FROM account_tree)
        AND je.status IN ('posted', 'reversed')
    )
""")


def account_subtree_has_posted_lines(session: Session, account_id) -> bool:
    """True when the account or any descendant has lines on posted or reversed entries."""
    with session.no_autoflush:
        return bool(
            session.execute(_POSTED_IN_SUBTREE, {"account_id": str(account_id)}).scalar()
        )


def _check_account_deletion_before_flush(session, flush_context, instances):
    """
    Refuse to delete an account while posted lines reference it.

    Runs in SessionEvents.before_flush because mapper-level delete events
    fire after the flush plan is fixed.  Descendant accounts are included:
    deleting a parent would orphan the history of its children.
    """
    from school_ledger.models.account import Account

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue

        if account_subtree_has_posted_lines(session, obj.id):
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "Account",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                    "reason": "account_has_posted_references",
                },
            )
            raise AccountReferencedError(account_id=str(obj.id))


def _check_journal_entry_immutability(mapper, connection, target):
    """
    Block updates to entries that were already posted or reversed.

    draft -> posted is the posting itself and is allowed.  posted -> reversed
    is allowed when only the status and a previously empty reversed_by_id
    change.  Everything else on a frozen entry is rejected.
    """
    status_history = get_history(target, "status")

    if status_history.deleted:
        old_status = _status_value(status_history.deleted[0])
    elif not status_history.added:
        old_status = _status_value(target.status)
    else:
        old_status = None

    if old_status not in _FROZEN_STATUSES:
        return

    changed = {
        attr.key
        for attr in inspect(target).attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    }
    if not changed:
        return

    new_status = _status_value(target.status)
    reversed_by_history = get_history(target, "reversed_by_id")
    is_reversal_flip = (
        old_status == "posted"
        and new_status == "reversed"
        and changed <= _REVERSAL_FIELDS
        and not any(v is not None for v in reversed_by_history.deleted)
        and target.reversed_by_id is not None
    )
    if is_reversal_flip:
        return

    field = sorted(changed)[0]
    raise _blocked(
        "JournalEntry",
        target.id,
        "UPDATE",
        f"Cannot modify field '{field}' on {old_status} journal entry",
        field=field,
    )


def _check_journal_entry_delete(mapper, connection, target):
    """Posted and reversed entries cannot be deleted."""
    status = _status_value(target.status)
    if status in _FROZEN_STATUSES:
        raise _blocked(
            "JournalEntry",
            target.id,
            "DELETE",
            f"{status.capitalize()} journal entries cannot be deleted",
        )


def _check_journal_line_insert(mapper, connection, target):
    """No new lines may be attached to an entry that was already posted."""
    entry = target.entry
    if entry is None:
        return
    status_history = get_history(entry, "status")
    if status_history.deleted:
        prior = _status_value(status_history.deleted[0])
    elif not status_history.added:
        prior = _status_value(entry.status)
    else:
        prior = None
    if prior in _FROZEN_STATUSES:
        raise _blocked(
            "JournalLine",
            target.id,
            "INSERT",
            "Lines cannot be added to a posted journal entry",
        )


def _check_journal_line_immutability(mapper, connection, target):
    """Lines freeze together with their parent entry."""
    if target.entry is not None and _status_value(target.entry.status) in _FROZEN_STATUSES:
        raise _blocked(
            "JournalLine",
            target.id,
            "UPDATE",
            "Journal lines cannot be modified after parent entry is posted",
        )


def _check_journal_line_delete(mapper, connection, target):
    if target.entry is not None and _status_value(target.entry.status) in _FROZEN_STATUSES:
        raise _blocked(
            "JournalLine",
            target.id,
            "DELETE",
            "Journal lines cannot be deleted after parent entry is posted",
        )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after the models are importable and before any
    database operations begin.
    """
    from school_ledger.models.journal import JournalEntry, JournalLine

    listeners = (
        (Session, "before_flush", _check_account_deletion_before_flush),
        (JournalEntry, "before_update", _check_journal_entry_immutability),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_insert", _check_journal_line_insert),
        (JournalLine, "before_update", _check_journal_line_immutability),
        (JournalLine, "before_delete", _check_journal_line_delete),
    )
    for target, event_name, listener_fn in listeners:
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate immutability
    rules to verify detection.
    """
    from school_ledger.models.journal import JournalEntry, JournalLine

    _safe_remove_listener(Session, "before_flush", _check_account_deletion_before_flush)
    _safe_remove_listener(JournalEntry, "before_update", _check_journal_entry_immutability)
    _safe_remove_listener(JournalEntry, "before_delete", _check_journal_entry_delete)
    _safe_remove_listener(JournalLine, "before_insert", _check_journal_line_insert)
    _safe_remove_listener(JournalLine, "before_update", _check_journal_line_immutability)
    _safe_remove_listener(JournalLine, "before_delete", _check_journal_line_delete)
