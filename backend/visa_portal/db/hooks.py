"""Run side effects only once the surrounding transaction has committed.

Realtime pushes must never describe rows that were rolled back, so producers
queue them on the session instead of calling the dispatcher inline::

    db.add(notification)
    db.flush()
    after_commit(db, dispatcher.new_notification, user_id, record)
    db.commit()
"""
import logging
from typing import Any, Callable

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

logger = logging.getLogger(__name__)

_PENDING_KEY = "post_commit_callbacks"


def after_commit(db: Session, fn: Callable[..., Any], *args: Any) -> None:
    """Queue ``fn(*args)`` to run after the next successful commit of ``db``."""
    if not db.in_transaction():
        # Tie the callback to a transaction so a rollback discards it
        db.begin()
    db.info.setdefault(_PENDING_KEY, []).append((fn, args))


@event.listens_for(Session, "after_commit")
def _run_pending(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    for fn, args in pending:
        try:
            fn(*args)
        except Exception:
            logger.exception("Post-commit callback %r failed", fn)


@event.listens_for(Session, "after_transaction_end")
def _discard_pending(session: Session, transaction: SessionTransaction) -> None:
    # Anything still queued when the outermost transaction ends was rolled back
    if transaction.parent is None and session.info.get(_PENDING_KEY):
        dropped = session.info.pop(_PENDING_KEY)
        logger.debug("Discarded %d post-commit callback(s) after rollback", len(dropped))
