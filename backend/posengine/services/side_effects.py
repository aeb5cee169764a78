# Overview: Post-commit side effects; admin notifications, audit rows and the dispatch queue.

"""
Post-Commit Side Effects

WHY: A notification or audit row must never hold the sale's transaction
open, and a failure to write one must never undo a committed sale.
Transactional functions collect these tasks on a PostCommitQueue and hand
it back; the caller dispatches it once the commit has happened.

Each task runs in isolation. A failed task is logged, its partial writes
are rolled back, and the next task still runs.
"""

from __future__ import annotations

from typing import Callable

from flask import current_app

from ..extensions import db
from ..models import AuditLog, Notification, User
from ..models.auth import ROLE_ADMIN


class PostCommitQueue:
    def __init__(self):
        self._tasks: list[tuple[str, Callable[[], object]]] = []

    def add(self, label: str, task: Callable[[], object]) -> None:
        self._tasks.append((label, task))

    @property
    def labels(self) -> list[str]:
        return [label for label, _ in self._tasks]

    def __len__(self) -> int:
        return len(self._tasks)

    def dispatch(self) -> list[str]:
        """Run every queued task; returns the labels of tasks that failed."""
        failed = []
        tasks, self._tasks = self._tasks, []
        for label, task in tasks:
            try:
                task()
            except Exception:
                db.session.rollback()
                current_app.logger.exception("Post-commit task failed: %s", label)
                failed.append(label)
        return failed


# =============================================================================
# NOTIFICATION SINK
# =============================================================================

def _format_cents(cents: int) -> str:
    return f"{cents // 100:,}.{cents % 100:02d}"


def notify_sale(total_cents: int, sale_id: int, cashier_name: str | None) -> int:
    """Notify every active admin about a completed sale. Returns rows created."""
    admins = db.session.query(User).filter_by(role=ROLE_ADMIN, is_active=True).all()
    for admin in admins:
        db.session.add(Notification(
            user_id=admin.id,
            type="sale",
            title="New sale",
            message=f"Sale #{sale_id} for {_format_cents(total_cents)} by {cashier_name or 'unknown'}",
            link=f"/sales/{sale_id}",
        ))
    db.session.commit()
    return len(admins)


# =============================================================================
# AUDIT SINK
# =============================================================================

def record_audit(
    action: str,
    entity_type: str,
    entity_id: int | None,
    user_id: int | None,
    details: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        details=details,
    )
    db.session.add(entry)
    db.session.commit()
    return entry
