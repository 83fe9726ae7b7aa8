"""Lookups shared by several services."""

import logging

from sqlalchemy.orm import Session

from tasklist import models
from tasklist.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def get_live_list(db: Session, list_id: int):
    return db.query(models.TaskList).filter(
        models.TaskList.id == list_id,
        models.TaskList.deleted_at.is_(None)
    ).first()


def require_list(db: Session, list_id: int, label: str = "List") -> models.TaskList:
    """Return the non-deleted list or raise NotFoundError."""
    task_list = get_live_list(db, list_id)
    if not task_list:
        logger.critical(f"{label} {list_id} not found")
        raise NotFoundError(f"{label} {list_id} not found", {"list_id": list_id})
    return task_list


def get_live_task(db: Session, task_id: int):
    return db.query(models.Task).filter(
        models.Task.id == task_id,
        models.Task.deleted_at.is_(None)
    ).first()


def require_task(db: Session, task_id: int) -> models.Task:
    """Return the non-deleted task or raise NotFoundError."""
    task = get_live_task(db, task_id)
    if not task:
        logger.critical(f"Task {task_id} not found")
        raise NotFoundError(f"Task {task_id} not found", {"task_id": task_id})
    return task


def check_name(value, field: str, max_length: int) -> str:
    """Trim a required name and enforce its length."""
    if value is None or not str(value).strip():
        logger.info(f"Rejected empty {field}")
        raise ValidationError(f"{field.capitalize()} is required", {"field": field})
    value = str(value).strip()
    if len(value) > max_length:
        logger.info(f"Rejected {field} of length {len(value)}")
        raise ValidationError(
            f"{field.capitalize()} must be at most {max_length} characters",
            {"field": field, "max_length": max_length, "length": len(value)},
        )
    return value


def check_fields(changes: dict, allowed: set) -> None:
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(unknown)}", {"fields": unknown})
