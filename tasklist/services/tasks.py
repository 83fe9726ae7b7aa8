import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy.orm import Session

from tasklist import config, models
from tasklist.database import read_transaction, write_transaction
from tasklist.errors import ValidationError
from tasklist.models import TaskPriority, TaskStatus
from tasklist.services.common import check_fields, check_name, get_live_task, require_list, require_task
from tasklist.time_utils import as_utc, utc_now

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
UPDATABLE_FIELDS = {"title", "description", "status", "priority", "due_date", "estimated_hours"}


def check_hours(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        hours = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("Estimated hours must be a number", {"field": "estimated_hours"})
    if not hours.is_finite() or hours < 0:
        logger.info(f"Rejected estimated hours: {value}")
        raise ValidationError(
            "Estimated hours must be a non-negative number",
            {"field": "estimated_hours", "value": str(value)},
        )
    return hours


def check_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}', expected one of: {allowed}", {"field": field})


class TaskService:
    def __init__(self, db: Session):
        self.db = db

    def create_task(
        self,
        title: str,
        list_id: int,
        description: Optional[str] = None,
        due_date=None,
        priority: TaskPriority = TaskPriority.normal,
        estimated_hours=None,
        status: TaskStatus = TaskStatus.pending,
        commit: bool = True
    ) -> models.Task:
        """
        Create a task in a live list.

        Raises:
            ValidationError: empty title, negative estimated hours, bad status/priority
            NotFoundError: list does not resolve to a non-deleted list
        """
        logger.debug(f"Creating task: title={title!r}, list_id={list_id}")
        title = check_name(title, "title", MAX_TITLE_LENGTH)
        hours = check_hours(estimated_hours)
        priority = check_enum(TaskPriority, priority, "priority")
        status = check_enum(TaskStatus, status, "status")
        require_list(self.db, list_id)

        now = utc_now()
        task = models.Task(
            title=title,
            description=description,
            status=status,
            priority=priority,
            list_id=list_id,
            due_date=as_utc(due_date),
            estimated_hours=hours,
            created_at=now,
            updated_at=now
        )
        with write_transaction(self.db, commit=commit):
            self.db.add(task)

        logger.info(f"Task created successfully: id={task.id}")
        return task

    def get_task(self, task_id: int) -> models.Task:
        with read_transaction(self.db):
            return require_task(self.db, task_id)

    def update_task(self, task_id: int, **changes) -> models.Task:
        """
        Overwrite any provided field. Status may move between any two values;
        updated_at is refreshed on every call.
        """
        logger.debug(f"Updating task {task_id}: {changes}")
        check_fields(changes, UPDATABLE_FIELDS)
        task = require_task(self.db, task_id)

        if "title" in changes:
            changes["title"] = check_name(changes["title"], "title", MAX_TITLE_LENGTH)
        if "estimated_hours" in changes:
            changes["estimated_hours"] = check_hours(changes["estimated_hours"])
        if "due_date" in changes:
            changes["due_date"] = as_utc(changes["due_date"])
        if changes.get("status") is not None:
            changes["status"] = check_enum(TaskStatus, changes["status"], "status")
        elif "status" in changes:
            raise ValidationError("Status cannot be null", {"field": "status"})
        if changes.get("priority") is not None:
            changes["priority"] = check_enum(TaskPriority, changes["priority"], "priority")
        elif "priority" in changes:
            raise ValidationError("Priority cannot be null", {"field": "priority"})

        old_status = task.status
        with write_transaction(self.db):
            for field, value in changes.items():
                setattr(task, field, value)
            task.updated_at = utc_now()

        if "status" in changes and changes["status"] != old_status:
            logger.info(f"Task {task_id} status changed: {old_status.value} -> {changes['status'].value}")
        logger.info(f"Task {task_id} updated: fields={sorted(changes)}")
        return task

    def delete_task(self, task_id: int) -> bool:
        """Soft delete. False if the task does not exist or is already deleted."""
        logger.debug(f"Deleting task {task_id}")
        task = get_live_task(self.db, task_id)
        if not task:
            logger.info(f"Task {task_id} not found or already deleted")
            return False

        now = utc_now()
        with write_transaction(self.db):
            task.deleted_at = now
            task.updated_at = now

        logger.info(f"Task {task_id} deleted")
        return True

    def list_tasks(
        self,
        list_id: Optional[int] = None,
        status: Optional[TaskStatus] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[models.Task]:
        """
        Page through live tasks ordered by id.

        Omitted limit/offset fall back to the default window; limit is capped
        at the configured maximum page size.
        """
        limit = config.DEFAULT_PAGE_SIZE if limit is None else limit
        offset = 0 if offset is None else offset
        if limit < 1:
            raise ValidationError("Limit must be at least 1", {"limit": limit})
        if offset < 0:
            raise ValidationError("Offset must not be negative", {"offset": offset})
        limit = min(limit, config.MAX_PAGE_SIZE)
        logger.debug(f"Listing tasks: list_id={list_id}, status={status}, limit={limit}, offset={offset}")

        with read_transaction(self.db):
            query = self.db.query(models.Task).filter(models.Task.deleted_at.is_(None))
            if list_id is not None:
                query = query.filter(models.Task.list_id == list_id)
            if status is not None:
                query = query.filter(models.Task.status == check_enum(TaskStatus, status, "status"))
            return query.order_by(models.Task.id).offset(offset).limit(limit).all()
