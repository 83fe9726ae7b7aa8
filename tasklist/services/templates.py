"""
Templates: frozen copies of a list's tasks that can be turned into new lists.

Template tasks are independent rows; nothing links them back to the tasks
they were copied from, and applying or deleting a template never touches
lists created from it earlier.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from tasklist import models
from tasklist.database import read_transaction, write_transaction
from tasklist.errors import NotFoundError
from tasklist.models import TaskPriority, TaskStatus
from tasklist.services.common import check_fields, check_name, require_list
from tasklist.services.lists import ListService
from tasklist.services.tasks import MAX_TITLE_LENGTH, TaskService, check_enum, check_hours
from tasklist.time_utils import utc_now

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200
UPDATABLE_FIELDS = {"name", "description", "category"}


class TemplateService:
    def __init__(self, db: Session):
        self.db = db

    def _require_template(self, template_id: int) -> models.Template:
        template = self.db.query(models.Template).filter(
            models.Template.id == template_id,
            models.Template.deleted_at.is_(None)
        ).first()
        if not template:
            logger.critical(f"Template {template_id} not found")
            raise NotFoundError(f"Template {template_id} not found", {"template_id": template_id})
        return template

    def create_template(
        self,
        name: str,
        description: Optional[str] = None,
        category: Optional[str] = None,
        tasks: Iterable[dict] = ()
    ) -> models.Template:
        """
        Create a template from explicit task snapshots.

        Each task is a dict with title and optional description,
        estimated_hours and priority; order follows the iterable.
        """
        logger.debug(f"Creating template: name={name!r}, category={category}")
        name = check_name(name, "name", MAX_NAME_LENGTH)
        now = utc_now()
        template = models.Template(
            name=name, description=description, category=category, created_at=now, updated_at=now
        )
        for index, item in enumerate(tasks):
            title = check_name(item.get("title"), "title", MAX_TITLE_LENGTH)
            template.tasks.append(models.TemplateTask(
                title=title,
                description=item.get("description"),
                order_index=index,
                estimated_hours=check_hours(item.get("estimated_hours")),
                priority=check_enum(TaskPriority, item.get("priority") or TaskPriority.normal, "priority"),
            ))

        with write_transaction(self.db):
            self.db.add(template)

        logger.info(f"Template created: {template.name} (ID: {template.id}) with {len(template.tasks)} task(s)")
        return template

    def create_template_from_list(
        self,
        list_id: int,
        name: str,
        description: Optional[str] = None,
        category: Optional[str] = None
    ) -> models.Template:
        """Snapshot every live task of a list, in creation order."""
        logger.debug(f"Creating template {name!r} from list {list_id}")
        require_list(self.db, list_id)
        source_tasks = self.db.query(models.Task).filter(
            models.Task.list_id == list_id,
            models.Task.deleted_at.is_(None)
        ).order_by(models.Task.created_at, models.Task.id).all()

        return self.create_template(
            name,
            description=description,
            category=category,
            tasks=[
                {
                    "title": task.title,
                    "description": task.description,
                    "estimated_hours": task.estimated_hours,
                    "priority": task.priority,
                }
                for task in source_tasks
            ],
        )

    def get_template(self, template_id: int) -> models.Template:
        with read_transaction(self.db):
            return self._require_template(template_id)

    def list_templates(self, category: Optional[str] = None) -> List[models.Template]:
        with read_transaction(self.db):
            query = self.db.query(models.Template).filter(models.Template.deleted_at.is_(None))
            if category is not None:
                query = query.filter(models.Template.category == category)
            return query.order_by(models.Template.name, models.Template.id).all()

    def update_template(self, template_id: int, **changes) -> models.Template:
        """Update template metadata; every update bumps the version counter."""
        check_fields(changes, UPDATABLE_FIELDS)
        template = self._require_template(template_id)
        if "name" in changes:
            changes["name"] = check_name(changes["name"], "name", MAX_NAME_LENGTH)

        with write_transaction(self.db):
            for field, value in changes.items():
                setattr(template, field, value)
            template.version = template.version + 1
            template.updated_at = utc_now()

        logger.info(f"Template {template_id} updated to version {template.version}")
        return template

    def apply_template(
        self,
        template_id: int,
        list_name: str,
        description: Optional[str] = None,
        parent_list_id: Optional[int] = None
    ) -> models.TaskList:
        """
        Materialize a new list with one pending task per template task, in order.
        The list and all its tasks are written in a single transaction.
        """
        logger.debug(f"Applying template {template_id} as list {list_name!r}")
        template = self._require_template(template_id)
        snapshots = list(template.tasks)

        with write_transaction(self.db):
            task_list = ListService(self.db).create_list(
                list_name,
                description=description if description is not None else template.description,
                parent_list_id=parent_list_id,
                commit=False,
            )
            task_service = TaskService(self.db)
            for snapshot in snapshots:
                task_service.create_task(
                    snapshot.title,
                    task_list.id,
                    description=snapshot.description,
                    priority=snapshot.priority,
                    estimated_hours=snapshot.estimated_hours,
                    status=TaskStatus.pending,
                    commit=False,
                )

        logger.info(f"Template {template_id} applied: list {task_list.id} with {len(snapshots)} task(s)")
        return task_list

    def delete_template(self, template_id: int) -> bool:
        """Soft delete. False if missing or already deleted."""
        template = self.db.query(models.Template).filter(
            models.Template.id == template_id,
            models.Template.deleted_at.is_(None)
        ).first()
        if not template:
            logger.info(f"Template {template_id} not found or already deleted")
            return False

        now = utc_now()
        with write_transaction(self.db):
            template.deleted_at = now
            template.updated_at = now

        logger.info(f"Template {template_id} deleted")
        return True
