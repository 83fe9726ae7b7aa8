"""
Search over tasks and lists.

Every field of a SearchFilter narrows the result; only the free-text query
is an OR across the text columns of an entity. Matching is plain
case-insensitive substring matching, with LIKE wildcards in the query
matched literally. Soft-deleted rows never match.
"""

import logging
from typing import Dict, List

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session

from tasklist import config, models, schemas
from tasklist.database import read_transaction
from tasklist.errors import ValidationError
from tasklist.models import PRIORITY_RANK, TaskStatus
from tasklist.time_utils import as_utc

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (TaskStatus.pending, TaskStatus.in_progress, TaskStatus.blocked)
SUGGESTION_SOURCE_LIMIT = 200


def like_pattern(text: str) -> str:
    """Substring LIKE pattern with %, _ and the escape char matched literally."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _text_match(pattern: str, *columns):
    return or_(*(column.ilike(pattern, escape="\\") for column in columns))


class SearchService:
    def __init__(self, db: Session):
        self.db = db

    def _limit(self, filter: schemas.SearchFilter) -> int:
        if filter.limit is None:
            return config.MAX_SEARCH_RESULTS
        return min(filter.limit, config.MAX_SEARCH_RESULTS)

    def search_tasks(self, filter: schemas.SearchFilter) -> List[models.Task]:
        """
        Find live tasks matching every given filter field.

        Completed tasks are included unless include_completed is False;
        cancelled tasks are excluded unless include_cancelled is True. Both
        flags apply on top of an explicit status filter.
        """
        logger.debug(f"Searching tasks: {filter.model_dump(exclude_defaults=True)}")
        Task = models.Task
        query = self.db.query(Task).filter(Task.deleted_at.is_(None))

        if filter.query and filter.query.strip():
            query = query.filter(_text_match(like_pattern(filter.query.strip()), Task.title, Task.description))
        if filter.status is not None:
            query = query.filter(Task.status == filter.status)
        if filter.priority is not None:
            query = query.filter(Task.priority == filter.priority)
        if filter.list_id is not None:
            query = query.filter(Task.list_id == filter.list_id)
        if not filter.include_completed:
            query = query.filter(Task.status != TaskStatus.completed)
        if not filter.include_cancelled:
            query = query.filter(Task.status != TaskStatus.cancelled)

        # Tag names are AND-combined: one membership test per name
        for tag_name in filter.tags:
            tagged = select(models.TaskTag.task_id).join(
                models.Tag, models.Tag.id == models.TaskTag.tag_id
            ).where(models.Tag.name == tag_name)
            query = query.filter(Task.id.in_(tagged))

        for attribute_name, fragment in filter.attributes.items():
            matching = select(models.TaskAttribute.task_id).join(
                models.AttributeDefinition, models.AttributeDefinition.id == models.TaskAttribute.definition_id
            ).where(
                models.AttributeDefinition.name == attribute_name,
                models.TaskAttribute.value.ilike(like_pattern(fragment), escape="\\")
            )
            query = query.filter(Task.id.in_(matching))

        if filter.due_from is not None:
            query = query.filter(Task.due_date >= as_utc(filter.due_from))
        if filter.due_to is not None:
            query = query.filter(Task.due_date <= as_utc(filter.due_to))
        if filter.created_from is not None:
            query = query.filter(Task.created_at >= as_utc(filter.created_from))
        if filter.created_to is not None:
            query = query.filter(Task.created_at <= as_utc(filter.created_to))

        query = query.order_by(*self._task_ordering(filter.sort_by, filter.sort_desc))

        with read_transaction(self.db):
            results = query.limit(self._limit(filter)).all()
        logger.info(f"Task search returned {len(results)} result(s)")
        return results

    def _task_ordering(self, sort_by: str, descending: bool) -> list:
        Task = models.Task

        def direction(column):
            return column.desc() if descending else column.asc()

        if sort_by == "relevance":
            # No scoring model: most recently updated first
            return [Task.updated_at.desc(), Task.id.desc()]
        if sort_by == "due":
            # Tasks without a due date go last in either direction
            return [Task.due_date.is_(None), direction(Task.due_date), direction(Task.id)]
        if sort_by == "priority":
            rank = case(PRIORITY_RANK, value=Task.priority, else_=0)
            return [direction(rank), direction(Task.id)]
        if sort_by == "title":
            return [direction(func.lower(Task.title)), direction(Task.id)]
        if sort_by == "created":
            return [direction(Task.created_at), direction(Task.id)]
        return [direction(Task.updated_at), direction(Task.id)]

    def search_lists(self, filter: schemas.SearchFilter) -> List[models.TaskList]:
        """
        Find live lists. The text query matches name or description,
        list_id selects direct children of that list, tags and attributes
        work as for tasks. Task-only fields (status, priority, due dates)
        are ignored; due and priority sorting fall back to relevance.
        """
        logger.debug(f"Searching lists: {filter.model_dump(exclude_defaults=True)}")
        TaskList = models.TaskList
        query = self.db.query(TaskList).filter(TaskList.deleted_at.is_(None))

        if filter.query and filter.query.strip():
            query = query.filter(
                _text_match(like_pattern(filter.query.strip()), TaskList.name, TaskList.description)
            )
        if filter.list_id is not None:
            query = query.filter(TaskList.parent_list_id == filter.list_id)
        for tag_name in filter.tags:
            tagged = select(models.ListTag.list_id).join(
                models.Tag, models.Tag.id == models.ListTag.tag_id
            ).where(models.Tag.name == tag_name)
            query = query.filter(TaskList.id.in_(tagged))
        for attribute_name, fragment in filter.attributes.items():
            matching = select(models.ListAttribute.list_id).join(
                models.AttributeDefinition, models.AttributeDefinition.id == models.ListAttribute.definition_id
            ).where(
                models.AttributeDefinition.name == attribute_name,
                models.ListAttribute.value.ilike(like_pattern(fragment), escape="\\")
            )
            query = query.filter(TaskList.id.in_(matching))
        if filter.created_from is not None:
            query = query.filter(TaskList.created_at >= as_utc(filter.created_from))
        if filter.created_to is not None:
            query = query.filter(TaskList.created_at <= as_utc(filter.created_to))

        def direction(column):
            return column.desc() if filter.sort_desc else column.asc()

        if filter.sort_by == "title":
            ordering = [direction(func.lower(TaskList.name)), direction(TaskList.id)]
        elif filter.sort_by == "created":
            ordering = [direction(TaskList.created_at), direction(TaskList.id)]
        elif filter.sort_by == "updated":
            ordering = [direction(TaskList.updated_at), direction(TaskList.id)]
        else:
            ordering = [TaskList.updated_at.desc(), TaskList.id.desc()]

        with read_transaction(self.db):
            results = query.order_by(*ordering).limit(self._limit(filter)).all()
        logger.info(f"List search returned {len(results)} result(s)")
        return results

    def get_search_suggestions(self, partial_query: str, max_suggestions: int = 10) -> List[str]:
        """
        Distinct task titles, list names and tag names containing the input.
        Prefix matches rank first, then alphabetical. Inputs shorter than two
        characters yield nothing.
        """
        text = (partial_query or "").strip()
        if len(text) < 2:
            return []
        if max_suggestions < 1:
            raise ValidationError("max_suggestions must be at least 1", {"max_suggestions": max_suggestions})

        pattern = like_pattern(text)
        sources = [
            self.db.query(models.Task.title).filter(
                models.Task.deleted_at.is_(None), models.Task.title.ilike(pattern, escape="\\")
            ),
            self.db.query(models.TaskList.name).filter(
                models.TaskList.deleted_at.is_(None), models.TaskList.name.ilike(pattern, escape="\\")
            ),
            self.db.query(models.Tag.name).filter(models.Tag.name.ilike(pattern, escape="\\")),
        ]
        candidates = set()
        with read_transaction(self.db):
            for source in sources:
                candidates.update(row[0] for row in source.distinct().limit(SUGGESTION_SOURCE_LIMIT).all())

        lowered = text.lower()
        ranked = sorted(
            candidates,
            key=lambda value: (not value.lower().startswith(lowered), value.lower(), value),
        )
        return ranked[:max_suggestions]

    def get_task_count_by_status(self, list_id: int = None) -> Dict[TaskStatus, int]:
        """Live task counts for every status, zero where none exist."""
        query = self.db.query(models.Task.status, func.count(models.Task.id)).filter(
            models.Task.deleted_at.is_(None)
        )
        if list_id is not None:
            query = query.filter(models.Task.list_id == list_id)

        counts = {status: 0 for status in TaskStatus}
        with read_transaction(self.db):
            for status, count in query.group_by(models.Task.status).all():
                counts[status] = count
        return counts

    def get_most_used_tags(self, max_results: int = 20) -> List[schemas.TagUsage]:
        """Every tag ranked by associations with live tasks plus live lists; unused tags count 0."""
        if max_results < 1:
            raise ValidationError("max_results must be at least 1", {"max_results": max_results})

        usage: Dict[int, int] = {}
        with read_transaction(self.db):
            task_rows = self.db.query(models.TaskTag.tag_id, func.count()).join(
                models.Task, models.Task.id == models.TaskTag.task_id
            ).filter(models.Task.deleted_at.is_(None)).group_by(models.TaskTag.tag_id).all()
            list_rows = self.db.query(models.ListTag.tag_id, func.count()).join(
                models.TaskList, models.TaskList.id == models.ListTag.list_id
            ).filter(models.TaskList.deleted_at.is_(None)).group_by(models.ListTag.tag_id).all()
            for tag_id, count in task_rows + list_rows:
                usage[tag_id] = usage.get(tag_id, 0) + count
            tags = self.db.query(models.Tag).all()

        ranked = sorted(tags, key=lambda tag: (-usage.get(tag.id, 0), tag.name))[:max_results]
        return [
            schemas.TagUsage(id=tag.id, name=tag.name, color=tag.color, usage_count=usage.get(tag.id, 0))
            for tag in ranked
        ]

    def get_task_analytics(self, list_id: int = None, max_tags: int = 10) -> schemas.TaskAnalytics:
        """Status breakdown with completion and active rates (percent, one decimal)."""
        counts = self.get_task_count_by_status(list_id)
        total = sum(counts.values())
        completed = counts[TaskStatus.completed]
        active = sum(counts[status] for status in ACTIVE_STATUSES)

        return schemas.TaskAnalytics(
            total_tasks=total,
            completed_tasks=completed,
            active_tasks=active,
            completion_rate=round(completed / total * 100, 1) if total > 0 else 0.0,
            active_rate=round(active / total * 100, 1) if total > 0 else 0.0,
            status_counts=counts,
            top_tags=self.get_most_used_tags(max_tags),
        )
