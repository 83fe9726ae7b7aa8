"""
List hierarchy management.

Lists form a tree through parent_list_id. Every parent change is checked for
cycles and for the configured nesting limit, and list deletion either blocks
on dependents or cascades over the whole subtree inside one transaction.
Tasks are never deleted along with a list; they lose their membership.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tasklist import config, models, schemas
from tasklist.database import read_transaction, write_transaction
from tasklist.errors import ConflictError, CycleError, StructuralError, ValidationError
from tasklist.services.common import check_fields, check_name, get_live_list, require_list, require_task
from tasklist.services.hierarchy import (
    build_paths,
    collect_descendants,
    nest,
    subtree_height,
    walk_ancestors,
    would_create_cycle,
)
from tasklist.time_utils import utc_now

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200
UPDATABLE_FIELDS = {"name", "description", "parent_list_id"}


class ListService:
    def __init__(self, db: Session):
        self.db = db

    # ============== Hierarchy lookups ==============

    def _parent_of(self, list_id: int) -> Optional[int]:
        row = self.db.query(
            models.TaskList.parent_list_id,
            models.TaskList.deleted_at
        ).filter(models.TaskList.id == list_id).first()
        if row is None or row.deleted_at is not None:
            raise StructuralError(
                "List ancestor chain references a missing or deleted list",
                {"list_id": list_id},
            )
        return row.parent_list_id

    def _child_ids(self, list_id: int) -> List[int]:
        rows = self.db.query(models.TaskList.id).filter(
            models.TaskList.parent_list_id == list_id,
            models.TaskList.deleted_at.is_(None)
        ).order_by(models.TaskList.id).all()
        return [row.id for row in rows]

    def _depth_of(self, list_id: int) -> int:
        return len(walk_ancestors(list_id, self._parent_of)) - 1

    def _task_counts(self) -> Dict[int, int]:
        rows = self.db.query(models.Task.list_id, func.count(models.Task.id)).filter(
            models.Task.deleted_at.is_(None),
            models.Task.list_id.isnot(None)
        ).group_by(models.Task.list_id).all()
        return {list_id: count for list_id, count in rows}

    def _check_depth(self, parent_id: int, subtree_levels: int = 0) -> None:
        depth = self._depth_of(parent_id) + 1 + subtree_levels
        if depth > config.MAX_LIST_DEPTH:
            logger.info(f"Rejected nesting under list {parent_id}: depth {depth} > {config.MAX_LIST_DEPTH}")
            raise ValidationError(
                f"Lists may be nested at most {config.MAX_LIST_DEPTH} levels deep",
                {"parent_list_id": parent_id, "depth": depth, "max_depth": config.MAX_LIST_DEPTH},
            )

    # ============== Mutations ==============

    def create_list(
        self,
        name: str,
        description: Optional[str] = None,
        parent_list_id: Optional[int] = None,
        commit: bool = True
    ) -> models.TaskList:
        """
        Create a list, optionally below an existing parent.

        Args:
            name: List name, 1-200 characters after trimming
            description: Optional description
            parent_list_id: Parent list (must exist and not be deleted)
            commit: Commit immediately (default); False when composed into a larger unit of work

        Raises:
            ValidationError: empty or over-long name, or nesting too deep
            NotFoundError: parent list does not resolve
        """
        logger.debug(f"Creating list: name={name!r}, parent_list_id={parent_list_id}")
        name = check_name(name, "name", MAX_NAME_LENGTH)

        if parent_list_id is not None:
            require_list(self.db, parent_list_id, "Parent list")
            # Walking the parent chain also proves it is finite and acyclic
            self._check_depth(parent_list_id)

        now = utc_now()
        task_list = models.TaskList(
            name=name,
            description=description,
            parent_list_id=parent_list_id,
            created_at=now,
            updated_at=now
        )
        with write_transaction(self.db, commit=commit):
            self.db.add(task_list)

        logger.info(f"List created: {task_list.name} (ID: {task_list.id})")
        return task_list

    def update_list(self, list_id: int, **changes) -> models.TaskList:
        """
        Partially update a list. Only the keys present in changes are touched;
        passing parent_list_id=None explicitly makes the list a root.

        Raises:
            ValidationError: unknown field, invalid name, or nesting too deep
            NotFoundError: list or new parent does not resolve
            CycleError: the new parent is the list itself or one of its descendants
        """
        logger.debug(f"Updating list {list_id}: {changes}")
        check_fields(changes, UPDATABLE_FIELDS)
        task_list = require_list(self.db, list_id)

        if "name" in changes:
            changes["name"] = check_name(changes["name"], "name", MAX_NAME_LENGTH)

        if "parent_list_id" in changes and changes["parent_list_id"] != task_list.parent_list_id:
            new_parent_id = changes["parent_list_id"]
            if new_parent_id is not None:
                require_list(self.db, new_parent_id, "Parent list")
                if would_create_cycle(list_id, new_parent_id, self._parent_of):
                    raise CycleError(
                        f"List {new_parent_id} cannot become the parent of list {list_id}: this would create a cycle",
                        {"list_id": list_id, "parent_list_id": new_parent_id},
                    )
                self._check_depth(new_parent_id, subtree_height(list_id, self._child_ids))

        with write_transaction(self.db):
            for field, value in changes.items():
                setattr(task_list, field, value)
            task_list.updated_at = utc_now()

        logger.info(f"List {list_id} updated: fields={sorted(changes)}")
        return task_list

    def move_task(self, task_id: int, target_list_id: Optional[int] = None) -> bool:
        """
        Reassign a task to another list, or unassign it when target_list_id is None.
        Moving a task to the list it is already in writes nothing.
        """
        logger.debug(f"Moving task {task_id} to list {target_list_id}")
        task = require_task(self.db, task_id)
        if target_list_id is not None:
            require_list(self.db, target_list_id, "Target list")

        if task.list_id == target_list_id:
            logger.debug(f"Task {task_id} already in list {target_list_id}, nothing to do")
            return True

        with write_transaction(self.db):
            task.list_id = target_list_id
            task.updated_at = utc_now()

        logger.info(f"Task {task_id} moved to list {target_list_id}")
        return True

    def delete_list(self, list_id: int, cascade: bool = False) -> bool:
        """
        Soft-delete a list.

        Without cascade the list must have no live child lists and no live
        tasks. With cascade every descendant list is soft-deleted as well.
        In both cases the tasks of every deleted list are unassigned, never
        deleted, so no task keeps pointing at a deleted list.

        Returns:
            False if the list does not exist or is already deleted

        Raises:
            ConflictError: dependents exist and cascade is False
        """
        logger.debug(f"Deleting list {list_id} (cascade={cascade})")
        task_list = get_live_list(self.db, list_id)
        if not task_list:
            logger.info(f"List {list_id} not found or already deleted")
            return False

        if not cascade:
            child_ids = self._child_ids(list_id)
            task_count = self.db.query(models.Task).filter(
                models.Task.list_id == list_id,
                models.Task.deleted_at.is_(None)
            ).count()
            if child_ids or task_count:
                logger.info(f"List {list_id} has {len(child_ids)} child list(s) and {task_count} task(s)")
                raise ConflictError(
                    "List has dependents, use cascade to delete it",
                    {"list_id": list_id, "child_lists": len(child_ids), "tasks": task_count},
                )
            doomed = [list_id]
        else:
            doomed = [list_id] + collect_descendants(list_id, self._child_ids)

        now = utc_now()
        with write_transaction(self.db):
            self.db.query(models.TaskList).filter(
                models.TaskList.id.in_(doomed)
            ).update({"deleted_at": now, "updated_at": now}, synchronize_session="fetch")
            unassigned = self.db.query(models.Task).filter(
                models.Task.list_id.in_(doomed)
            ).update({"list_id": None, "updated_at": now}, synchronize_session="fetch")

        logger.info(f"Deleted {len(doomed)} list(s) starting at {list_id}, unassigned {unassigned} task(s)")
        return True

    # ============== Reads ==============

    def get_list(self, list_id: int) -> models.TaskList:
        with read_transaction(self.db):
            return require_list(self.db, list_id)

    def get_list_path(self, list_id: int) -> List[str]:
        """Names from the root down to the list itself."""
        require_list(self.db, list_id)
        chain = walk_ancestors(list_id, self._parent_of)
        names = dict(self.db.query(models.TaskList.id, models.TaskList.name).filter(
            models.TaskList.id.in_(chain)
        ).all())
        return [names[node_id] for node_id in reversed(chain)]

    def get_list_details(self, list_id: int) -> schemas.TaskListSummary:
        with read_transaction(self.db):
            task_list = require_list(self.db, list_id)
            path = self.get_list_path(list_id)
            task_count = self.db.query(models.Task).filter(
                models.Task.list_id == list_id,
                models.Task.deleted_at.is_(None)
            ).count()
            summary = schemas.TaskListSummary.model_validate(task_list)
            summary.path = path
            summary.depth = len(path) - 1
            summary.parent_name = path[-2] if len(path) > 1 else None
            summary.task_count = task_count
            summary.child_count = len(self._child_ids(list_id))
        return summary

    def get_all_lists(self, hierarchical: bool = False) -> List[schemas.TaskListSummary]:
        """
        All non-deleted lists with path, depth and counts precomputed.

        Flat mode returns every list ordered by id; hierarchical mode returns
        the roots with their descendants nested under children.
        """
        logger.debug(f"Listing lists (hierarchical={hierarchical})")
        with read_transaction(self.db):
            rows = self.db.query(models.TaskList).filter(
                models.TaskList.deleted_at.is_(None)
            ).order_by(models.TaskList.id).all()
            task_counts = self._task_counts()

        names = {row.id: row.name for row in rows}
        parents = {row.id: row.parent_list_id for row in rows}
        paths = build_paths(names, parents)
        child_counts: Dict[int, int] = {}
        for parent_id in parents.values():
            if parent_id is not None:
                child_counts[parent_id] = child_counts.get(parent_id, 0) + 1

        summaries = {}
        for row in rows:
            summary = schemas.TaskListSummary.model_validate(row)
            summary.path = paths[row.id]
            summary.depth = len(paths[row.id]) - 1
            summary.parent_name = names.get(row.parent_list_id)
            summary.task_count = task_counts.get(row.id, 0)
            summary.child_count = child_counts.get(row.id, 0)
            summaries[row.id] = summary

        if not hierarchical:
            return list(summaries.values())
        return nest(summaries, parents, lambda parent, child: parent.children.append(child))
