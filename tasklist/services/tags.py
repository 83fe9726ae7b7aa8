"""
Tag hierarchy management and tag associations for tasks and lists.

Tags are shared across the whole store, addressed by id or unique name, and
form their own tree through parent_id. Tags are hard-deleted; deleting one
drops every association and lifts its children to the deleted tag's parent.
"""

import logging
import re
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tasklist import models, schemas
from tasklist.database import read_transaction, write_transaction
from tasklist.errors import ConflictError, CycleError, NotFoundError, StructuralError, ValidationError
from tasklist.services.common import check_fields, check_name, require_list, require_task
from tasklist.services.hierarchy import build_paths, nest, walk_ancestors, would_create_cycle

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
UPDATABLE_FIELDS = {"name", "color", "parent_id"}
COLOR_PATTERN = re.compile(r"^(#[0-9A-Fa-f]{3}|#[0-9A-Fa-f]{6}|[A-Za-z]{3,20})$")


def _check_color(color: Optional[str]) -> Optional[str]:
    if color is None:
        return None
    if not COLOR_PATTERN.match(color):
        logger.info(f"Rejected tag color {color!r}")
        raise ValidationError(
            "Color must be #RGB, #RRGGBB or a color name",
            {"field": "color", "value": color},
        )
    return color


class TagService:
    def __init__(self, db: Session):
        self.db = db

    def _parent_of(self, tag_id: int) -> Optional[int]:
        row = self.db.query(models.Tag.parent_id).filter(models.Tag.id == tag_id).first()
        if row is None:
            raise StructuralError("Tag ancestor chain references a missing tag", {"tag_id": tag_id})
        return row.parent_id

    def _require_tag(self, tag_id: int, label: str = "Tag") -> models.Tag:
        tag = self.db.query(models.Tag).filter(models.Tag.id == tag_id).first()
        if not tag:
            logger.critical(f"{label} {tag_id} not found")
            raise NotFoundError(f"{label} {tag_id} not found", {"tag_id": tag_id})
        return tag

    def _check_name_free(self, name: str, exclude_id: Optional[int] = None) -> None:
        query = self.db.query(models.Tag).filter(models.Tag.name == name)
        if exclude_id is not None:
            query = query.filter(models.Tag.id != exclude_id)
        if query.first():
            logger.info(f"Tag name already in use: {name}")
            raise ConflictError(f"Tag '{name}' already exists", {"name": name})

    # ============== Tag CRUD ==============

    def create_tag(self, name: str, color: Optional[str] = None, parent_id: Optional[int] = None) -> models.Tag:
        logger.debug(f"Creating tag: name={name!r}, parent_id={parent_id}")
        name = check_name(name, "name", MAX_NAME_LENGTH)
        color = _check_color(color)
        if parent_id is not None:
            self._require_tag(parent_id, "Parent tag")
            walk_ancestors(parent_id, self._parent_of)
        self._check_name_free(name)

        tag = models.Tag(name=name, color=color, parent_id=parent_id)
        with write_transaction(self.db):
            self.db.add(tag)

        logger.info(f"Tag created: {tag.name} (ID: {tag.id})")
        return tag

    def update_tag(self, tag_id: int, **changes) -> models.Tag:
        """
        Partially update a tag; re-parenting is checked for cycles.

        Raises:
            ValidationError: unknown field, bad name or color
            NotFoundError: tag or new parent does not exist
            ConflictError: another tag already has the new name
            CycleError: the new parent is the tag itself or one of its descendants
        """
        logger.debug(f"Updating tag {tag_id}: {changes}")
        check_fields(changes, UPDATABLE_FIELDS)
        tag = self._require_tag(tag_id)

        if "name" in changes:
            changes["name"] = check_name(changes["name"], "name", MAX_NAME_LENGTH)
            self._check_name_free(changes["name"], exclude_id=tag_id)
        if "color" in changes:
            changes["color"] = _check_color(changes["color"])

        new_parent_id = changes.get("parent_id")
        if new_parent_id is not None and new_parent_id != tag.parent_id:
            self._require_tag(new_parent_id, "Parent tag")
            if would_create_cycle(tag_id, new_parent_id, self._parent_of):
                raise CycleError(
                    f"Tag {new_parent_id} cannot become the parent of tag {tag_id}: this would create a cycle",
                    {"tag_id": tag_id, "parent_id": new_parent_id},
                )

        with write_transaction(self.db):
            for field, value in changes.items():
                setattr(tag, field, value)

        logger.info(f"Tag {tag_id} updated: fields={sorted(changes)}")
        return tag

    def delete_tag(self, tag_id: int) -> bool:
        """
        Hard-delete a tag together with all its task and list associations.
        Direct children are re-parented to the deleted tag's parent.

        Raises:
            NotFoundError: tag does not exist
        """
        logger.debug(f"Deleting tag {tag_id}")
        tag = self._require_tag(tag_id)
        parent_id = tag.parent_id

        with write_transaction(self.db):
            task_links = self.db.query(models.TaskTag).filter(
                models.TaskTag.tag_id == tag_id
            ).delete(synchronize_session=False)
            list_links = self.db.query(models.ListTag).filter(
                models.ListTag.tag_id == tag_id
            ).delete(synchronize_session=False)
            self.db.query(models.Tag).filter(
                models.Tag.parent_id == tag_id
            ).update({"parent_id": parent_id}, synchronize_session="fetch")
            self.db.delete(tag)

        logger.info(f"Tag {tag_id} deleted with {task_links} task and {list_links} list association(s)")
        return True

    # ============== Tag reads ==============

    def get_tag(self, tag_id: int) -> models.Tag:
        with read_transaction(self.db):
            return self._require_tag(tag_id)

    def get_tag_by_name(self, name: str) -> models.Tag:
        tag = self.db.query(models.Tag).filter(models.Tag.name == name).first()
        if not tag:
            logger.info(f"Tag '{name}' not found")
            raise NotFoundError(f"Tag '{name}' not found", {"name": name})
        return tag

    def get_tag_path(self, tag_id: int) -> List[str]:
        self._require_tag(tag_id)
        chain = walk_ancestors(tag_id, self._parent_of)
        names = dict(self.db.query(models.Tag.id, models.Tag.name).filter(models.Tag.id.in_(chain)).all())
        return [names[node_id] for node_id in reversed(chain)]

    def _usage_counts(self, association, live_entity, link_column) -> Dict[int, int]:
        rows = self.db.query(association.tag_id, func.count()).join(
            live_entity, link_column == live_entity.id
        ).filter(live_entity.deleted_at.is_(None)).group_by(association.tag_id).all()
        return {tag_id: count for tag_id, count in rows}

    def get_all_tags(self, hierarchical: bool = False) -> List[schemas.TagSummary]:
        """Every tag with path, depth and live task/list usage counts, ordered by name."""
        with read_transaction(self.db):
            tags = self.db.query(models.Tag).order_by(models.Tag.name).all()
            task_counts = self._usage_counts(models.TaskTag, models.Task, models.TaskTag.task_id)
            list_counts = self._usage_counts(models.ListTag, models.TaskList, models.ListTag.list_id)

        names = {tag.id: tag.name for tag in tags}
        parents = {tag.id: tag.parent_id for tag in tags}
        paths = build_paths(names, parents)

        summaries = {}
        for tag in tags:
            summary = schemas.TagSummary.model_validate(tag)
            summary.path = paths[tag.id]
            summary.depth = len(paths[tag.id]) - 1
            summary.task_count = task_counts.get(tag.id, 0)
            summary.list_count = list_counts.get(tag.id, 0)
            summaries[tag.id] = summary

        if not hierarchical:
            return list(summaries.values())
        return nest(summaries, parents, lambda parent, child: parent.children.append(child))

    # ============== Associations ==============

    def _find_link(self, association, link_column, entity_id: int, tag_id: int):
        return self.db.query(association).filter(
            link_column == entity_id,
            association.tag_id == tag_id
        ).first()

    def _add_link(self, association, link_column, entity_id: int, tag_id: int) -> bool:
        if self._find_link(association, link_column, entity_id, tag_id):
            logger.debug(f"{association.__tablename__}: {entity_id} already has tag {tag_id}")
            return True

        link = association(tag_id=tag_id)
        setattr(link, link_column.key, entity_id)
        try:
            with write_transaction(self.db):
                self.db.add(link)
        except ConflictError:
            # A concurrent writer inserted the same pair after our check
            if self._find_link(association, link_column, entity_id, tag_id):
                logger.info(f"{association.__tablename__}: tag {tag_id} on {entity_id} added concurrently")
                return True
            raise
        logger.info(f"{association.__tablename__}: tag {tag_id} added to {entity_id}")
        return True

    def add_tag_to_task(self, task_id: int, tag_id: int) -> bool:
        """Attach a tag to a task. Adding an existing association is a successful no-op."""
        logger.debug(f"Adding tag {tag_id} to task {task_id}")
        require_task(self.db, task_id)
        self._require_tag(tag_id)

        return self._add_link(models.TaskTag, models.TaskTag.task_id, task_id, tag_id)

    def add_tag_to_list(self, list_id: int, tag_id: int) -> bool:
        """Attach a tag to a list. Adding an existing association is a successful no-op."""
        logger.debug(f"Adding tag {tag_id} to list {list_id}")
        require_list(self.db, list_id)
        self._require_tag(tag_id)

        return self._add_link(models.ListTag, models.ListTag.list_id, list_id, tag_id)

    def remove_tag_from_task(self, task_id: int, tag_id: int) -> bool:
        with write_transaction(self.db):
            removed = self.db.query(models.TaskTag).filter(
                models.TaskTag.task_id == task_id,
                models.TaskTag.tag_id == tag_id
            ).delete(synchronize_session=False)
        logger.info(f"Removed tag {tag_id} from task {task_id}: {bool(removed)}")
        return removed > 0

    def remove_tag_from_list(self, list_id: int, tag_id: int) -> bool:
        with write_transaction(self.db):
            removed = self.db.query(models.ListTag).filter(
                models.ListTag.list_id == list_id,
                models.ListTag.tag_id == tag_id
            ).delete(synchronize_session=False)
        logger.info(f"Removed tag {tag_id} from list {list_id}: {bool(removed)}")
        return removed > 0

    def get_task_tags(self, task_id: int) -> List[models.Tag]:
        require_task(self.db, task_id)
        return self.db.query(models.Tag).join(
            models.TaskTag, models.TaskTag.tag_id == models.Tag.id
        ).filter(models.TaskTag.task_id == task_id).order_by(models.Tag.name).all()

    def get_list_tags(self, list_id: int) -> List[models.Tag]:
        require_list(self.db, list_id)
        return self.db.query(models.Tag).join(
            models.ListTag, models.ListTag.tag_id == models.Tag.id
        ).filter(models.ListTag.list_id == list_id).order_by(models.Tag.name).all()
