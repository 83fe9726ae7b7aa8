"""
Tests for the tag hierarchy and tag associations.
"""

import logging
import pytest
from sqlalchemy import insert
from sqlalchemy.orm import Session

from tasklist import models
from tasklist.errors import ConflictError, CycleError, NotFoundError, ValidationError
from tasklist.services import ListService, TagService, TaskService

logger = logging.getLogger(__name__)


@pytest.fixture
def tag_tree(tags: TagService) -> dict:
    """context > home > garden"""
    context = tags.create_tag("context", color="#336699")
    home = tags.create_tag("home", color="green", parent_id=context.id)
    garden = tags.create_tag("garden", parent_id=home.id)
    return {"context": context, "home": home, "garden": garden}


# ============== Tag CRUD ==============


def test_create_tag(tags: TagService):
    tag = tags.create_tag("urgent", color="#f00")

    assert tag.id is not None
    assert tag.name == "urgent"
    assert tag.color == "#f00"
    assert tag.parent_id is None
    logger.info("✓ Tag created")


def test_create_tag_duplicate_name(tags: TagService):
    tags.create_tag("urgent")
    with pytest.raises(ConflictError):
        tags.create_tag("urgent")


@pytest.mark.parametrize("color", ["red!", "#12", "#GGGGGG", "123456"])
def test_create_tag_rejects_bad_color(tags: TagService, color):
    with pytest.raises(ValidationError):
        tags.create_tag("colored", color=color)


def test_create_tag_missing_parent(tags: TagService):
    with pytest.raises(NotFoundError):
        tags.create_tag("child", parent_id=42)


def test_tag_path_and_depth(tags: TagService, tag_tree: dict):
    """Test that path runs root to self and depth counts ancestors."""
    assert tags.get_tag_path(tag_tree["garden"].id) == ["context", "home", "garden"]

    summaries = {summary.name: summary for summary in tags.get_all_tags()}
    assert summaries["garden"].path == ["context", "home", "garden"]
    assert summaries["garden"].depth == 2
    assert summaries["context"].depth == 0


def test_get_all_tags_hierarchical(tags: TagService, tag_tree: dict):
    tags.create_tag("work")
    roots = tags.get_all_tags(hierarchical=True)

    assert [root.name for root in roots] == ["context", "work"]
    assert [child.name for child in roots[0].children] == ["home"]
    assert [child.name for child in roots[0].children[0].children] == ["garden"]


def test_update_tag_cycle(tags: TagService, tag_tree: dict):
    """Test that re-parenting a tag under its descendant is rejected."""
    with pytest.raises(CycleError):
        tags.update_tag(tag_tree["context"].id, parent_id=tag_tree["garden"].id)
    with pytest.raises(CycleError):
        tags.update_tag(tag_tree["home"].id, parent_id=tag_tree["home"].id)
    logger.info("✓ Tag cycle rejected")


def test_update_tag_rename_conflict(tags: TagService, tag_tree: dict):
    with pytest.raises(ConflictError):
        tags.update_tag(tag_tree["garden"].id, name="home")


def test_update_tag_to_root(tags: TagService, tag_tree: dict):
    tag = tags.update_tag(tag_tree["garden"].id, parent_id=None)
    assert tag.parent_id is None
    assert tags.get_tag_path(tag.id) == ["garden"]


def test_get_tag_by_name(tags: TagService, tag_tree: dict):
    assert tags.get_tag_by_name("home").id == tag_tree["home"].id
    with pytest.raises(NotFoundError):
        tags.get_tag_by_name("nope")


# ============== Associations ==============


def test_add_tag_to_task_is_idempotent(
    tags: TagService, sample_task: models.Task, test_db: Session
):
    """Test that adding a tag twice reports success and keeps one association."""
    logger.debug("Testing idempotent tag add")
    tag = tags.create_tag("urgent")

    assert tags.add_tag_to_task(sample_task.id, tag.id) is True
    assert tags.add_tag_to_task(sample_task.id, tag.id) is True

    count = test_db.query(models.TaskTag).filter(
        models.TaskTag.task_id == sample_task.id,
        models.TaskTag.tag_id == tag.id
    ).count()
    assert count == 1, f"Expected a single association, found {count}"
    assert [t.name for t in tags.get_task_tags(sample_task.id)] == ["urgent"]
    logger.info("✓ Tag add is idempotent")


def test_add_tag_to_list_is_idempotent(tags: TagService, home_list: models.TaskList):
    tag = tags.create_tag("family")

    assert tags.add_tag_to_list(home_list.id, tag.id) is True
    assert tags.add_tag_to_list(home_list.id, tag.id) is True
    assert [t.name for t in tags.get_list_tags(home_list.id)] == ["family"]


def test_add_tag_to_missing_entities(tags: TagService, sample_task: models.Task):
    tag = tags.create_tag("urgent")
    with pytest.raises(NotFoundError):
        tags.add_tag_to_task(999, tag.id)
    with pytest.raises(NotFoundError):
        tags.add_tag_to_list(999, tag.id)
    with pytest.raises(NotFoundError):
        tags.add_tag_to_task(sample_task.id, 999)


def test_concurrent_add_of_same_pair_succeeds(
    tags: TagService, sample_task: models.Task, test_db: Session, monkeypatch
):
    """Test that losing an insert race to another writer still reports success."""
    logger.debug("Testing concurrent tag add")
    tag = tags.create_tag("urgent")
    # Another writer commits the same association between our check and our insert
    test_db.execute(insert(models.TaskTag).values(task_id=sample_task.id, tag_id=tag.id))
    test_db.commit()

    real_find = tags._find_link
    calls = []

    def stale_find(*args):
        calls.append(args)
        return None if len(calls) == 1 else real_find(*args)

    monkeypatch.setattr(tags, "_find_link", stale_find)

    assert tags.add_tag_to_task(sample_task.id, tag.id) is True
    assert len(calls) == 2
    assert test_db.query(models.TaskTag).filter(models.TaskTag.tag_id == tag.id).count() == 1
    logger.info("✓ Concurrent add resolved as a no-op")


def test_remove_tag_returns_false_when_absent(tags: TagService, sample_task: models.Task):
    """Test that removing a missing association is not an error."""
    tag = tags.create_tag("urgent")
    assert tags.remove_tag_from_task(sample_task.id, tag.id) is False

    tags.add_tag_to_task(sample_task.id, tag.id)
    assert tags.remove_tag_from_task(sample_task.id, tag.id) is True
    assert tags.remove_tag_from_task(sample_task.id, tag.id) is False
    assert tags.remove_tag_from_list(sample_task.list_id, tag.id) is False


# ============== Delete ==============


def test_delete_tag_removes_associations(
    tags: TagService, tag_tree: dict, sample_task: models.Task, test_db: Session
):
    """Test that a hard delete drops every association and lifts the children."""
    logger.debug("Testing tag hard delete")
    home = tag_tree["home"]
    tags.add_tag_to_task(sample_task.id, home.id)
    tags.add_tag_to_list(sample_task.list_id, home.id)

    assert tags.delete_tag(home.id) is True

    test_db.expire_all()
    assert test_db.query(models.Tag).filter(models.Tag.id == home.id).first() is None
    assert test_db.query(models.TaskTag).filter(models.TaskTag.tag_id == home.id).count() == 0
    assert test_db.query(models.ListTag).filter(models.ListTag.tag_id == home.id).count() == 0
    assert tags.get_tag(tag_tree["garden"].id).parent_id == tag_tree["context"].id
    assert tags.get_tag_path(tag_tree["garden"].id) == ["context", "garden"]
    logger.info("✓ Tag deleted with associations")


def test_delete_missing_tag(tags: TagService):
    with pytest.raises(NotFoundError):
        tags.delete_tag(999)


def test_usage_counts_ignore_deleted_tasks(
    tags: TagService, tasks: TaskService, lists: ListService, home_list: models.TaskList
):
    tag = tags.create_tag("errand")
    kept = tasks.create_task("Post office", home_list.id)
    dropped = tasks.create_task("Bank", home_list.id)
    tags.add_tag_to_task(kept.id, tag.id)
    tags.add_tag_to_task(dropped.id, tag.id)
    tags.add_tag_to_list(home_list.id, tag.id)
    tasks.delete_task(dropped.id)

    summary = tags.get_all_tags()[0]
    assert summary.task_count == 1
    assert summary.list_count == 1
