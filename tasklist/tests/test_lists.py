"""
Tests for the list hierarchy.

Tests cover:
- Creation and name validation
- Parent changes, cycle detection and nesting depth
- Moving tasks between lists
- Delete with and without cascade
- Flat and hierarchical listings with path/depth
"""

import logging
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from tasklist import config, models
from tasklist.errors import ConflictError, CycleError, NotFoundError, StoreError, StructuralError, ValidationError
from tasklist.services import ListService, TaskService

logger = logging.getLogger(__name__)


def walk_parent_chain(test_db: Session, list_id: int) -> list:
    """Follow parent_list_id from a list to its root, failing on revisits."""
    seen = []
    current = list_id
    while current is not None:
        assert current not in seen, f"List {current} visited twice in chain {seen}"
        seen.append(current)
        current = test_db.query(models.TaskList).filter(models.TaskList.id == current).first().parent_list_id
    return seen


# ============== Create ==============


def test_create_root_list(lists: ListService):
    """Test that a list without parent is a root with depth 0."""
    logger.debug("Testing root list creation")

    task_list = lists.create_list("  Groceries  ", description="Weekly shopping")

    assert task_list.id is not None
    assert task_list.name == "Groceries", f"Expected trimmed name, got {task_list.name!r}"
    assert task_list.parent_list_id is None
    assert task_list.deleted_at is None
    assert lists.get_list_path(task_list.id) == ["Groceries"]
    logger.info("✓ Root list created")


@pytest.mark.parametrize("name", ["", "   ", None, "x" * 201])
def test_create_list_rejects_invalid_name(lists: ListService, test_db: Session, name):
    """Test that empty and over-long names fail before anything is written."""
    with pytest.raises(ValidationError):
        lists.create_list(name)

    assert test_db.query(models.TaskList).count() == 0
    logger.info("✓ Invalid name rejected")


def test_create_list_accepts_200_characters(lists: ListService):
    """Test the name length boundary."""
    task_list = lists.create_list("x" * 200)
    assert len(task_list.name) == 200


def test_create_list_with_missing_parent(lists: ListService):
    """Test that a missing parent raises NotFoundError."""
    with pytest.raises(NotFoundError):
        lists.create_list("Orphan", parent_list_id=999)


def test_create_list_under_deleted_parent(lists: ListService, home_list: models.TaskList):
    """Test that a soft-deleted parent does not resolve."""
    lists.delete_list(home_list.id)

    with pytest.raises(NotFoundError):
        lists.create_list("Kitchen", parent_list_id=home_list.id)
    logger.info("✓ Deleted parent rejected")


def test_create_list_respects_max_depth(lists: ListService):
    """Test that nesting deeper than the configured maximum is rejected."""
    parent = lists.create_list("Level 0")
    for level in range(1, config.MAX_LIST_DEPTH + 1):
        parent = lists.create_list(f"Level {level}", parent_list_id=parent.id)

    with pytest.raises(ValidationError):
        lists.create_list("Too deep", parent_list_id=parent.id)
    logger.info("✓ Max depth enforced")


# ============== Update ==============


def test_update_list_partial(lists: ListService, home_list: models.TaskList):
    """Test that unspecified fields are preserved."""
    updated = lists.update_list(home_list.id, name="House")

    assert updated.name == "House"
    assert updated.description == "Things to do at home"
    assert updated.parent_list_id is None


def test_update_list_unknown_field(lists: ListService, home_list: models.TaskList):
    with pytest.raises(ValidationError):
        lists.update_list(home_list.id, colour="red")


def test_update_list_missing(lists: ListService):
    with pytest.raises(NotFoundError):
        lists.update_list(404, name="Nope")


def test_update_list_self_parent(lists: ListService, home_list: models.TaskList):
    """Test that a list cannot become its own parent."""
    with pytest.raises(CycleError):
        lists.update_list(home_list.id, parent_list_id=home_list.id)


def test_update_list_descendant_parent_is_cycle(lists: ListService, list_tree: dict, test_db: Session):
    """Test that moving a list under its own descendant fails and nothing changes."""
    logger.debug("Testing cycle detection through descendant")
    work, launch = list_tree["work"], list_tree["launch"]

    with pytest.raises(CycleError):
        lists.update_list(work.id, parent_list_id=launch.id)

    test_db.expire_all()
    assert lists.get_list(work.id).parent_list_id is None
    for node in list_tree.values():
        chain = walk_parent_chain(test_db, node.id)
        assert chain[-1] == work.id, f"Chain of {node.id} should end at root {work.id}: {chain}"
    logger.info("✓ Cycle rejected and hierarchy unchanged")


def test_update_list_reparent(lists: ListService, list_tree: dict):
    """Test moving a subtree to a new parent and back to root."""
    moved = lists.update_list(list_tree["projects"].id, parent_list_id=list_tree["admin"].id)
    assert moved.parent_list_id == list_tree["admin"].id
    assert lists.get_list_path(list_tree["launch"].id) == ["Work", "Admin", "Projects", "Launch"]

    root = lists.update_list(list_tree["projects"].id, parent_list_id=None)
    assert root.parent_list_id is None
    assert lists.get_list_path(list_tree["launch"].id) == ["Projects", "Launch"]


def test_update_list_reparent_counts_subtree_height(lists: ListService):
    """Test that moving a subtree checks the depth of its deepest descendant."""
    deep = lists.create_list("Deep root")
    for level in range(1, config.MAX_LIST_DEPTH + 1):
        deep = lists.create_list(f"Deep {level}", parent_list_id=deep.id)

    subtree = lists.create_list("Subtree")
    lists.create_list("Subtree child", parent_list_id=subtree.id)
    target = lists.get_list_path(deep.id)
    assert len(target) == config.MAX_LIST_DEPTH + 1

    middle = lists.create_list("Middle")
    with pytest.raises(ValidationError):
        # Deep already sits at the maximum depth and the subtree adds two levels
        lists.update_list(subtree.id, parent_list_id=deep.id)
    lists.update_list(subtree.id, parent_list_id=middle.id)


def test_update_list_missing_parent(lists: ListService, home_list: models.TaskList):
    with pytest.raises(NotFoundError):
        lists.update_list(home_list.id, parent_list_id=12345)


# ============== Move task ==============


def test_move_task_to_other_list(lists: ListService, sample_task: models.Task, list_tree: dict):
    assert lists.move_task(sample_task.id, list_tree["admin"].id) is True
    assert sample_task.list_id == list_tree["admin"].id


def test_move_task_unassign(lists: ListService, tasks: TaskService, sample_task: models.Task):
    """Test that a null target unassigns the task instead of deleting it."""
    assert lists.move_task(sample_task.id, None) is True

    task = tasks.get_task(sample_task.id)
    assert task.list_id is None
    assert task.deleted_at is None


def test_move_task_to_current_list_is_noop(lists: ListService, sample_task: models.Task):
    """Test that moving to the current list returns True and changes nothing."""
    before = (sample_task.list_id, sample_task.title, sample_task.created_at, sample_task.updated_at)

    assert lists.move_task(sample_task.id, sample_task.list_id) is True

    after = (sample_task.list_id, sample_task.title, sample_task.created_at, sample_task.updated_at)
    assert after == before, f"Expected unchanged task, got {after} vs {before}"
    logger.info("✓ Idempotent move")


def test_move_task_missing_target(lists: ListService, sample_task: models.Task):
    with pytest.raises(NotFoundError):
        lists.move_task(sample_task.id, 999)


def test_move_missing_task(lists: ListService, home_list: models.TaskList):
    with pytest.raises(NotFoundError):
        lists.move_task(999, home_list.id)


# ============== Delete ==============


def test_delete_missing_list_returns_false(lists: ListService):
    assert lists.delete_list(999) is False


def test_delete_list_twice(lists: ListService, home_list: models.TaskList):
    assert lists.delete_list(home_list.id) is True
    assert lists.delete_list(home_list.id) is False


def test_delete_without_cascade_conflicts_and_writes_nothing(
    lists: ListService, list_tree: dict, tasks: TaskService, test_db: Session
):
    """Test that dependents block a non-cascading delete with no partial writes."""
    logger.debug("Testing non-cascade delete with children")
    task = tasks.create_task("Plan", list_tree["work"].id)

    with pytest.raises(ConflictError):
        lists.delete_list(list_tree["work"].id, cascade=False)

    test_db.expire_all()
    assert test_db.query(models.TaskList).filter(models.TaskList.deleted_at.isnot(None)).count() == 0
    assert tasks.get_task(task.id).list_id == list_tree["work"].id
    logger.info("✓ Non-cascade delete rejected, store unchanged")


def test_delete_without_cascade_blocked_by_tasks(lists: ListService, sample_task: models.Task):
    with pytest.raises(ConflictError):
        lists.delete_list(sample_task.list_id)


def test_delete_with_cascade(lists: ListService, tasks: TaskService, list_tree: dict, test_db: Session):
    """Test that cascade soft-deletes every descendant and unassigns their tasks."""
    logger.debug("Testing cascade delete")
    launch_task = tasks.create_task("Ship it", list_tree["launch"].id)
    admin_task = tasks.create_task("File taxes", list_tree["admin"].id)
    other = lists.create_list("Personal")
    other_task = tasks.create_task("Read", other.id)

    assert lists.delete_list(list_tree["work"].id, cascade=True) is True

    test_db.expire_all()
    for node in list_tree.values():
        row = test_db.query(models.TaskList).filter(models.TaskList.id == node.id).first()
        assert row.deleted_at is not None, f"List {node.name} should be soft-deleted"

    for task_id in (launch_task.id, admin_task.id):
        row = test_db.query(models.Task).filter(models.Task.id == task_id).first()
        assert row is not None, "Tasks must never be hard-deleted"
        assert row.deleted_at is None
        assert row.list_id is None, f"Task {task_id} still points at deleted list {row.list_id}"

    assert tasks.get_task(other_task.id).list_id == other.id
    assert [summary.name for summary in lists.get_all_lists()] == ["Personal"]
    logger.info("✓ Cascade delete complete")


def test_delete_leaf_unassigns_soft_deleted_tasks(lists: ListService, tasks: TaskService, test_db: Session):
    """Test that no task, even a deleted one, is left pointing at a deleted list."""
    task_list = lists.create_list("Leaf")
    task = tasks.create_task("Old", task_list.id)
    tasks.delete_task(task.id)

    assert lists.delete_list(task_list.id) is True

    test_db.expire_all()
    assert test_db.query(models.Task).filter(models.Task.id == task.id).first().list_id is None


# ============== Listing ==============


def test_get_all_lists_flat(lists: ListService, tasks: TaskService, list_tree: dict):
    """Test that flat mode precomputes path, depth and counts."""
    tasks.create_task("Draft plan", list_tree["projects"].id)
    tasks.create_task("Book venue", list_tree["projects"].id)

    summaries = {summary.name: summary for summary in lists.get_all_lists()}

    assert set(summaries) == {"Work", "Projects", "Launch", "Admin"}
    assert summaries["Launch"].path == ["Work", "Projects", "Launch"]
    assert summaries["Launch"].depth == 2
    assert summaries["Work"].depth == 0
    assert summaries["Work"].child_count == 2
    assert summaries["Projects"].task_count == 2
    assert summaries["Projects"].parent_name == "Work"
    assert all(summary.children == [] for summary in summaries.values())


def test_get_all_lists_hierarchical(lists: ListService, list_tree: dict):
    """Test that hierarchical mode nests children under parents."""
    roots = lists.get_all_lists(hierarchical=True)

    assert [root.name for root in roots] == ["Work"]
    children = {child.name: child for child in roots[0].children}
    assert set(children) == {"Projects", "Admin"}
    assert [child.name for child in children["Projects"].children] == ["Launch"]


def test_get_list_details(lists: ListService, list_tree: dict):
    details = lists.get_list_details(list_tree["launch"].id)

    assert details.path == ["Work", "Projects", "Launch"]
    assert details.depth == 2
    assert details.parent_name == "Projects"
    assert details.child_count == 0


def test_corrupted_hierarchy_raises_structural_error(lists: ListService, list_tree: dict, test_db: Session):
    """Test that a cycle written behind the service's back fails fast instead of looping."""
    work = test_db.query(models.TaskList).filter(models.TaskList.id == list_tree["work"].id).first()
    work.parent_list_id = list_tree["launch"].id
    test_db.commit()

    with pytest.raises(StructuralError):
        lists.get_list_path(list_tree["launch"].id)
    with pytest.raises(StructuralError):
        lists.get_all_lists()
    logger.info("✓ Corrupted hierarchy detected")


# ============== Store failures ==============


@pytest.mark.parametrize("failure, expected", [
    (OperationalError("COMMIT", {}, Exception("disk I/O error")), StoreError),
    (IntegrityError("COMMIT", {}, Exception("UNIQUE constraint failed")), ConflictError),
])
def test_failed_commit_rolls_back(lists: ListService, test_db: Session, monkeypatch, failure, expected):
    """Test that a failing commit is rolled back and surfaced as a typed error."""
    logger.debug(f"Testing failed commit: {failure.__class__.__name__}")

    def failing_commit():
        raise failure

    monkeypatch.setattr(test_db, "commit", failing_commit)

    with pytest.raises(expected):
        lists.create_list("Doomed")

    assert lists.get_all_lists() == []
    assert test_db.query(models.TaskList).count() == 0
    logger.info("✓ Failed commit left no rows behind")
