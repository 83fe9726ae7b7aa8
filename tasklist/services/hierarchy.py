"""
Tree helpers shared by the list and tag hierarchies.

Both hierarchies are stored as flat rows with a parent id column. Everything
here works on plain ids through lookup callables, walks iteratively, and
fails fast with StructuralError when a chain revisits a node or grows past
the configured walk limit.
"""

import logging
from collections import deque
from typing import Callable, Dict, Iterable, List, Optional

from tasklist import config
from tasklist.errors import StructuralError

logger = logging.getLogger(__name__)

ParentLookup = Callable[[int], Optional[int]]
ChildrenLookup = Callable[[int], Iterable[int]]


def walk_ancestors(start_id: int, get_parent: ParentLookup, limit: int = None) -> List[int]:
    """
    Return the chain of ids from start_id up to its root, start_id first.

    Raises:
        StructuralError: the chain revisits a node or exceeds the walk limit
    """
    limit = limit or config.HIERARCHY_WALK_LIMIT
    chain = [start_id]
    visited = {start_id}
    current = get_parent(start_id)

    while current is not None:
        if current in visited:
            logger.warning(f"Circular parent chain detected at node {current} (started from {start_id})")
            raise StructuralError(
                "Hierarchy contains a cycle",
                {"start_id": start_id, "node_id": current},
            )
        if len(chain) >= limit:
            logger.warning(f"Parent chain from {start_id} exceeds walk limit {limit}")
            raise StructuralError(
                "Hierarchy exceeds maximum depth",
                {"start_id": start_id, "limit": limit},
            )
        visited.add(current)
        chain.append(current)
        current = get_parent(current)

    return chain


def would_create_cycle(node_id: int, new_parent_id: Optional[int], get_parent: ParentLookup) -> bool:
    """
    Check if making new_parent_id the parent of node_id would create a cycle.

    The node may not be its own parent and may not appear anywhere in the
    new parent's ancestor chain.
    """
    if new_parent_id is None:
        return False
    if node_id == new_parent_id:
        logger.info(f"Self-reference detected: node {node_id} cannot be its own parent")
        return True

    if node_id in walk_ancestors(new_parent_id, get_parent):
        logger.info(f"Cycle detected: node {node_id} is an ancestor of {new_parent_id}")
        return True
    return False


def collect_descendants(root_id: int, get_children: ChildrenLookup) -> List[int]:
    """
    BFS over the subtree below root_id. Returns descendant ids in BFS order,
    root excluded.
    """
    visited = {root_id}
    order = []
    queue = deque([root_id])

    while queue:
        current_id = queue.popleft()
        for child_id in get_children(current_id):
            if child_id in visited:
                raise StructuralError(
                    "Hierarchy contains a cycle",
                    {"root_id": root_id, "node_id": child_id},
                )
            visited.add(child_id)
            order.append(child_id)
            queue.append(child_id)

    logger.debug(f"Node {root_id} has {len(order)} descendant(s)")
    return order


def subtree_height(root_id: int, get_children: ChildrenLookup) -> int:
    """Number of levels below root_id (0 for a leaf)."""
    height = 0
    level = [root_id]
    seen = {root_id}

    while True:
        next_level = []
        for node_id in level:
            for child_id in get_children(node_id):
                if child_id in seen:
                    raise StructuralError(
                        "Hierarchy contains a cycle",
                        {"root_id": root_id, "node_id": child_id},
                    )
                seen.add(child_id)
                next_level.append(child_id)
        if not next_level:
            return height
        height += 1
        if height > config.HIERARCHY_WALK_LIMIT:
            raise StructuralError("Hierarchy exceeds maximum depth", {"root_id": root_id})
        level = next_level


def build_paths(names: Dict[int, str], parents: Dict[int, Optional[int]]) -> Dict[int, List[str]]:
    """
    Compute the root-to-self name path of every node in one pass.

    Args:
        names: node id -> name, for every live node
        parents: node id -> parent id (None for roots)

    Raises:
        StructuralError: a parent reference points outside the live set, or a
            chain is cyclic or too deep
    """
    def get_parent(node_id: int) -> Optional[int]:
        parent_id = parents.get(node_id)
        if parent_id is not None and parent_id not in names:
            raise StructuralError(
                "Node references a missing or deleted parent",
                {"node_id": node_id, "parent_id": parent_id},
            )
        return parent_id

    paths: Dict[int, List[str]] = {}
    for node_id in names:
        if node_id in paths:
            continue
        chain = walk_ancestors(node_id, get_parent)
        # Fill every node on the chain, root first, reusing known prefixes
        prefix: List[str] = []
        for ancestor_id in reversed(chain):
            if ancestor_id in paths:
                prefix = paths[ancestor_id]
                continue
            prefix = prefix + [names[ancestor_id]]
            paths[ancestor_id] = prefix
    return paths


def nest(items: Dict[int, object], parents: Dict[int, Optional[int]], attach: Callable[[object, object], None]) -> List[object]:
    """
    Arrange read models into a forest. Returns the roots in input order;
    attach(parent, child) links each child under its parent.
    """
    roots = []
    for node_id, item in items.items():
        parent_id = parents.get(node_id)
        if parent_id is None or parent_id not in items:
            roots.append(item)
        else:
            attach(items[parent_id], item)
    return roots
