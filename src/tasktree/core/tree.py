"""
ActionTree - The built, owned hierarchy of actions for one block.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, TYPE_CHECKING

from ..errors import ConfigError

if TYPE_CHECKING:
    from ..nodes.base import Action


logger = logging.getLogger(__name__)


class TreeStatus(str, Enum):
    """
    Current status of an action tree.

    - IDLE: not started
    - RUNNING: root is active
    - COMPLETED: root finished naturally
    - ABORTED: stopped by an interrupt or an error
    """

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"

    def is_terminal(self) -> bool:
        return self in (TreeStatus.COMPLETED, TreeStatus.ABORTED)


@dataclass
class ActionTree:
    """
    Named tree of actions with a single root.

    Invariants:
    - every non-root node has exactly one parent; the tree is acyclic
    - node ids are unique within the tree (checked at construction)

    Example:
        >>> tree = ActionTree(id="trial", name="Trial", root=Sequence("root", [...]))
        >>> tree.node_count
        4
    """

    id: str
    name: str
    root: "Action"
    description: str = ""
    source_path: str = ""

    _status: TreeStatus = field(default=TreeStatus.IDLE, repr=False)
    _index: Dict[str, "Action"] = field(default_factory=dict, repr=False)
    _on_status_change: Optional[Callable[["ActionTree", TreeStatus, TreeStatus], None]] = field(
        default=None, repr=False
    )

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigError("Tree id cannot be empty", code="E3001")
        if not self.name:
            self.name = self.id
        if self.root is None:
            raise ConfigError(f"Tree '{self.id}' has no root", code="E3001")

        for node in self.root.walk():
            if node.id in self._index:
                raise ConfigError(
                    f"Duplicate node ID '{node.id}' in tree '{self.id}'. "
                    f"Each node must have unique ID.",
                    code="E3002",
                )
            self._index[node.id] = node

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def status(self) -> TreeStatus:
        return self._status

    @property
    def node_count(self) -> int:
        return len(self._index)

    @property
    def max_depth(self) -> int:
        return self._compute_depth(self.root)

    def _compute_depth(self, node: "Action", current: int = 1) -> int:
        depth = current
        for child in node.children:
            depth = max(depth, self._compute_depth(child, current + 1))
        return depth

    # =========================================================================
    # Lookup
    # =========================================================================

    def walk(self) -> Iterator["Action"]:
        """Declared nodes, depth-first in declaration order."""
        return self.root.walk()

    def find(self, node_id: str) -> Optional["Action"]:
        """Declared node by id (repeat templates, not their live copies)."""
        return self._index.get(node_id)

    def path_to(self, node_id: str) -> List[str]:
        """Ids from the root down to a declared node, or [] if absent."""
        node = self._index.get(node_id)
        if node is None:
            return []
        path = []
        while node is not None:
            path.append(node.id)
            node = node.parent
        return list(reversed(path))

    def active_nodes(self) -> List["Action"]:
        """Live ACTIVE nodes in walk order."""
        result: List["Action"] = []
        self._collect_active(self.root, result)
        return result

    def _collect_active(self, node: "Action", result: List["Action"]) -> None:
        if not node.is_active:
            return
        result.append(node)
        for child in node.live_children():
            self._collect_active(child, result)

    def bound_lines(self) -> List[int]:
        """Every line id referenced by a binding, sorted."""
        lines = set()
        for node in self.walk():
            lines.update(node.bound_lines())
        return sorted(lines)

    # =========================================================================
    # Status
    # =========================================================================

    def on_status_change(
        self,
        callback: Callable[["ActionTree", TreeStatus, TreeStatus], None],
    ) -> None:
        """Register callback called with (tree, old_status, new_status)."""
        self._on_status_change = callback

    def _set_status(self, new_status: TreeStatus) -> None:
        if new_status != self._status:
            old_status = self._status
            self._status = new_status
            logger.debug(f"Tree {self.id} status: {old_status.value} -> {new_status.value}")
            if self._on_status_change:
                self._on_status_change(self, old_status, new_status)

    # =========================================================================
    # Debugging
    # =========================================================================

    def debug_info(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self._status.value,
            "node_count": self.node_count,
            "max_depth": self.max_depth,
            "source_path": self.source_path,
            "bound_lines": self.bound_lines(),
            "active_nodes": [node.id for node in self.active_nodes()],
        }

    def __repr__(self) -> str:
        return f"ActionTree(id='{self.id}', status={self._status.value}, nodes={self.node_count})"


__all__ = ["ActionTree", "TreeStatus"]
