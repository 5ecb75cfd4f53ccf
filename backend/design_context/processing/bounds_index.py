"""Flattened bounds index over an enhanced tree.

Nodes are stored in one list in pre-order; parent/child links are list
indices, so consumers never hold references into the tree itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..models import Bounds, TargetElement


@dataclass
class IndexedNode:
    """One row of the index."""
    index: int
    id: str
    name: str
    type: str
    bounds: Optional[Bounds]
    path: Tuple[str, ...]  # names from root down to this node
    depth: int
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)

    def to_target(self) -> TargetElement:
        return TargetElement(
            id=self.id, name=self.name, type=self.type,
            bounds=self.bounds, path=list(self.path),
        )


class BoundsIndex:
    def __init__(self, entries: List[IndexedNode]):
        self.entries = entries
        self._by_id: Dict[str, int] = {}
        for entry in entries:
            # First occurrence wins if the source repeats an id
            self._by_id.setdefault(entry.id, entry.index)

    @classmethod
    def from_tree(cls, root: Optional[Dict[str, Any]]) -> "BoundsIndex":
        entries: List[IndexedNode] = []
        if not root:
            return cls(entries)
        # (node, parent index, parent path)
        stack: List[Tuple[Dict[str, Any], Optional[int], Tuple[str, ...]]] = [(root, None, ())]
        while stack:
            node, parent, parent_path = stack.pop()
            name = str(node.get("name", ""))
            entry = IndexedNode(
                index=len(entries),
                id=str(node.get("id", "")),
                name=name,
                type=str(node.get("type", "")),
                bounds=Bounds.from_node(node),
                path=parent_path + (name,),
                depth=len(parent_path),
                parent=parent,
            )
            entries.append(entry)
            if parent is not None:
                entries[parent].children.append(entry.index)
            children = [c for c in node.get("children") or [] if isinstance(c, dict)]
            for child in reversed(children):
                stack.append((child, entry.index, entry.path))
        return cls(entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[IndexedNode]:
        return iter(self.entries)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._by_id

    @property
    def root(self) -> Optional[IndexedNode]:
        return self.entries[0] if self.entries else None

    def get(self, node_id: str) -> Optional[IndexedNode]:
        i = self._by_id.get(node_id)
        return self.entries[i] if i is not None else None

    def with_bounds(self) -> Iterator[IndexedNode]:
        return (e for e in self.entries if e.bounds is not None)

    def parent_of(self, entry: IndexedNode) -> Optional[IndexedNode]:
        return self.entries[entry.parent] if entry.parent is not None else None

    def children_of(self, entry: IndexedNode) -> List[IndexedNode]:
        return [self.entries[i] for i in entry.children]
