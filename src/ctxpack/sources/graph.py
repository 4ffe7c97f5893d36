"""In-process collaborators backed by a networkx graph and static change data.

A workspace file describes items, the links between them, and the changes
recorded for each item:

    {
      "items":   [{"item_id": "PROJ-1", "status": "In Progress", ...}],
      "links":   [{"source": "PROJ-1", "target": "PROJ-2", "type": "child"}],
      "changes": {"PROJ-2": [{"id": 7, "status": "MERGED", ...}]}
    }

A link reads "target is the <type> of source". Every link is stored in both
directions so traversal works from either end.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from pathlib import Path
from typing import Any

import networkx as nx

from ctxpack.context.models import ChangeRecord, RelatedItem
from ctxpack.exceptions import WorkspaceError
from ctxpack.sources.base import (
    ChangeLookup,
    ChangeLookupData,
    ChangeLookupResponse,
    RelationshipResolver,
    ResolvedGraph,
    ResolvedRelationship,
    ResolverResponse,
    coerce_changes,
    repository_name,
)

logger = logging.getLogger("ctxpack.sources")

INVERSE_RELATIONSHIPS: dict[str, str] = {
    "parent": "child",
    "child": "parent",
    "subtask": "parent",
    "epic": "story",
    "story": "epic",
    "blocks": "blocked",
    "blocked": "blocks",
    "dependency": "dependency",
    "relates": "relates",
}


def build_item_graph(items: list[RelatedItem], links: list[dict[str, Any]]) -> nx.DiGraph:
    """Build a directed item graph. Edge attribute `kind` is the relationship type."""
    graph = nx.DiGraph()
    for item in items:
        graph.add_node(item.item_id, item=item)

    for link in links:
        source = link.get("source")
        target = link.get("target")
        kind = link.get("type", "relates")
        if not source or not target:
            logger.warning("Skipping link without both ends: %s", link)
            continue
        for node in (source, target):
            if not graph.has_node(node):
                graph.add_node(node, item=RelatedItem(item_id=node))
        graph.add_edge(source, target, kind=kind, direction="outward")
        inverse = INVERSE_RELATIONSHIPS.get(kind, kind)
        if not graph.has_edge(target, source):
            graph.add_edge(target, source, kind=inverse, direction="inward")

    return graph


class GraphRelationshipResolver(RelationshipResolver):
    """Depth-limited breadth-first traversal over an item graph."""

    def __init__(self, graph: nx.DiGraph) -> None:
        self.graph = graph

    async def resolve(
        self, item_id: str, depth: int = 2, include_types: list[str] | None = None
    ) -> ResolverResponse:
        if not self.graph.has_node(item_id):
            return ResolverResponse(success=False, error=f"Unknown item: {item_id}")

        allowed = set(include_types) if include_types else None
        relationships: list[ResolvedRelationship] = []
        seen_edges: set[tuple[str, str]] = set()
        expanded = {item_id}
        queue: deque[tuple[str, int]] = deque([(item_id, 0)])

        while queue:
            node, dist = queue.popleft()
            if dist >= depth:
                continue
            for succ in self.graph.successors(node):
                if succ == item_id:
                    continue
                edge = self.graph.edges[node, succ]
                kind = edge.get("kind", "relates")
                if allowed is not None and kind not in allowed:
                    continue
                # Each (item, type) is reported once, at its shallowest depth
                if (succ, kind) not in seen_edges:
                    seen_edges.add((succ, kind))
                    relationships.append(
                        ResolvedRelationship(
                            item_id=succ,
                            item=self.graph.nodes[succ].get("item"),
                            relationship_type=kind,
                            direction=edge.get("direction", "unknown"),
                            depth=dist + 1,
                        )
                    )
                if succ not in expanded:
                    expanded.add(succ)
                    queue.append((succ, dist + 1))

        return ResolverResponse(
            success=True,
            data=ResolvedGraph(
                source_item_id=item_id,
                relationships=relationships,
                metadata={"max_depth": depth},
            ),
        )

    def get_item(self, item_id: str) -> RelatedItem | None:
        if not self.graph.has_node(item_id):
            return None
        return self.graph.nodes[item_id].get("item")

    def subtasks_of(self, item_id: str) -> list[RelatedItem]:
        """Items linked to `item_id` as subtasks."""
        if not self.graph.has_node(item_id):
            return []
        return [
            self.graph.nodes[succ]["item"]
            for succ in self.graph.successors(item_id)
            if self.graph.edges[item_id, succ].get("kind") == "subtask"
        ]


class StaticChangeLookup(ChangeLookup):
    """Change lookup over a fixed item id -> changes mapping."""

    def __init__(self, changes: dict[str, list[ChangeRecord]] | None = None) -> None:
        self.changes = changes or {}

    async def find(self, item_id: str, repo_scope: str | None = None) -> ChangeLookupResponse:
        found = self.changes.get(item_id, [])
        if repo_scope:
            wanted = repository_name(repo_scope)
            found = [c for c in found if repository_name(c.repository) == wanted]
        return ChangeLookupResponse(success=True, data=ChangeLookupData(changes=found))

    async def dev_status(self, item_id: str) -> list[ChangeRecord]:
        return list(self.changes.get(item_id, []))


class Workspace:
    """A loaded workspace: item graph plus change data."""

    def __init__(self, graph: nx.DiGraph, changes: dict[str, list[ChangeRecord]]) -> None:
        self.resolver = GraphRelationshipResolver(graph)
        self.change_lookup = StaticChangeLookup(changes)

    def get_item(self, item_id: str) -> RelatedItem | None:
        return self.resolver.get_item(item_id)

    def subtasks_of(self, item_id: str) -> list[RelatedItem]:
        return self.resolver.subtasks_of(item_id)


def load_workspace(path: Path) -> Workspace:
    """Load a workspace JSON file."""
    try:
        data = json.loads(Path(path).read_text())
    except FileNotFoundError as e:
        raise WorkspaceError(f"Workspace file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise WorkspaceError(f"Workspace file is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise WorkspaceError("Workspace file must contain a JSON object")

    items: list[RelatedItem] = []
    for raw in data.get("items", []):
        try:
            items.append(RelatedItem.model_validate(raw))
        except ValueError as e:
            raise WorkspaceError(f"Invalid item in workspace: {e}") from e

    changes = {
        str(item_id): coerce_changes(entries)
        for item_id, entries in (data.get("changes") or {}).items()
    }
    graph = build_item_graph(items, data.get("links", []))
    return Workspace(graph, changes)
