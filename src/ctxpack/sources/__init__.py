"""Relationship and change-data collaborators."""

from ctxpack.sources.base import ChangeLookup, RelationshipResolver
from ctxpack.sources.graph import GraphRelationshipResolver, StaticChangeLookup, load_workspace

__all__ = [
    "ChangeLookup",
    "RelationshipResolver",
    "GraphRelationshipResolver",
    "StaticChangeLookup",
    "load_workspace",
]
