"""Context aggregation for a primary work item.

Pipeline (one pass, results cached):
  1. Cache lookup
  2. Resolve the relationship graph (depth-limited, type-filtered)
  3. Fan out change lookups, one per related item, all at once
  4. Dedup/merge -> recency filter -> score -> count limit
  5. Summary and insights
  6. Freeze, cache, return

`aggregate_context` never raises. Resolver failure or a timeout degrades to
a relationship-only result flagged with `fallback_mode`; if even that is
unusable the result is empty. A failed change lookup only empties that one
item's change list.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TypeVar

from ctxpack.config import ContextConfig
from ctxpack.context.cache import ContextCache
from ctxpack.context.filters import filter_by_recency, limit_context_size
from ctxpack.context.merge import DiscoveredItem, merge_changes, merge_records
from ctxpack.context.models import (
    AggregateOptions,
    AggregateResult,
    CacheStats,
    ChangeRecord,
    ContextMetadata,
    Relationship,
)
from ctxpack.context.scoring import score_record, with_priority
from ctxpack.context.summary import build_insights, build_summary
from ctxpack.exceptions import (
    AggregationStageError,
    AggregationTimeoutError,
    CtxPackError,
    UpstreamUnavailableError,
)
from ctxpack.sources.base import (
    ChangeLookup,
    RelationshipResolver,
    ResolvedGraph,
    ResolvedRelationship,
    coerce_change_response,
    coerce_changes,
    coerce_resolver_response,
    repository_name,
)

logger = logging.getLogger("ctxpack.aggregator")

T = TypeVar("T")


def empty_result(
    item_id: str,
    now: datetime | None = None,
    scope: str | None = None,
    fallback_mode: bool | None = None,
) -> AggregateResult:
    """A result with no records, zeroed summary and generic insight text."""
    return AggregateResult(
        source_item_id=item_id,
        metadata=ContextMetadata(
            generated_at=(now or datetime.now(timezone.utc)).isoformat(),
            scope=scope,
            fallback_mode=fallback_mode,
        ),
    )


class ContextAggregator:
    """Builds AggregateResults from a relationship resolver and a change lookup.

    Usage:
        aggregator = ContextAggregator(resolver, change_lookup)
        result = await aggregator.aggregate_context("PROJ-123")
    """

    def __init__(
        self,
        resolver: RelationshipResolver,
        change_lookup: ChangeLookup,
        config: ContextConfig | None = None,
        cache: ContextCache | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.resolver = resolver
        self.change_lookup = change_lookup
        self.config = config or ContextConfig.from_env()
        self.cache = cache or ContextCache(
            ttl_seconds=self.config.cache_ttl,
            capacity=self.config.cache_capacity,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -------------------------------------------------------------------
    # Main entry point
    # -------------------------------------------------------------------

    async def aggregate_context(
        self,
        item_id: str,
        options: AggregateOptions | None = None,
        *,
        timeout: float | None = None,
    ) -> AggregateResult:
        """Aggregate related context for `item_id`. Never raises.

        One deadline, `timeout` or `config.timeout_seconds`, bounds the whole
        call including any relationship-only fallback.
        """
        options = self._resolve_options(options)
        key = ContextCache.make_key(item_id, options.repo_scope, options)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", item_id)
            return cached

        limit = timeout if timeout is not None else self.config.timeout_seconds
        deadline = asyncio.get_running_loop().time() + limit
        graph: ResolvedGraph | None = None
        try:
            graph = await self._with_timeout(item_id, self._resolve(item_id, options), deadline, limit)
            result = await self._with_timeout(
                item_id, self._build_full_context(item_id, graph, options), deadline, limit
            )
        except UpstreamUnavailableError as e:
            logger.warning("Returning relationship-only context for %s: %s", item_id, e)
            return await self._relationship_only_context(item_id, options, deadline, limit, graph)
        except CtxPackError as e:
            logger.error("Context aggregation failed for %s: %s", item_id, e)
            if self.config.enable_fallback:
                return await self._relationship_only_context(item_id, options, deadline, limit, graph)
            return empty_result(item_id, self._clock(), options.repo_scope)
        except Exception as e:
            logger.exception("Unexpected error aggregating context for %s: %s", item_id, e)
            return empty_result(item_id, self._clock(), options.repo_scope)

        self.cache.set(key, result)
        return result

    def _resolve_options(self, options: AggregateOptions | None) -> AggregateOptions:
        if options is None:
            options = AggregateOptions(
                depth=self.config.default_depth,
                include_types=list(self.config.include_types),
            )
        return options.model_copy(
            update={
                "max_age_months": (
                    options.max_age_months
                    if options.max_age_months is not None
                    else self.config.max_age_months
                ),
                "max_related": (
                    options.max_related
                    if options.max_related is not None
                    else self.config.max_related
                ),
            }
        )

    async def _with_timeout(
        self, item_id: str, awaitable: Awaitable[T], deadline: float, limit: float
    ) -> T:
        # wait_for cancels the inner task on expiry, so late results are dropped
        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError as e:
            raise AggregationTimeoutError(item_id, limit) from e

    # -------------------------------------------------------------------
    # Full and degraded pipelines
    # -------------------------------------------------------------------

    async def _build_full_context(
        self, item_id: str, graph: ResolvedGraph, options: AggregateOptions
    ) -> AggregateResult:
        if not graph.relationships:
            return empty_result(item_id, self._clock(), options.repo_scope)

        try:
            change_lists = await self._enrich(graph.relationships, options)
        except Exception as e:
            raise AggregationStageError(item_id, "enrich", e) from e

        discovered = [
            DiscoveredItem(
                item=rel.item,
                relationship=_relationship_of(rel),
                changes=merge_changes(rel.item.changes, changes),
            )
            for rel, changes in zip(graph.relationships, change_lists)
        ]
        return self._finalize(item_id, graph, discovered, options, fallback_mode=False)

    async def _relationship_only_context(
        self,
        item_id: str,
        options: AggregateOptions,
        deadline: float,
        limit: float,
        graph: ResolvedGraph | None = None,
    ) -> AggregateResult:
        """Reduced result from the relationship graph alone, no change lookups.

        A graph already resolved by the full pipeline is reused; otherwise the
        resolver is asked again with whatever time is left before `deadline`.
        """
        if graph is None:
            try:
                graph = await self._with_timeout(
                    item_id, self._resolve(item_id, options), deadline, limit
                )
            except UpstreamUnavailableError as e:
                logger.error("Relationship-only context unavailable for %s: %s", item_id, e)
                return empty_result(item_id, self._clock(), options.repo_scope, fallback_mode=True)

        if not graph.relationships:
            return empty_result(item_id, self._clock(), options.repo_scope, fallback_mode=True)

        discovered = [
            DiscoveredItem(
                item=rel.item,
                relationship=_relationship_of(rel),
                changes=list(rel.item.changes),
            )
            for rel in graph.relationships
        ]
        try:
            return self._finalize(item_id, graph, discovered, options, fallback_mode=True)
        except AggregationStageError as e:
            logger.error("Context aggregation failed for %s during %s: %s", item_id, e.stage, e.cause)
            return empty_result(item_id, self._clock(), options.repo_scope, fallback_mode=True)

    def _finalize(
        self,
        item_id: str,
        graph: ResolvedGraph,
        discovered: list[DiscoveredItem],
        options: AggregateOptions,
        fallback_mode: bool,
    ) -> AggregateResult:
        now = self._clock()
        stage = "merge"
        try:
            unique_before = len({d.item.item_id for d in discovered})
            records = merge_records(discovered)

            stage = "recency"
            records = filter_by_recency(records, options.max_age_months, now)

            stage = "score"
            records = [score_record(r, now) for r in records]
            if fallback_mode:
                records = [with_priority(r) for r in records]

            stage = "limit"
            records = limit_context_size(records, options.max_related)

            stage = "summary"
            summary = build_summary(records, unique_before)
            insights = build_insights(records, summary)
        except Exception as e:
            raise AggregationStageError(item_id, stage, e) from e

        metadata = ContextMetadata(
            generated_at=now.isoformat(),
            scope=options.repo_scope,
            fallback_mode=True if fallback_mode else None,
            filtering_applied=len(discovered) > len(records),
            total_related=len(graph.relationships),
            max_depth_reached=max((rel.depth for rel in graph.relationships), default=0),
            relationship_types=sorted({rel.relationship_type for rel in graph.relationships}),
        )
        return AggregateResult(
            source_item_id=graph.source_item_id or item_id,
            records=records,
            summary=summary,
            insights=insights,
            metadata=metadata,
        )

    # -------------------------------------------------------------------
    # Collaborator calls
    # -------------------------------------------------------------------

    async def _resolve(self, item_id: str, options: AggregateOptions) -> ResolvedGraph:
        try:
            raw = await self.resolver.resolve(
                item_id, depth=options.depth, include_types=options.include_types
            )
            response = coerce_resolver_response(raw)
        except Exception as e:
            raise UpstreamUnavailableError(f"relationship resolution failed: {e}") from e

        if not response.success or response.data is None:
            raise UpstreamUnavailableError(
                f"relationship resolution failed: {response.error or 'no data returned'}"
            )
        return response.data

    async def _enrich(
        self, relationships: list[ResolvedRelationship], options: AggregateOptions
    ) -> list[list[ChangeRecord]]:
        """Look up changes for every related item concurrently.

        All lookups settle before any result is inspected; one item's failure
        leaves its list empty and does not touch the others.
        """
        limit = self.config.max_concurrency
        semaphore = asyncio.Semaphore(limit) if limit > 0 else None

        async def lookup(item_id: str) -> list[ChangeRecord]:
            if semaphore is None:
                return await self._fetch_changes(item_id, options)
            async with semaphore:
                return await self._fetch_changes(item_id, options)

        outcomes = await asyncio.gather(
            *(lookup(rel.item_id) for rel in relationships), return_exceptions=True
        )

        change_lists: list[list[ChangeRecord]] = []
        for rel, outcome in zip(relationships, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Failed to fetch changes for %s: %s", rel.item_id, outcome)
                change_lists.append([])
            else:
                change_lists.append(outcome)
        return change_lists

    async def _fetch_changes(self, item_id: str, options: AggregateOptions) -> list[ChangeRecord]:
        found: list[ChangeRecord] = []
        for repo in options.detected_repos:
            try:
                response = coerce_change_response(await self.change_lookup.find(item_id, repo))
            except Exception as e:
                logger.debug("Failed to search repository %s for %s: %s", repo, item_id, e)
                continue
            found.extend(response.changes)

        if found:
            return found

        # Nothing in the detected repositories: fall back to the configured
        # scope, or the unscoped dev-status lookup when there is none
        response = coerce_change_response(
            await self.change_lookup.find(item_id, options.repo_scope)
        )
        if not response.success:
            logger.debug("No changes for %s: %s", item_id, response.error)
        return response.changes

    async def detect_repositories(self, item_id: str) -> list[str]:
        """Repository names referenced by the item's own development info."""
        changes = await self.fetch_dev_status(item_id)
        repos: list[str] = []
        for change in changes:
            if change.repository:
                name = repository_name(change.repository)
                if name not in repos:
                    repos.append(name)
        if repos:
            logger.info("Detected repositories for %s: %s", item_id, ", ".join(repos))
        return repos

    async def fetch_dev_status(self, item_id: str) -> list[ChangeRecord]:
        """Changes from the development panel, or [] if the lookup fails."""
        try:
            return coerce_changes(await self.change_lookup.dev_status(item_id))
        except Exception as e:
            logger.warning("Could not read development info for %s: %s", item_id, e)
            return []

    # -------------------------------------------------------------------
    # Cache management
    # -------------------------------------------------------------------

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def invalidate(self, item_id: str) -> int:
        """Drop cached results for one item so the next call rebuilds them."""
        return self.cache.invalidate(item_id)


def _relationship_of(rel: ResolvedRelationship) -> Relationship:
    return Relationship(type=rel.relationship_type, direction=rel.direction, depth=rel.depth)
