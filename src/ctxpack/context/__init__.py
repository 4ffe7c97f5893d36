"""Work-item context aggregation.

Gathers related items and their code changes for a primary work item,
deduplicates, scores and limits them, then trims the final package to an
absolute size budget.

Usage:
    from ctxpack.context.aggregator import ContextAggregator
    from ctxpack.context.trimmer import trim_to_budget

    aggregator = ContextAggregator(resolver, change_lookup)
    result = await aggregator.aggregate_context("PROJ-123")
"""

from ctxpack.context.models import AggregateOptions, AggregateResult, ContextRecord, WorkPackage

__all__ = ["AggregateOptions", "AggregateResult", "ContextRecord", "WorkPackage"]
