"""ctxpack - relevance-ranked, budget-bounded context packages for work items."""

__version__ = "0.1.0"
