"""Custom exceptions for ctxpack."""


class CtxPackError(Exception):
    """Base exception for all ctxpack errors."""


class WorkspaceError(CtxPackError):
    """Errors loading a workspace file."""


class UpstreamUnavailableError(CtxPackError):
    """The relationship resolver or change lookup is down or misconfigured."""


class AggregationTimeoutError(UpstreamUnavailableError):
    """Context aggregation did not finish within its time limit."""

    def __init__(self, item_id: str, timeout: float):
        super().__init__(f"Context aggregation for {item_id} timed out after {timeout:.1f}s")
        self.item_id = item_id
        self.timeout = timeout


class MalformedUpstreamDataError(CtxPackError):
    """An upstream payload is missing fields the pipeline needs."""


class AggregationStageError(CtxPackError):
    """An unexpected failure inside one stage of context aggregation."""

    def __init__(self, item_id: str, stage: str, cause: BaseException):
        super().__init__(f"Aggregation of {item_id} failed during {stage}: {cause}")
        self.item_id = item_id
        self.stage = stage
        self.cause = cause
