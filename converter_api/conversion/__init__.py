"""Conversion pipeline: backends, retry policy, orchestration and dispatch."""

from converter_api.conversion.dispatch import (
    Dispatcher,
    InlineDispatcher,
    QueueDispatcher,
    create_dispatcher,
)
from converter_api.conversion.orchestrator import (
    ConversionOrchestrator,
    SubmitResult,
    TaskActionResult,
    get_orchestrator,
    initialize_orchestrator,
    reset_orchestrator,
)
from converter_api.conversion.retry import RetryPolicy

__all__ = [
    "ConversionOrchestrator",
    "Dispatcher",
    "InlineDispatcher",
    "QueueDispatcher",
    "RetryPolicy",
    "SubmitResult",
    "TaskActionResult",
    "create_dispatcher",
    "get_orchestrator",
    "initialize_orchestrator",
    "reset_orchestrator",
]
