"""Pipeline services: the operation queue processor and the batch trigger."""

from .batch_processor import BatchProcessor
from .processor import CycleResult, OperationQueueProcessor
from .timers import RecurringTimer

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "PipelineRuntime": (".runtime", "PipelineRuntime"),
    "get_runtime": (".runtime", "get_runtime"),
    "reset_runtime": (".runtime", "reset_runtime"),
}


def __getattr__(name: str):
    if name in _LAZY_IMPORTS:
        module_path, attr = _LAZY_IMPORTS[name]
        import importlib

        mod = importlib.import_module(module_path, __name__)
        return getattr(mod, attr)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "BatchProcessor",
    "CycleResult",
    "OperationQueueProcessor",
    "PipelineRuntime",
    "RecurringTimer",
    "get_runtime",
    "reset_runtime",
]
