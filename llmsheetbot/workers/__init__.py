"""Worker adapters that turn a task prompt into answer text."""

from .base import DispatchResult, WorkerAdapter
from .chat_completion import ChatCompletionAdapter
from .echo import EchoAdapter
from .registry import ADAPTER_TYPES, WorkerRegistry, build_registry

__all__ = [
    "DispatchResult",
    "WorkerAdapter",
    "ChatCompletionAdapter",
    "EchoAdapter",
    "WorkerRegistry",
    "ADAPTER_TYPES",
    "build_registry",
]
