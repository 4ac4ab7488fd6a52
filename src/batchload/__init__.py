from .api import get_loader as get_loader
from .api import loader_scope as loader_scope
from .api import run as run
from .api import run_sync as run_sync
from .context import LoaderScope as LoaderScope
from .context import current_context as current_context
from .core import LoaderContext as LoaderContext
from .exceptions import ConcurrentCompletionError as ConcurrentCompletionError
from .exceptions import ContextCompletedError as ContextCompletedError
from .exceptions import LoaderUsageError as LoaderUsageError
from .exceptions import NoActiveContextError as NoActiveContextError
from .loader import DataLoader as DataLoader
from .lookup import to_lookup as to_lookup
from .options import LoaderOptions as LoaderOptions
from .utils.logging import setup_logging as setup_logging

__all__ = [
    "run",
    "run_sync",
    "loader_scope",
    "get_loader",
    "current_context",
    "LoaderContext",
    "LoaderScope",
    "DataLoader",
    "LoaderOptions",
    "to_lookup",
    "setup_logging",
    "LoaderUsageError",
    "ConcurrentCompletionError",
    "ContextCompletedError",
    "NoActiveContextError",
]
