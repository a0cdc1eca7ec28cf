"""Observability utilities for the Quillnote MCP server.

Provides logging setup with rotation, per-operation timing metrics and
a tracing decorator for both plain and coroutine functions.
"""
import functools
import inspect
import json
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_METRICS_FILE = Path.home() / ".quillnote" / "metrics.json"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
LOG_FILE_NAME = "quillnote.log"

ROOT_LOGGER_NAME = "quillnote_mcp"

# Arguments copied into trace logs when a traced function receives them
TRACE_ARGUMENTS = ("note_id", "name", "old_name", "query")

F = TypeVar('F', bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating file handler (and optionally stderr) to the package logger.

    Args:
        log_dir: Directory for quillnote.log. Defaults to config.log_dir
        level: Logging level for the quillnote_mcp hierarchy
        max_bytes: Size at which the log file is rotated
        backup_count: Rotated files to keep
        console: Also log to stderr

    Returns:
        Path to the log directory
    """
    if log_dir is None:
        from quillnote_mcp.config import config

        log_dir = config.log_dir
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    file_handler = RotatingFileHandler(
        log_path / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    # stdout carries the MCP stdio transport, so console logs go to stderr
    has_console = any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    )
    if console and not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    package_logger.info(f"Logging to {log_path / LOG_FILE_NAME} at {logging.getLevelName(level)}")
    return log_path


@dataclass
class OperationStats:
    """Running totals for one operation name."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'success_count': self.success_count,
            'error_count': self.error_count,
            'avg_duration_ms': round(self.total_ms / self.count, 2) if self.count else 0,
            'min_duration_ms': round(self.min_ms or 0, 2),
            'max_duration_ms': round(self.max_ms, 2),
            'last_error': self.last_error,
            'last_error_time': self.last_error_time.isoformat() if self.last_error_time else None,
        }


class MetricsCollector:
    """In-process operation metrics (note.get, qn_create_note, ...).

    Safe to share between threads; everything lives in memory until
    save_metrics() writes a snapshot.
    """

    def __init__(self, metrics_file: Optional[Union[str, Path]] = None):
        self._stats: Dict[str, OperationStats] = defaultdict(OperationStats)
        self._lock = Lock()
        self._started = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        with self._lock:
            stats = self._stats[operation]
            stats.count += 1
            stats.total_ms += duration_ms
            stats.min_ms = duration_ms if stats.min_ms is None else min(stats.min_ms, duration_ms)
            stats.max_ms = max(stats.max_ms, duration_ms)
            if success:
                stats.success_count += 1
            else:
                stats.error_count += 1
                stats.last_error = error
                stats.last_error_time = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation's stats, keyed by operation name."""
        with self._lock:
            return {name: stats.as_dict() for name, stats in self._stats.items()}

    def get_summary(self) -> Dict[str, Any]:
        """Totals across all operations, as shown by qn_get_metrics."""
        with self._lock:
            total = sum(s.count for s in self._stats.values())
            errors = sum(s.error_count for s in self._stats.values())
            return {
                'uptime_seconds': round((datetime.now(timezone.utc) - self._started).total_seconds(), 1),
                'total_operations': total,
                'total_errors': errors,
                'overall_success_rate': (total - errors) / total if total else 1.0,
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
            self._started = datetime.now(timezone.utc)

    def save_metrics(self) -> bool:
        """Write a JSON snapshot next to the configured metrics file.

        Returns:
            True if saved, False if the file could not be written.
        """
        snapshot = {
            "start_time": self._started.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": self.get_metrics(),
        }
        temp_file = self._metrics_file.with_suffix(".tmp")
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
            temp_file.replace(self._metrics_file)
        except OSError as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False
        return True


# Process-wide collector used by timed_operation and traced
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, record it in metrics and log START/END at DEBUG.

    Only wall time is measured, so the block may contain awaits.

    Yields:
        A dict for result details (e.g. note_id, result_count) that is
        appended to the END log line.

    Example:
        with timed_operation('qn_list_notes', sort=sort) as op:
            page = await repository.list_notes(principal)
            op['result_count'] = len(page.items)
    """
    correlation_id = str(uuid.uuid4())[:8]
    details: Dict[str, Any] = {}
    started = time.perf_counter()
    logger.debug(
        f"[{correlation_id}] START {operation} "
        f"({', '.join(f'{k}={v}' for k, v in context.items())})"
    )

    error_msg = None
    try:
        yield details
    except Exception as e:
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, duration_ms, error_msg is None, error_msg)
        status = 'OK' if error_msg is None else f'ERROR: {error_msg}'
        logger.debug(
            f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) [{status}] "
            f"{', '.join(f'{k}={v}' for k, v in details.items())}"
        )


def _trace_context(signature: inspect.Signature, args: tuple, kwargs: dict) -> Dict[str, Any]:
    """Pick the acting principal and note/folder identifiers out of a call."""
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return {}
    context = {}
    principal = bound.arguments.get("principal")
    if principal is not None:
        context["principal"] = getattr(principal, "id", principal)
    for name in TRACE_ARGUMENTS:
        if name in bound.arguments:
            context[name] = bound.arguments[name]
    return context


def _describe(details: Dict[str, Any], result: Any) -> None:
    if isinstance(result, (list, tuple, dict)):
        details['result_count'] = len(result)
    elif getattr(result, 'id', None) is not None:
        details['result_id'] = result.id


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run a function inside timed_operation.

    The acting principal's id and any note_id/name/query argument are
    included in the trace logs. Coroutine functions keep being coroutine
    functions.

    Example:
        @traced('note.create')
        async def create(self, principal, payload) -> Note:
            ...
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__
        signature = inspect.signature(func)

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                with timed_operation(op_name, **_trace_context(signature, args, kwargs)) as op:
                    result = await func(*args, **kwargs)
                    _describe(op, result)
                    return result

            return async_wrapper  # type: ignore

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with timed_operation(op_name, **_trace_context(signature, args, kwargs)) as op:
                result = func(*args, **kwargs)
                _describe(op, result)
                return result

        return wrapper  # type: ignore
    return decorator
