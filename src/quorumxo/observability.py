from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import sys
import threading
from typing import Final, Literal, ParamSpec, TextIO, TypeVar, cast


_LOGGER_NAME: Final[str] = "quorumxo"
_MAX_VALUE_LEN: Final[int] = 120
_NO_REPO: Final[str] = "-"
_VERBOSE_FORMAT: Final[str] = (
    "%(asctime)s %(levelname)s %(name)s [%(threadName)s] "
    "repo_full_name=%(repo_full_name)s %(message)s"
)
_LOW_VERBOSITY_EVENTS: Final[frozenset[str]] = frozenset(
    {
        "phase_transition_applied",
        "human_help_requested",
        "merge_ready_label_added",
        "merge_ready_label_removed",
        "notification_posted",
        "implementation_intake_accepted",
        "stale_pr_warned",
        "stale_pr_closed",
        "issue_implemented",
        "competing_pr_superseded",
        "sweep_completed",
        "repository_sweep_failed",
        "github_issue_comment_failed",
    }
)

_repo_context = threading.local()
_P = ParamSpec("_P")
_T = TypeVar("_T")


VerboseMode = Literal["low", "high"]


def configure_logging(
    verbose: bool | str | None,
    *,
    state_dir: Path | None = None,
) -> None:
    logger = logging.getLogger(_LOGGER_NAME)
    logger.propagate = False
    logger.handlers.clear()
    mode = _normalize_verbose_mode(verbose)

    if mode is None:
        logger.addHandler(logging.NullHandler())
        logger.setLevel(logging.CRITICAL + 1)
        return

    stream_handler = logging.StreamHandler(sys.stderr)
    _configure_handler(stream_handler, mode)
    logger.addHandler(stream_handler)

    if state_dir is not None:
        file_handler = _UtcDailyFileHandler(base_dir=state_dir)
        _configure_handler(file_handler, mode)
        logger.addHandler(file_handler)

    logger.setLevel(logging.INFO)


def log_event(
    logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: object
) -> None:
    logger.log(level, _build_event_message(event=event, fields=fields))


@contextmanager
def logging_repo_context(repo_full_name: str) -> Iterator[None]:
    previous = getattr(_repo_context, "repo_full_name", None)
    _repo_context.repo_full_name = repo_full_name
    try:
        yield
    finally:
        _repo_context.repo_full_name = previous


def bind_repo_context(fn: Callable[_P, _T]) -> Callable[_P, _T]:
    """Wrap ``fn`` so a worker thread logs under the caller's repository context."""
    repo_full_name = getattr(_repo_context, "repo_full_name", None)
    if repo_full_name is None:
        return fn

    def bound(*args: _P.args, **kwargs: _P.kwargs) -> _T:
        with logging_repo_context(repo_full_name):
            return fn(*args, **kwargs)

    return bound


def _build_event_message(*, event: str, fields: dict[str, object]) -> str:
    parts = [f"event={_normalize_field_value(event)}"]
    for key in sorted(fields.keys()):
        parts.append(f"{key}={_normalize_field_value(fields[key])}")
    return " ".join(parts)


def _normalize_field_value(value: object) -> str:
    if value is None:
        normalized = "null"
    elif isinstance(value, bool):
        normalized = "true" if value else "false"
    elif isinstance(value, int | float):
        normalized = str(value)
    elif isinstance(value, str):
        collapsed = " ".join(value.split())
        if len(collapsed) > _MAX_VALUE_LEN:
            collapsed = f"{collapsed[:_MAX_VALUE_LEN]}..."
        normalized = collapsed if collapsed else "<empty>"
    elif isinstance(value, tuple | list | frozenset | set):
        items = sorted(str(item) for item in value) if isinstance(value, frozenset | set) else value
        normalized = ",".join(str(item) for item in items) or "<empty>"
    else:
        normalized = f"<{type(value).__name__}>"

    if any(ch.isspace() for ch in normalized) or "=" in normalized:
        return json.dumps(normalized)
    return normalized


def _normalize_verbose_mode(verbose: bool | str | None) -> VerboseMode | None:
    if verbose is None:
        return None
    if isinstance(verbose, bool):
        return "high" if verbose else None
    normalized = verbose.strip().lower()
    if normalized in {"low", "high"}:
        return cast(VerboseMode, normalized)
    raise ValueError(f"Unsupported verbose mode: {verbose!r}")


def _configure_handler(handler: logging.Handler, mode: VerboseMode) -> None:
    handler.setFormatter(logging.Formatter(_VERBOSE_FORMAT))
    handler.addFilter(_RepoContextFilter())
    if mode == "low":
        handler.addFilter(_LowVerbosityFilter())


def _extract_event_name(message: str) -> str | None:
    if not message.startswith("event="):
        return None
    first_field = message.split(" ", 1)[0]
    if first_field == "event=":
        return None
    return first_field[len("event=") :]


def _extract_repo_full_name(message: str) -> str | None:
    for token in message.split(" "):
        if not token.startswith("repo_full_name="):
            continue
        raw = token[len("repo_full_name=") :]
        if raw.startswith('"'):
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError:
                return raw
            return decoded if isinstance(decoded, str) else raw
        return raw or None
    return None


def _repo_full_name_for_record(record: logging.LogRecord) -> str:
    current = getattr(_repo_context, "repo_full_name", None)
    if current:
        return cast(str, current)
    extracted = _extract_repo_full_name(record.getMessage())
    return extracted or _NO_REPO


class _RepoContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.repo_full_name = _repo_full_name_for_record(record)
        return True


class _LowVerbosityFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        event_name = _extract_event_name(record.getMessage())
        return event_name in _LOW_VERBOSITY_EVENTS


class _UtcDailyFileHandler(logging.Handler):
    def __init__(self, *, base_dir: Path) -> None:
        super().__init__()
        self._logs_dir = base_dir / "logs"
        self._stream: TextIO | None = None
        self._active_date = ""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stream = self._stream_for_current_date()
            stream.write(f"{self.format(record)}\n")
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        self.acquire()
        try:
            self._close_stream()
            super().close()
        finally:
            self.release()

    def _stream_for_current_date(self) -> TextIO:
        date_key = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        if self._stream is None or self._active_date != date_key:
            self._close_stream()
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            path = self._logs_dir / f"{date_key}.log"
            self._stream = path.open("a", encoding="utf-8")
            self._active_date = date_key
        return self._stream

    def _close_stream(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None
