from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

# session_id is the checkout session of the shopper, not the admin cookie
_FIELDS = ("request_id", "admin_user_id", "session_id", "job")

_CONTEXT: dict[str, ContextVar[str | None]] = {
    name: ContextVar(name, default=None) for name in _FIELDS
}


def set_request_context(**values: str | None) -> None:
    for name, value in values.items():
        if name not in _CONTEXT:
            raise TypeError(f"Unknown request context field: {name}")
        if value is not None:
            _CONTEXT[name].set(str(value))


def get_request_id() -> str | None:
    return _CONTEXT["request_id"].get()


def get_admin_user_id() -> str | None:
    return _CONTEXT["admin_user_id"].get()


def get_session_id() -> str | None:
    return _CONTEXT["session_id"].get()


def snapshot_request_context() -> dict[str, str]:
    snapshot = {}
    for name, var in _CONTEXT.items():
        value = var.get()
        if value is not None:
            snapshot[name] = value
    return snapshot


def clear_request_context() -> None:
    for var in _CONTEXT.values():
        var.set(None)


@contextmanager
def job_context(job: str) -> Iterator[None]:
    """Tag every log line emitted inside a scheduled sweep with its job name."""
    token = _CONTEXT["job"].set(job)
    try:
        yield
    finally:
        _CONTEXT["job"].reset(token)
