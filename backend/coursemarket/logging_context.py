"""Per-request metadata carried on every log record.

``RequestContextMiddleware`` opens a context for each request; the auth
dependency adds the viewer once the session is known. ``RequestContextFilter``
copies the current values onto log records so the JSON formatter emits them.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar, Token
from dataclasses import dataclass, replace

import sentry_sdk


@dataclass(frozen=True, slots=True)
class RequestContext:
    request_id: str | None = None
    method: str | None = None
    path: str | None = None
    user_id: str | None = None


_EMPTY = RequestContext()
_request_context: ContextVar[RequestContext] = ContextVar("request_context", default=_EMPTY)


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - formatting only
        context = _request_context.get()
        record.request_id = context.request_id
        record.user_id = context.user_id
        record.path = context.path
        return True


def push_request_context(
    request_id: str,
    *,
    method: str | None = None,
    path: str | None = None,
) -> Token[RequestContext]:
    return _request_context.set(RequestContext(request_id=request_id, method=method, path=path))


def pop_request_context(token: Token[RequestContext]) -> None:
    _request_context.reset(token)


def current_context() -> RequestContext:
    return _request_context.get()


def set_user_context(user_id: str | None) -> None:
    _request_context.set(replace(_request_context.get(), user_id=user_id))
    sentry_sdk.set_user({"id": user_id} if user_id else None)


__all__ = [
    "RequestContext",
    "RequestContextFilter",
    "current_context",
    "pop_request_context",
    "push_request_context",
    "set_user_context",
]
