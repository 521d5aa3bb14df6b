import contextvars
from dataclasses import dataclass, replace

UNSET = "-"


@dataclass(frozen=True)
class RequestContext:
    """Per-request fields copied onto every log record."""

    request_id: str = UNSET
    user_id: str = UNSET
    role: str = UNSET
    # Differs from ``role`` only while an admin is viewing as another role.
    view_role: str = UNSET


_context: contextvars.ContextVar[RequestContext] = contextvars.ContextVar(
    "request_context", default=RequestContext()
)


def current() -> RequestContext:
    return _context.get()


def begin_request(request_id: str) -> None:
    _context.set(RequestContext(request_id=request_id))


def bind_principal(user_id: str, role: str, view_role: str | None = None) -> None:
    _context.set(replace(_context.get(), user_id=user_id, role=role, view_role=view_role or role))


def clear_context() -> None:
    _context.set(RequestContext())
