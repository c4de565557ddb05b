"""Session correlation for log records.

Every turn runs inside ``session_scope(session_id)``. Loggers obtained with
``get_session_logger`` stamp each record with that id, so one customer's
turn can be followed from the session store through the tool loop and into
synthesis while other sessions are processed concurrently.

Usage:
    from sales_agent.logging_context import get_session_logger, session_scope

    logger = get_session_logger(__name__)
    with session_scope("5583999990000"):
        logger.info("Processing turn")  # record.session_id == "5583999990000"
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

NO_SESSION = "NO_SESSION"

_session_id: ContextVar[str] = ContextVar("session_id", default=NO_SESSION)


def get_session_id() -> str:
    """Session id of the current async context, or ``NO_SESSION`` outside a turn."""
    return _session_id.get()


@contextmanager
def session_scope(session_id: str) -> Iterator[None]:
    """Bind ``session_id`` for the duration of the block, restoring the previous id after."""
    token = _session_id.set(session_id)
    try:
        yield
    finally:
        _session_id.reset(token)


class SessionIdFilter(logging.Filter):
    """Adds ``session_id`` to every record passing through the logger."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = get_session_id()  # type: ignore[attr-defined]
        return True


def get_session_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not any(isinstance(f, SessionIdFilter) for f in logger.filters):
        logger.addFilter(SessionIdFilter())
    return logger
