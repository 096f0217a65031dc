"""Request ID helper for endpoints.

The observability middleware binds the request id into the logging context
and onto ``request.state``; handlers that run outside the middleware (the
500 handler) only see the latter.
"""

from __future__ import annotations

from typing import Any, Optional

from velonx.obs import logging as obs_logging


def get_request_id(request: Any = None, default: str = "unknown") -> str:
    rid: Optional[str] = obs_logging.current_request_id()
    if not rid and request is not None:
        state = getattr(request, "state", None)
        rid = getattr(state, "request_id", None) if state is not None else None
    return rid or default
