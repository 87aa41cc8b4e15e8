"""Request ID helper for endpoints.

Prefers the id the observability middleware stored on ``request.state``, then
the logging context, then a default.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from soulconnect.obs import logging as obs_logging


def get_request_id(request: Optional[Request] = None, default: str = "unknown") -> str:
	if request is not None:
		rid = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
		if rid:
			return str(rid)
	return obs_logging.current_request_id() or default
