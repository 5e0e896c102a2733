"""HTTP middleware and error handlers for the board API."""

from fastapi import FastAPI

from bountyboard.config import Settings
from bountyboard.middleware.cors import setup_cors
from bountyboard.middleware.error_handler import setup_error_handlers
from bountyboard.middleware.logging import setup_logging
from bountyboard.middleware.rate_limit import RateLimitMiddleware
from bountyboard.middleware.request_id import RequestIdMiddleware

# Health, readiness and version checks are never throttled
UNTHROTTLED_PATHS = frozenset({"/health", "/ready", "/version"})


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """
    Install logging, error handlers and the middleware stack.

    Last added runs outermost, so the order on the wire is
    CORS -> request id -> rate limit -> routes. CORS wraps every response,
    429s and error bodies included, and rate-limit rejections are already
    tagged with a request id.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        exempt_paths=UNTHROTTLED_PATHS,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
