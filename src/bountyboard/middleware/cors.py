"""CORS middleware configuration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bountyboard.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """
    Allow the board frontend origins.

    Bearer tokens travel in the Authorization header. Credentialed requests
    are only allowed for explicit origins, never for a ``*`` wildcard.
    """
    wildcard = "*" in settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if wildcard else settings.cors_origins,
        allow_credentials=not wildcard,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
        expose_headers=["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit"],
    )
