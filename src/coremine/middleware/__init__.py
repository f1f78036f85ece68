"""Middleware registration."""

from fastapi import FastAPI

from coremine.config import Settings
from coremine.middleware.cors import setup_cors
from coremine.middleware.error_handler import setup_error_handlers
from coremine.middleware.logging import setup_logging
from coremine.middleware.rate_limit import RateLimitMiddleware
from coremine.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and middleware.

    Starlette runs middleware in reverse-add order. Request ids are bound
    before rate limiting so 429s are tagged too, and CORS is added last so it
    wraps every response.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
