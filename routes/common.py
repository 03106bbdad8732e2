from __future__ import annotations

from fastapi import Request

from core.context import AppContext


def get_context(request: Request) -> AppContext:
    """Dependency that hands routes the application context built at startup."""
    return request.app.state.context
