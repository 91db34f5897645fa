"""
asgi.py -- Application assembly for RackGuard.

This is the ONLY file that imports from both api/ and web/. It joins the two
independent layers into a single ASGI app without coupling them to each other.
api/main.py knows nothing about web/; web/routes.py knows nothing about
api/main.py.

Run with:  uvicorn asgi:app --reload
"""

from typing import Optional

from fastapi import FastAPI

from api.main import create_app
from core.config import Settings
from web.routes import router as web_router


def build_app(settings: Optional[Settings] = None) -> FastAPI:
    """create_app() plus the web UI router."""
    app = create_app(settings)
    app.include_router(web_router, tags=["Web UI"])
    return app


app = build_app()
