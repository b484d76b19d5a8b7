"""
Server - FastAPI app construction

Creates the app, installs CORS and the run router, and ties the engine's
connections to the app lifespan.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..engine import Engine
from . import runs


def create_app(engine: Engine, title: str = "GuardSymbi Engine API") -> FastAPI:
    """
    Create the FastAPI app.

    Args:
        engine: Engine the endpoints run against
        title: API title

    Returns:
        FastAPI app instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await engine.start()
        try:
            yield
        finally:
            await engine.close()

    app = FastAPI(title=title, lifespan=lifespan)
    setup_cors(app)
    runs.set_engine(engine)
    app.include_router(runs.router)
    app.state.engine = engine
    return app


def setup_cors(
    app: FastAPI,
    allow_origins: Optional[list] = None,
    allow_methods: Optional[list] = None,
    allow_headers: Optional[list] = None
):
    """
    Install the CORS middleware.

    Args:
        app: FastAPI app
        allow_origins: Allowed origins (default: ["*"])
        allow_methods: Allowed HTTP methods (default: ["*"])
        allow_headers: Allowed headers (default: ["*"])
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins or ["*"],
        allow_credentials=False,
        allow_methods=allow_methods or ["*"],
        allow_headers=allow_headers or ["*"],
    )
