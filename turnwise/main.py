"""Main FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from turnwise import __version__
from turnwise.api.endpoints import router
from turnwise.context import RuntimeContext
from turnwise.utils.logging import setup_logging


def create_app(runtime: RuntimeContext | None = None) -> FastAPI:
    """Create the application.

    Args:
        runtime: Runtime to serve; one is built from the environment at startup when omitted.
            A runtime passed in is not closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if runtime is not None:
            app.state.runtime = runtime
            yield
            return

        setup_logging()
        app.state.runtime = RuntimeContext.create()
        try:
            yield
        finally:
            app.state.runtime.close()

    app = FastAPI(
        title="Turnwise",
        description="A turn-based conversation runtime with tool calling and human-in-the-loop approvals.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=[
            {
                "name": "Conversation",
                "description": "Send messages, inspect and rewind conversations.",
            },
            {
                "name": "Approvals",
                "description": "Review tool calls waiting for permission.",
            },
            {
                "name": "Health",
                "description": "Service health monitoring and status checks.",
            },
        ],
    )
    if runtime is not None:
        app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("turnwise.main:create_app", factory=True, host="0.0.0.0", port=9001, log_level="info")
