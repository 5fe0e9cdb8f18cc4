import asyncio
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from forgeheal.db.connection import dispose_db
from forgeheal.engine import SelfImprovementEngine, open_project
from forgeheal.web.backend.api import router as api_router
from forgeheal.web.backend.socket import router as socket_router

if os.name == "nt":
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

DEFAULT_PORT = 8678


def create_app(engine: Optional[SelfImprovementEngine] = None, project_dir: Optional[Path] = None) -> FastAPI:
    """
    Build the backend app.

    Either pass a ready engine (tests, embedding) or a project directory,
    in which case the engine is opened at startup and its database closed
    at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is None and project_dir is not None:
            # The web UI has no approval prompt; plans needing approval run as-is
            app.state.engine = await open_project(project_dir)
            yield
            await dispose_db()
        else:
            yield

    app = FastAPI(title="ForgeHeal Web API", lifespan=lifespan)
    app.state.engine = engine

    # Allow CORS for local development (frontend usually on :5173)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api")
    app.include_router(socket_router)

    @app.get("/")
    def health_check():
        return {"status": "ok", "service": "forgeheal-backend", "engine": app.state.engine is not None}

    return app


def build_app() -> FastAPI:
    """uvicorn factory: serves the project named by FORGEHEAL_PROJECT_DIR (default: cwd)."""
    return create_app(project_dir=Path(os.environ.get("FORGEHEAL_PROJECT_DIR", ".")))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(build_app(), host="0.0.0.0", port=DEFAULT_PORT)
