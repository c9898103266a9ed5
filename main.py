import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database

import auth
import chat
import companies
import projects
import realtime
import tasks
import teams
import users
from config import Settings, configure_logging
from database import connect, ensure_indexes
from errors import install_error_handlers
from realtime import Broadcaster

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    database = db if db is not None else connect(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_indexes(app.state.db)
        auth.ensure_master_admin(app.state.db, settings)
        logger.info("Task Management API ready")
        yield

    app = FastAPI(title="Task Management API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database
    app.state.broadcaster = Broadcaster()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    for module in (auth, companies, users, teams, projects, tasks, chat):
        app.include_router(module.router, prefix="/api")
    app.include_router(realtime.router)

    @app.get("/")
    def read_root():
        return {"message": "Task Management API running"}

    @app.get("/health")
    def health():
        response = {"backend": "running", "database": "unavailable", "collections": []}
        try:
            app.state.db.command("ping")
            response["database"] = "connected"
            response["collections"] = sorted(app.state.db.list_collection_names())[:10]
        except Exception as e:
            logger.warning("Health check failed: %s", e)
            response["database"] = f"error: {str(e)[:50]}"
        return response

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
