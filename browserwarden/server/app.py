from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from browserwarden.core.logging import log
from browserwarden.service.dispatcher import ToolDispatcher
from browserwarden.service.manager import SessionManager

VERSION = "1.1.0"


def create_app(manager: Optional[SessionManager] = None, install_signal_handlers: bool = False) -> FastAPI:
    """Build the HTTP app around one manager; its lifespan starts and stops the manager."""
    manager = manager or SessionManager()
    dispatcher = ToolDispatcher(manager)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await manager.start(install_signal_handlers=install_signal_handlers)
        try:
            yield
        finally:
            report = await manager.stop("server shutdown")
            if report is not None and not report.clean:
                log(f"Shutdown finished with problems: {report.errors + report.timed_out}", level="warning")

    app = FastAPI(title="BrowserWarden", version=VERSION, lifespan=lifespan)
    app.state.manager = manager
    app.state.dispatcher = dispatcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": VERSION,
            "shuttingDown": manager.shutdown_coordinator.triggered,
        }

    @app.get("/tools")
    async def list_tools():
        return {"tools": dispatcher.describe()}

    @app.post("/tools/{name}")
    async def call_tool(name: str, args: Dict[str, Any] = Body(default={})):
        if name not in dispatcher.tools:
            raise HTTPException(status_code=404, detail=f"Unknown tool: {name}")
        if manager.shutdown_coordinator.triggered:
            raise HTTPException(status_code=503, detail="Server is shutting down")
        text = await dispatcher.call(name, args)
        return {"tool": name, "text": text}

    @app.get("/stats")
    async def stats():
        return await manager.stats()

    return app
