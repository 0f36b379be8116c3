from pathlib import Path
from typing import Optional

import typer

from browserwarden.core.config import ConfigManager
from browserwarden.core.logging import Logger

def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(7331, help="Port to listen on"),
    base_dir: Optional[Path] = typer.Option(None, "--base-dir", help="Directory for screenshots, tests and logs"),
    session_timeout: Optional[float] = typer.Option(None, "--session-timeout", help="Idle seconds before a session is closed"),
    cleanup_interval: Optional[float] = typer.Option(None, "--cleanup-interval", help="Seconds between lifecycle checks"),
    max_memory: Optional[float] = typer.Option(None, "--max-memory", help="Resident memory ceiling in MB"),
    headed: bool = typer.Option(False, "--headed", help="Launch browsers with a visible window by default"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on the console"),
):
    """Run the session manager behind its HTTP API."""
    try:
        settings = ConfigManager.load_settings(
            base_dir=base_dir,
            session_timeout_seconds=session_timeout,
            cleanup_interval_seconds=cleanup_interval,
            max_memory_mb=max_memory,
            headless=False if headed else None,
        )
    except ValueError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    Logger.setup_logging(log_dir=settings.log_dir, verbose=verbose)

    import uvicorn
    from browserwarden.server.app import create_app
    from browserwarden.service.manager import SessionManager

    server = None

    def on_shutdown(report):
        # A fatal loop error drained the sessions; take the server down with them
        if server is not None:
            server.should_exit = True

    app = create_app(SessionManager(settings, on_shutdown=on_shutdown))
    config = uvicorn.Config(app, host=host, port=port, log_level="debug" if verbose else "info")
    server = uvicorn.Server(config)
    typer.echo(f"🚀 Starting BrowserWarden on http://{host}:{port}", err=True)
    # uvicorn owns SIGINT/SIGTERM and runs the app lifespan, which drains every session
    server.run()
