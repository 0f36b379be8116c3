import sys
import shutil
import platform

import typer
from rich import print as rprint

from browserwarden.core.config import ConfigManager
from browserwarden.core.errors import PolicyIntrospectionFailure
from browserwarden.core.state import TerminationScope
from browserwarden.lifecycle.process import PsutilProcessInspector
from browserwarden.utils.ux import UX

def doctor():
    """Check environment health."""
    rprint("[bold cyan]Checking BrowserWarden environment...[/bold cyan]")

    rprint(f"• OS: {platform.system()} {platform.release()}")
    rprint(f"• Python: {sys.version.split()[0]}")

    try:
        settings = ConfigManager.load_settings()
        UX.check("Configuration", True)
    except ValueError as e:
        UX.check("Configuration", False, str(e))
        raise typer.Exit(code=1)

    UX.check("Playwright CLI", shutil.which("playwright") is not None)
    UX.check("Base Directory", settings.base_dir.exists() or None, str(settings.base_dir))

    inspector = PsutilProcessInspector()
    with UX.spinner("Reading process table..."):
        try:
            memory = inspector.resident_memory_mb()
            engines = inspector.count(settings.engine_process_pattern)
            problem = None
        except PolicyIntrospectionFailure as e:
            problem = str(e)
    if problem:
        UX.check("Process table", False, problem)
    else:
        UX.check("Process table", True, f"{engines} engine processes, {memory:.0f}MB resident")

    rprint("\n[bold green]System check complete.[/bold green]")

def zombies(
    kill: bool = typer.Option(False, "--kill", help="Terminate orphaned engine processes"),
):
    """Show engine processes and optionally terminate orphaned ones."""
    settings = ConfigManager.load_settings()
    inspector = PsutilProcessInspector()
    try:
        count = inspector.count(settings.engine_process_pattern)
    except PolicyIntrospectionFailure as e:
        UX.print_error(str(e))
        raise typer.Exit(code=1)

    UX.table(["Pattern", "Processes"], [(settings.engine_process_pattern, count)])

    if not kill:
        return
    if not count:
        UX.print_warning("Nothing to clean.")
        return
    try:
        terminated = inspector.terminate(settings.zombie_kill_pattern, TerminationScope.ORPHANED)
    except PolicyIntrospectionFailure as e:
        UX.print_error(str(e))
        raise typer.Exit(code=1)
    UX.print_success(f"Terminated {terminated} orphaned processes")

def show_config():
    """Print the effective configuration."""
    try:
        settings = ConfigManager.load_settings()
    except ValueError as e:
        UX.print_error(str(e))
        raise typer.Exit(code=1)

    UX.table(["Setting", "Value"], settings.model_dump().items())
