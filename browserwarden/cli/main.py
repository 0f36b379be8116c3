import typer
from browserwarden.cli.commands import serve, utils
from browserwarden.server.app import VERSION

app = typer.Typer(
    name="browserwarden",
    help="Leak-proof session manager for Playwright browsers and Electron apps",
    add_completion=False
)

# Register commands
app.command()(serve.serve)
app.command()(utils.doctor)
app.command()(utils.zombies)
app.command(name="config")(utils.show_config)

@app.command()
def version():
    """Show the BrowserWarden version."""
    typer.echo(f"BrowserWarden {VERSION}")

def version_callback(value: bool):
    if value:
        typer.echo(f"BrowserWarden {VERSION}")
        raise typer.Exit()

@app.callback()
def main(
    version: bool = typer.Option(None, "--version", callback=version_callback, is_eager=True),
):
    """
    BrowserWarden CLI - run and inspect the session manager.
    """
    pass

if __name__ == "__main__":
    app()
