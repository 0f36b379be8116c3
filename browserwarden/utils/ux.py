from typing import Iterable, Optional, Sequence

from yaspin import yaspin
from rich.console import Console
from rich.table import Table

console = Console(width=100)  # fixed width keeps tables stable in captured output


class UX:
    """
    Terminal output for the BrowserWarden CLI.
    Spinners come from yaspin, everything else goes through one Rich console.
    """

    @staticmethod
    def spinner(text: str):
        return yaspin(text=text, color="cyan", spinner="dots")

    @staticmethod
    def check(label: str, ok: Optional[bool], detail: str = ""):
        """One doctor line: green when ok, yellow when unknown (None), red otherwise."""
        if ok is None:
            status = "[yellow]UNKNOWN[/yellow]"
        else:
            status = "[green]OK[/green]" if ok else "[red]FAILED[/red]"
        console.print(f"• {label}: {status}" + (f" ({detail})" if detail else ""))

    @staticmethod
    def table(columns: Sequence[str], rows: Iterable[Sequence[object]]):
        table = Table(show_header=True, header_style="bold magenta")
        for i, column in enumerate(columns):
            table.add_column(column, style="dim" if i == 0 else None)
        for row in rows:
            table.add_row(*(str(cell) for cell in row))
        console.print(table)

    @staticmethod
    def print_success(message: str):
        console.print(f"[green]✓ {message}[/green]")

    @staticmethod
    def print_error(message: str):
        console.print(f"[red]✗ {message}[/red]")

    @staticmethod
    def print_warning(message: str):
        console.print(f"[yellow]⚠️  {message}[/yellow]")
