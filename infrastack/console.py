"""
Operator-facing terminal output.

All coloured status text goes through the two ``rich`` consoles defined here so
the wording and glyphs stay the same across commands.
"""

from typing import Iterable, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)


def banner(title: str, subtitle: Optional[str] = None, style: str = "cyan"):
    """Print a boxed heading."""
    text = escape(title)
    if subtitle:
        text += "\n" + escape(subtitle)
    console.print(Panel(text, style=style, expand=False, padding=(0, 8)))


def section(title: str):
    console.print()
    console.print(escape(title), style="bold")
    console.print("-" * len(title))


def step(message: str):
    console.print(escape(message), style="magenta")


def success(message: str):
    console.print(f"✅ {escape(message)}", style="green")


def warning(message: str):
    console.print(f"⚠️  {escape(message)}", style="yellow")


def info(message: str):
    console.print(f"ℹ️  {escape(message)}", style="blue")


def error(message: str):
    err_console.print(f"❌ ERROR: {escape(message)}", style="red")


def plain(message: str = "", style: Optional[str] = None, end: str = "\n"):
    console.print(escape(message), style=style, end=end)


def bullet_list(lines: Iterable[str], indent: str = "   "):
    for line in lines:
        console.print(f"{indent}{escape(line)}")


def table(columns: Sequence[str], rows: Iterable[Sequence[str]], title: Optional[str] = None) -> int:
    """Print rows as a table and return how many rows were shown."""
    tbl = Table(title=title, show_edge=False, header_style="bold")
    for column in columns:
        tbl.add_column(column)
    count = 0
    for row in rows:
        tbl.add_row(*(escape(str(cell)) for cell in row))
        count += 1
    if count:
        console.print(tbl)
    return count


def confirm(question: str, assume_yes: bool = False) -> bool:
    """Ask a y/N question; ``assume_yes`` answers it without prompting."""
    if assume_yes:
        console.print(f"{escape(question)} [y/N]: y")
        return True
    return Confirm.ask(escape(question), default=False, console=console)


def ask(question: str) -> str:
    return Prompt.ask(escape(question), default="", show_default=False, console=console)


def lines_of(text: str) -> List[str]:
    return [line for line in text.splitlines() if line.strip()]
