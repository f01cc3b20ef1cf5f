"""Rich-powered console output for promptfit."""

from __future__ import annotations

import logging

from rich.console import Console as RichConsole
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from promptfit import __version__
from promptfit.render.result import RenderResult


class Console:
    """Terminal output for promptfit using Rich."""

    def __init__(self) -> None:
        self.console = RichConsole()

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]promptfit[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Fit prompts to a token budget[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def enable_logging(self, level: int = logging.DEBUG) -> None:
        """Route promptfit.* loggers through a Rich handler."""
        logger = logging.getLogger("promptfit")
        logger.setLevel(level)
        if not any(isinstance(h, RichHandler) for h in logger.handlers):
            logger.addHandler(RichHandler(console=self.console, show_path=False))

    def show_result(self, result: RenderResult, show_content: bool = True) -> None:
        """Display the surviving messages and the eviction report."""
        pct = result.budget_used_pct
        color = "green" if not result.budget_unsatisfiable else "red"
        self.console.print(
            Panel(
                f"[bold]Size:[/bold] [{color}]{result.total_size:,}[/{color}] / "
                f"{result.budget:,} ({pct:.0f}%)\n"
                f"[bold]Kept:[/bold] {len(result.messages)} of {result.units_total} units\n"
                f"[bold]Cache:[/bold] {result.cache_stats.hits} hits, "
                f"{result.cache_stats.misses} misses\n"
                f"[bold]Time:[/bold] {result.render_time_ms:.1f}ms",
                title="[bold]Render[/bold]",
                border_style=color,
            )
        )

        if show_content and result.messages:
            table = Table(title="Messages", border_style="cyan")
            table.add_column("#", justify="right", style="dim")
            table.add_column("Role", style="bold")
            table.add_column("Content")
            for i, message in enumerate(result.messages):
                content = message.content
                if len(content) > 200:
                    content = content[:200] + "..."
                table.add_row(str(i), message.role, content)
            self.console.print(table)

        if result.evicted:
            table = Table(title="Evicted", border_style="yellow")
            table.add_column("Order", justify="right")
            table.add_column("Content", style="dim")
            table.add_column("Priority", justify="right")
            table.add_column("Size", justify="right", style="cyan")
            table.add_column("Scope")
            for unit in result.evicted:
                table.add_row(
                    str(unit.declared_order),
                    unit.content_id,
                    str(unit.priority),
                    str(unit.size),
                    unit.scope,
                )
            self.console.print(table)

        if result.budget_unsatisfiable:
            self.warning("Mandatory content alone exceeds the budget")
        for label in result.cap_overflows:
            self.warning(f"Mandatory content exceeds the hard cap of '{label}'")
        for label in result.degraded:
            self.warning(f"Subtree '{label}' was dropped after a failure")
