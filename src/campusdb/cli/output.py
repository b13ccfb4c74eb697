"""Output formatting for CLI commands."""

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from campusdb.core.types import SyncReport, SyncState
from campusdb.exceptions import CampusDBError

console = Console()

_STATE_STYLES = {
    SyncState.SYNCED: "green",
    SyncState.FAILED: "red",
    SyncState.FAILED_TOLERATED: "yellow",
}


class OutputFormatter:
    """Formats output for terminal or JSON mode."""

    def __init__(self, json_mode: bool = False) -> None:
        self.json_mode = json_mode

    def print_json(self, data: Any) -> None:
        print(json.dumps(data, default=str, indent=2))

    def print_table(
        self,
        title: str,
        data: list[dict[str, Any]],
        columns: list[str],
    ) -> None:
        """Print data as Rich table or JSON array."""
        if self.json_mode:
            self.print_json(data)
        else:
            table = Table(title=title, show_header=True, header_style="bold magenta")
            for col in columns:
                table.add_column(col)
            for row in data:
                table.add_row(*[str(row.get(col) or "") for col in columns])
            console.print(table)

    def print_sync_report(self, report: SyncReport) -> None:
        """Print per-entity synchronization outcomes."""
        if self.json_mode:
            self.print_json(report.to_dict())
            return

        table = Table(title="Schema sync", show_header=True, header_style="bold magenta")
        table.add_column("Entity")
        table.add_column("Table")
        table.add_column("Join")
        table.add_column("State")
        table.add_column("Path")
        for result in report.results:
            style = _STATE_STYLES.get(result.state, "")
            table.add_row(
                result.entity,
                result.table,
                "✓" if result.is_join else "",
                f"[{style}]{result.state}[/{style}]" if style else str(result.state),
                " → ".join(str(s) for s in result.history),
            )
        console.print(table)
        if report.dropped_duplicates:
            console.print(
                f"Dropped duplicate tables: {', '.join(report.dropped_duplicates)}", style="yellow"
            )

    def print_success(self, message: str, details: dict[str, Any] | None = None) -> None:
        if self.json_mode:
            output = {"success": True, "message": message}
            if details:
                output.update(details)
            self.print_json(output)
        else:
            console.print(f"✓ {message}", style="green")
            if details:
                for key, value in details.items():
                    console.print(f"  {key}: {value}", style="dim")

    def print_error(self, error: Exception) -> None:
        if self.json_mode:
            if isinstance(error, CampusDBError):
                self.print_json(error.to_dict())
            else:
                self.print_json({"error": str(error)})
        else:
            error_text = str(error)
            if isinstance(error, CampusDBError) and error.context:
                context_str = "\n".join(
                    f"{k}: {v}" for k, v in error.context.items() if v is not None
                )
                error_text = f"{error_text}\n\n{context_str}"

            console.print(Panel(error_text, title="[red]Error[/red]", border_style="red"))
