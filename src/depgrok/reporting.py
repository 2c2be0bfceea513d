"""
Reporting and output formatting for search results.

The report itself is plain text (one ``# <dependency>:`` heading per root
dependency followed by its diagrams) so it can be piped; panels and colour are
used for skipped paths and the summary footer.
"""

import json
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .diagrams import group_diagrams
from .search import SearchResult
from .walker import WalkError


class SearchReporter:
    """Formats and displays search results."""

    def __init__(self, console: Optional[Console] = None, err_console: Optional[Console] = None):
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)

    def print_search_results(self, result: SearchResult, quiet: bool = False) -> None:
        """
        Print diagrams grouped by root dependency.

        Args:
            result: The search result to display
            quiet: Only print the diagrams, no summary
        """
        groups = group_diagrams(result.diagrams)
        for dependency_name, diagrams in groups.items():
            self.console.print(f"# {escape(dependency_name)}:", highlight=False, soft_wrap=True)
            for diagram in diagrams:
                self.console.print(escape(diagram.text), highlight=False, soft_wrap=True)
            self.console.print()

        if result.errors:
            self._print_errors(result.errors)

        if not quiet:
            self._print_footer(result)

    def _print_errors(self, errors: List[WalkError]) -> None:
        error_text = "\n".join(f"• {escape(error.message)}" for error in errors)
        self.err_console.print(
            Panel(
                error_text,
                title="[bold red]⚠️  Skipped paths - results may be incomplete[/bold red]",
                border_style="red",
            )
        )

    def _print_footer(self, result: SearchResult) -> None:
        duration_seconds = result.duration_ms / 1000
        footer_text = (
            f"Searched {result.files_searched} files over {result.levels_completed} "
            f"level(s) in {duration_seconds:.2f} seconds, "
            f"{len(result.diagrams)} diagram(s) found"
        )
        self.err_console.print(f"[dim]{footer_text}[/dim]", soft_wrap=True)

        if not result.diagrams:
            self.err_console.print("ℹ️  No references to the given dependencies were found.", style="yellow")


def search_result_to_dict(result: SearchResult) -> Dict[str, Any]:
    """Machine-readable form of a search result."""
    return {
        "diagrams": [
            {
                "text": diagram.text,
                "dependency": diagram.dependency_name,
                "repo": diagram.repo_name,
                "level": diagram.level,
            }
            for diagram in result.diagrams
        ],
        "errors": [
            {"path": error.path, "operation": error.operation, "message": error.message}
            for error in result.errors
        ],
        "levels_completed": result.levels_completed,
        "files_searched": result.files_searched,
        "duration_ms": result.duration_ms,
    }


def output_json_results(result: SearchResult, output_file: Optional[str] = None) -> str:
    """Export results as JSON, to a file or stdout."""
    json_output = json.dumps(search_result_to_dict(result), indent=2, ensure_ascii=False)
    if output_file:
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(json_output)
    else:
        print(json_output)
    return json_output


def create_progress_spinner(console: Optional[Console] = None) -> Progress:
    """Create a spinner for long-running searches and clones."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console or Console(stderr=True),
        transient=True,
    )
