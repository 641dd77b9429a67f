"""
Rich terminal display utilities for CLI.

Provides formatted output using the Rich library for:
- Streaming fragments as they arrive
- Syntax-highlighted grammars and JSON
- Statistics and runtime tables
- Success/failure indicators
"""

import json
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text


console = Console()


def print_header(title: str) -> None:
    console.print()
    console.print(f"[bold cyan]{title}[/bold cyan]")
    console.print("=" * len(title))
    console.print()


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def print_separator() -> None:
    console.print("[dim]" + "─" * 70 + "[/dim]")


def print_fragment(text: str) -> None:
    """Write a streamed fragment with no markup and no newline."""
    console.print(Text(text), end="", soft_wrap=True)
    console.file.flush()


def print_json(data: Any, title: Optional[str] = None) -> None:
    """
    Print JSON data with syntax highlighting.

    Args:
        data: JSON-serializable data or JSON string
        title: Optional title for the panel
    """
    json_str = data if isinstance(data, str) else json.dumps(data, indent=2)
    syntax = Syntax(json_str, "json", theme="monokai", line_numbers=False)

    if title:
        console.print(Panel(syntax, title=f"[bold]{title}[/bold]", border_style="cyan"))
    else:
        console.print(syntax)


def print_grammar(grammar: str, title: Optional[str] = None) -> None:
    """Print a grammar or pattern verbatim (no markup), optionally in a panel."""
    body = Text(grammar)
    if title:
        console.print(Panel(body, title=f"[bold]{title}[/bold]", border_style="cyan"))
    else:
        console.print(body, soft_wrap=True)


def print_violations(violations: List[Any]) -> None:
    """
    Print schema violations in a formatted list.

    Args:
        violations: ``stepgen.validation.Violation`` objects
    """
    if not violations:
        return

    console.print()
    console.print("[bold red]Schema Violations:[/bold red]")
    for violation in violations:
        console.print(f"  [red]•[/red] {violation.path}: {violation.message}")
    console.print()


def print_generation_stats(
    stop_reason: Optional[str],
    latency_ms: float,
    tokens_generated: int,
    is_valid: Optional[bool] = None,
) -> None:
    """
    Print generation statistics in a table.

    Args:
        stop_reason: "eog", "limit", or None
        latency_ms: Wall time in milliseconds
        tokens_generated: Number of tokens generated
        is_valid: Schema validation outcome (None when not validated)
    """
    table = Table(title="Generation Statistics", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="cyan", width=20)
    table.add_column("Value", style="white", width=30)

    table.add_row("Stop Reason", stop_reason or "interrupted")
    table.add_row("Tokens Generated", str(tokens_generated))
    table.add_row("Latency", f"{latency_ms:.0f} ms")
    if tokens_generated and latency_ms > 0:
        table.add_row("Throughput", f"{tokens_generated / (latency_ms / 1000):.1f} tok/s")

    if is_valid is not None:
        valid_text = Text("✓ Valid", style="green bold") if is_valid else Text("✗ Invalid", style="red bold")
        table.add_row("Schema", valid_text)

    console.print()
    console.print(table)
    console.print()


def print_runtime_info(info: Dict[str, Any]) -> None:
    """Print the dictionary from ``get_runtime_info`` as a table."""
    table = Table(title="Runtime", show_header=True, header_style="bold cyan")
    table.add_column("Item", style="cyan", width=22)
    table.add_column("Value", style="white", width=40)

    memory = info.get("memory", {})

    table.add_row("Platform", f"{info['platform']} ({info['processor']})")
    table.add_row("Python", info["python"])
    table.add_row("CPU", f"{info['cpu_count']} cores / {info['cpu_threads']} threads")
    if "total_mb" in memory:
        table.add_row("Memory", f"{memory['available_mb']:.0f} MB free / {memory['total_mb']:.0f} MB total")
    table.add_row("llama-cpp-python", info["llama_cpp_version"] or "[dim]not installed[/dim]")
    table.add_row("torch", info["torch_version"] or "[dim]not installed[/dim]")
    table.add_row("transformers", info["transformers_version"] or "[dim]not installed[/dim]")
    table.add_row("Engines", ", ".join(info["engines"]) or "[red]none[/red]")
    table.add_row("CUDA", "yes" if info["cuda_available"] else "no")
    table.add_row("MPS", "yes" if info["mps_available"] else "no")
    if "optimal_device" in info:
        table.add_row("Torch Device", info["optimal_device"])

    console.print()
    console.print(table)
    console.print()


def create_progress_spinner() -> Progress:
    """Spinner for model loading and other blocking steps."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )
