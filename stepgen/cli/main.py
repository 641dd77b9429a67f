"""
Main CLI entry point using Typer.

Commands: generate, preprocess, schema-grammar, info.
"""

from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .commands import generate_command, info_command, preprocess_command, schema_grammar_command
from .display import print_error


app = typer.Typer(
    name="stepgen",
    help="stepgen - Incremental, resumable text generation",
    add_completion=False,
    rich_markup_mode="rich"
)


@app.command("generate")
def generate(
    prompt: Annotated[
        str,
        typer.Option("--prompt", "-p", help="Generation prompt")
    ],
    model: Annotated[
        str,
        typer.Option("--model", "-m", help="GGUF file path or HuggingFace model id")
    ],
    engine: Annotated[
        Optional[str],
        typer.Option("--engine", "-e", help="Engine: llamacpp or transformers (auto-detect if omitted)")
    ] = None,
    device: Annotated[
        Optional[str],
        typer.Option("--device", "-d", help="Torch device for the transformers engine: cpu, cuda, mps")
    ] = None,
    max_tokens: Annotated[
        int,
        typer.Option("--max-tokens", "-n", help="Maximum tokens to generate", min=0)
    ] = 64,
    grammar_file: Annotated[
        Optional[Path],
        typer.Option("--grammar-file", "-g", help="File holding the grammar", exists=True, file_okay=True, dir_okay=False)
    ] = None,
    schema: Annotated[
        Optional[Path],
        typer.Option("--schema", "-s", help="JSON schema file to constrain and validate the output", exists=True, file_okay=True, dir_okay=False)
    ] = None,
    temperature: Annotated[
        Optional[float],
        typer.Option("--temperature", "-t", help="Sampling temperature (greedy if omitted or 0)", min=0.0)
    ] = None,
    seed: Annotated[
        Optional[int],
        typer.Option("--seed", help="Sampling seed", min=0)
    ] = None,
    n_ctx: Annotated[
        int,
        typer.Option("--n-ctx", help="Context size (llamacpp)")
    ] = 2048,
    n_gpu_layers: Annotated[
        int,
        typer.Option("--n-gpu-layers", help="Layers to offload, -1 for all (llamacpp)")
    ] = -1,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Path to save the generated text")
    ] = None,
) -> None:
    """
    Stream a completion to the terminal, one token per step.

    Example:
        stepgen generate \\
            --model models/qwen2-0_5b-instruct-q4_k_m.gguf \\
            --prompt "The sky is" \\
            --max-tokens 16
    """
    if grammar_file is not None and schema is not None:
        print_error("Use either --grammar-file or --schema, not both")
        raise typer.Exit(code=2)

    try:
        generate_command(
            prompt=prompt,
            model=model,
            engine=engine,
            device=device,
            max_tokens=max_tokens,
            grammar_file=grammar_file,
            schema_path=schema,
            temperature=temperature,
            seed=seed,
            n_ctx=n_ctx,
            n_gpu_layers=n_gpu_layers,
            output_path=output
        )
    except Exception as e:
        print_error(f"Command failed: {e}")
        raise typer.Exit(code=1)


@app.command("preprocess")
def preprocess(
    pattern: Annotated[
        str,
        typer.Argument(help="Grammar pattern to rewrite")
    ],
    show_original: Annotated[
        bool,
        typer.Option("--show-original", help="Show the input next to the result")
    ] = False,
) -> None:
    """
    Show how a pattern is rewritten before compilation.

    Example:
        stepgen preprocess '[^0-9]+'
    """
    try:
        preprocess_command(pattern, show_original=show_original)
    except Exception as e:
        print_error(f"Command failed: {e}")
        raise typer.Exit(code=1)


@app.command("schema-grammar")
def schema_grammar(
    schema: Annotated[
        Path,
        typer.Option("--schema", "-s", help="Path to JSON schema file", exists=True, file_okay=True, dir_okay=False)
    ],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Path to save the grammar")
    ] = None,
) -> None:
    """
    Convert a JSON schema into a GBNF grammar.

    Example:
        stepgen schema-grammar --schema person.json --output person.gbnf
    """
    try:
        schema_grammar_command(schema, output_path=output)
    except Exception as e:
        print_error(f"Command failed: {e}")
        raise typer.Exit(code=1)


@app.command("info")
def info(
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print as JSON")
    ] = False,
) -> None:
    """Show platform, memory and engine availability."""
    try:
        info_command(as_json=as_json)
    except Exception as e:
        print_error(f"Command failed: {e}")
        raise typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option("--version", "-v", help="Show version and exit")
    ] = False,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    ] = "WARNING",
    log_file: Annotated[
        Optional[Path],
        typer.Option("--log-file", help="Also write log records to this file")
    ] = None,
) -> None:
    """
    stepgen - Incremental, resumable text generation.

    Turns one completion request into resumable steps with cancellation
    and per-session grammar constraints.
    """
    if version:
        from stepgen import __version__
        typer.echo(f"stepgen version {__version__}")
        raise typer.Exit()

    from stepgen.utils import setup_logging
    try:
        setup_logging(level=log_level, log_file=log_file)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(code=2)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def cli() -> None:
    """CLI entry point for the console script."""
    app()


if __name__ == "__main__":
    cli()
