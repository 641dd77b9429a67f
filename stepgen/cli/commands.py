"""
CLI command implementations.

This module contains the logic for each CLI command:
- generate: Stream a completion to the terminal
- preprocess: Show what the grammar preprocessor does to a pattern
- schema_grammar: Convert a JSON Schema to GBNF
- info: Runtime and engine availability
"""

import json
import time
from pathlib import Path
from typing import Any, Dict, Optional

from stepgen.config import SamplerConfig, Selection

from .display import (
    console,
    create_progress_spinner,
    print_error,
    print_fragment,
    print_generation_stats,
    print_grammar,
    print_header,
    print_info,
    print_json,
    print_runtime_info,
    print_separator,
    print_success,
    print_violations,
    print_warning,
)


def load_schema_file(schema_path: Path) -> Dict[str, Any]:
    """
    Load and check a JSON schema file.

    Raises:
        InvalidRequestError: If the file is not JSON or not a valid schema
    """
    from stepgen.grammar import load_schema

    return load_schema(schema_path.read_text(encoding="utf-8"))


def build_sampler_config(temperature: Optional[float], seed: Optional[int]) -> SamplerConfig:
    """Greedy unless a positive temperature is given."""
    if temperature is None or temperature == 0.0:
        return SamplerConfig()

    kwargs: Dict[str, Any] = {"selection": Selection.DIST, "temperature": temperature}
    if seed is not None:
        kwargs["seed"] = seed
    return SamplerConfig.build(**kwargs)


def generate_command(
    prompt: str,
    model: str,
    engine: Optional[str],
    device: Optional[str],
    max_tokens: int,
    grammar_file: Optional[Path],
    schema_path: Optional[Path],
    temperature: Optional[float],
    seed: Optional[int],
    n_ctx: int,
    n_gpu_layers: int,
    output_path: Optional[Path],
) -> None:
    """
    Execute the generate command.

    Fragments are printed as each step returns them. With a schema the
    output is constrained by the schema's grammar (llama.cpp engine) and
    the final text is validated against the schema.
    """
    from stepgen import StreamingGenerator
    from stepgen.engine import EngineFactory

    print_header("stepgen - Streaming Generation")

    engine_type = engine or EngineFactory.detect_engine_type(model)
    sampler_config = build_sampler_config(temperature, seed)

    grammar = None
    schema = None
    if grammar_file is not None:
        grammar = grammar_file.read_text(encoding="utf-8")
        print_success(f"Loaded grammar from: {grammar_file}")
    elif schema_path is not None:
        schema = load_schema_file(schema_path)
        print_success(f"Loaded schema from: {schema_path}")
        if engine_type == "llamacpp":
            from stepgen.grammar import json_schema_to_grammar
            grammar = json_schema_to_grammar(schema)
        else:
            print_warning("Schema grammars need the llamacpp engine; the output will only be validated")

    print_separator()
    print_info(f"Prompt: [bold]{prompt}[/bold]")
    print_info(f"Model: [bold]{model}[/bold]")
    print_info(f"Engine: [bold]{engine_type}[/bold]")
    print_info(f"Max Tokens: [bold]{max_tokens}[/bold]")
    print_info(f"Sampling: [bold]{sampler_config.selection.value}[/bold]")
    print_info(f"Grammar: [bold]{'yes' if grammar else 'no'}[/bold]")
    print_separator()

    engine_kwargs: Dict[str, Any] = {"sampler_config": sampler_config}
    if engine_type == "llamacpp":
        engine_kwargs.update(n_ctx=n_ctx, n_gpu_layers=n_gpu_layers)
    else:
        engine_kwargs.update(device=device)

    with create_progress_spinner() as progress:
        progress.add_task(description="Loading model...", total=None)
        llm = EngineFactory.create(model, engine_type=engine_type, **engine_kwargs)
    print_success("Model loaded")
    console.print()

    start_time = time.time()
    text = ""
    tokens = 0
    stop_reason = None

    with StreamingGenerator(llm) as generator:
        try:
            for output in generator.stream(prompt, max_tokens=max_tokens, grammar=grammar):
                if output.is_final:
                    text = output.text
                    stop_reason = output.stop_reason.value
                    break
                tokens += 1
                text += output.text
                print_fragment(output.text)
        except KeyboardInterrupt:
            print_warning("Interrupted")

    latency_ms = (time.time() - start_time) * 1000
    console.print()
    print_separator()

    is_valid = None
    if schema is not None:
        from stepgen.validation import validate_output

        result = validate_output(text, schema)
        is_valid = result.is_valid
        if result.is_valid:
            print_success("Output matches the schema")
            print_json(result.parsed, title="Generated Output")
        else:
            print_error("Output does not match the schema")
            if result.truncated:
                print_warning("The output was cut off; try a larger --max-tokens")
            print_violations(result.violations)

    print_generation_stats(stop_reason, latency_ms, tokens, is_valid=is_valid)

    if output_path is not None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text, encoding="utf-8")
        print_success(f"Output saved to: {output_path}")


def preprocess_command(pattern: str, show_original: bool) -> None:
    """Print the preprocessed form of ``pattern``."""
    from stepgen.grammar import preprocess

    processed = preprocess(pattern)
    if show_original:
        print_grammar(pattern, title="Original")
        print_grammar(processed, title="Processed")
    else:
        print_grammar(processed)


def schema_grammar_command(schema_path: Path, output_path: Optional[Path]) -> None:
    """Print (or save) the GBNF grammar for a JSON schema file."""
    from stepgen.grammar import json_schema_to_grammar

    schema = load_schema_file(schema_path)
    grammar = json_schema_to_grammar(schema)

    if output_path is not None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(grammar, encoding="utf-8")
        print_success(f"Grammar saved to: {output_path}")
    else:
        print_grammar(grammar)


def info_command(as_json: bool) -> None:
    """Print runtime information."""
    from stepgen.engine.device_utils import get_runtime_info

    info = get_runtime_info()
    if as_json:
        console.print_json(json.dumps(info))
    else:
        print_runtime_info(info)
