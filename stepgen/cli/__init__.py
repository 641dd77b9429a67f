"""
Command-line interface module.

This module provides a rich terminal interface for stepgen using Typer and Rich.

Commands:
    - generate: Stream a completion token by token
    - preprocess: Show the rewritten form of a grammar pattern
    - schema-grammar: Convert a JSON schema to a GBNF grammar
    - info: Runtime and engine availability

Example Usage:
    ```bash
    # Stream a completion
    stepgen generate \\
        --model models/qwen2-0_5b-instruct-q4_k_m.gguf \\
        --prompt "The sky is" \\
        --max-tokens 16

    # Constrain the output with a JSON schema
    stepgen generate \\
        --model models/qwen2-0_5b-instruct-q4_k_m.gguf \\
        --prompt "Describe a person as JSON:" \\
        --schema person.json \\
        --max-tokens 128

    # Inspect preprocessing
    stepgen preprocess '[^"\\n]*'
    ```
"""

from .main import app

__all__ = ["app"]
