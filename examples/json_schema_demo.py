#!/usr/bin/env python3
"""
Demo: JSON output constrained by a schema.

This demonstrates:
- Converting a JSON Schema into a grammar
- Streaming a grammar-constrained session
- Validating the final text against the schema

Usage:
    python examples/json_schema_demo.py models/qwen2-0_5b-instruct-q4_k_m.gguf
"""

import json
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from stepgen import StreamingGenerator, json_schema_to_grammar
from stepgen.validation import format_violations, validate_output


SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "age": {"type": "integer", "minimum": 0, "maximum": 150},
        "hobbies": {
            "type": "array",
            "items": {"type": "string"},
            "maxItems": 5
        }
    },
    "required": ["name", "age"]
}


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    print("=" * 60)
    print("stepgen Demo: Schema-Constrained Streaming")
    print("=" * 60)

    grammar = json_schema_to_grammar(SCHEMA)
    print("\nGrammar:")
    print(grammar)

    prompt = "Create a profile for Alice, a 30-year-old who likes hiking, as JSON:\n"

    with StreamingGenerator.from_model(sys.argv[1]) as generator:
        print("\nOutput:")
        text = ""
        for output in generator.stream(prompt, max_tokens=128, grammar=grammar):
            if output.is_final:
                text = output.text
                print(f"\n\n[{output.stop_reason.value}]")
            else:
                print(output.text, end="", flush=True)

    result = validate_output(text, SCHEMA)
    print("\n" + "=" * 60)
    if result.is_valid:
        print("✓ Output matches the schema")
        print(json.dumps(result.parsed, indent=2))
    else:
        print("✗ Output does not match the schema")
        print(format_violations(result.violations))


if __name__ == "__main__":
    main()
