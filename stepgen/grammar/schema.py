"""
JSON Schema to grammar conversion.

Callers who want JSON output usually have a JSON Schema, not a grammar. This
module checks the schema with jsonschema and hands it to llama-cpp-python's
GBNF converter, so the result can be passed straight to ``start(grammar=...)``
on a llama.cpp engine.

Usage:
    ```python
    from stepgen.grammar import json_schema_to_grammar

    grammar = json_schema_to_grammar({
        "type": "object",
        "properties": {"name": {"type": "string"}},
        "required": ["name"]
    })
    session_id = generator.start("Describe a user as JSON:", max_tokens=64, grammar=grammar)
    ```
"""

import json
import logging
from typing import Any, Dict, Union

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from stepgen.errors import InvalidRequestError

logger = logging.getLogger(__name__)


def load_schema(schema: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Parse (if needed) and check a JSON Schema.

    Args:
        schema: Schema dict or its JSON text

    Returns:
        Dict: The checked schema

    Raises:
        InvalidRequestError: If the text is not JSON or the schema is invalid
    """
    if isinstance(schema, str):
        try:
            schema = json.loads(schema)
        except json.JSONDecodeError as e:
            raise InvalidRequestError(f"Schema is not valid JSON: {e}") from e

    if not isinstance(schema, dict):
        raise InvalidRequestError(f"Schema must be a JSON object, got {type(schema).__name__}")

    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as e:
        raise InvalidRequestError(f"Invalid JSON schema: {e.message}") from e

    return schema


def json_schema_to_grammar(schema: Union[str, Dict[str, Any]]) -> str:
    """
    Convert a JSON Schema into a GBNF grammar.

    Args:
        schema: Schema dict or its JSON text

    Returns:
        str: GBNF grammar with a ``root`` rule

    Raises:
        InvalidRequestError: If the schema is invalid
        ImportError: If llama-cpp-python is not installed
    """
    schema = load_schema(schema)

    try:
        from llama_cpp.llama_grammar import json_schema_to_gbnf
    except ImportError:
        raise ImportError(
            "llama-cpp-python is required for schema conversion. "
            "Install with: pip install 'stepgen[llamacpp]'"
        )

    grammar = json_schema_to_gbnf(json.dumps(schema))
    logger.debug(f"Converted schema to grammar ({len(grammar)} chars)")
    return grammar
