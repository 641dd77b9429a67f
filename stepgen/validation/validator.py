"""
Check generated text against a JSON Schema.

A grammar built from a schema keeps the output's shape right, but a
generation stopped by its token budget is cut off mid-document, and some
schema keywords (ranges, formats) are not expressible in the grammar. The
CLI therefore validates the final text of schema-constrained sessions.

Usage:
    ```python
    from stepgen.validation import validate_output

    schema = {"type": "object", "properties": {"age": {"type": "integer"}}}
    result = validate_output('{"age": 25}', schema)

    if not result.is_valid:
        print(format_violations(result.violations))
    ```
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from jsonschema import Draft7Validator

from stepgen.grammar.schema import load_schema

logger = logging.getLogger(__name__)


@dataclass
class Violation:
    """
    One way the output fails the schema.

    Attributes:
        path: Location in the output ("root" or ".a.0.b")
        message: Human-readable message
        validator: Failing keyword ("type", "required", ..., or "json")
        expected: Keyword value from the schema
    """
    path: str
    message: str
    validator: str
    expected: Any = None


@dataclass
class OutputValidation:
    """
    Result of checking one output.

    Attributes:
        is_valid: True if the text parses and satisfies the schema
        violations: Problems found (empty when valid)
        text: Text that was checked
        parsed: Parsed JSON when the text parsed, else None
        truncated: The text stopped before the document was complete
    """
    is_valid: bool
    text: str
    violations: List[Violation] = field(default_factory=list)
    parsed: Optional[Any] = None
    truncated: bool = False


def validate_output(text: str, schema: Union[str, Dict[str, Any]]) -> OutputValidation:
    """
    Parse ``text`` as JSON and check it against ``schema``.

    Args:
        text: Generated text (surrounding whitespace is ignored)
        schema: Schema dict or its JSON text

    Returns:
        OutputValidation

    Raises:
        InvalidRequestError: If the schema itself is invalid
    """
    schema = load_schema(schema)
    stripped = text.strip()

    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError as e:
        truncated = e.pos >= len(stripped) or e.msg.startswith("Unterminated string")
        logger.debug(f"Output is not JSON ({e.msg} at {e.pos}, truncated={truncated})")
        return OutputValidation(
            is_valid=False,
            text=text,
            violations=[Violation(path="root", message=f"Invalid JSON: {e.msg} at position {e.pos}", validator="json")],
            truncated=truncated,
        )

    violations = [
        _to_violation(error)
        for error in Draft7Validator(schema).iter_errors(parsed)
    ]

    return OutputValidation(
        is_valid=not violations,
        text=text,
        violations=violations,
        parsed=parsed,
    )


def _to_violation(error: Any) -> Violation:
    path = "." + ".".join(str(p) for p in error.path) if error.path else "root"
    expected = error.schema.get(error.validator) if isinstance(error.schema, dict) else None
    return Violation(path=path, message=error.message, validator=error.validator, expected=expected)


def format_violations(violations: List[Violation]) -> str:
    """
    Render violations one per line.

    Example:
        ```
        2 problem(s):
          1. At .name: 'name' is a required property
          2. At .age: 'x' is not of type 'integer' (expected: integer)
        ```
    """
    if not violations:
        return "No problems"

    lines = [f"{len(violations)} problem(s):"]
    for i, violation in enumerate(violations, 1):
        line = f"  {i}. At {violation.path}: {violation.message}"
        if violation.expected is not None and violation.validator not in ("required", "json"):
            line += f" (expected: {violation.expected})"
        lines.append(line)

    return "\n".join(lines)
