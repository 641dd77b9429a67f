"""
Output validation module.

Checks the final text of schema-constrained generations with jsonschema.

Example:
    ```python
    from stepgen.validation import validate_output, format_violations

    result = validate_output(output.text, schema)
    if not result.is_valid:
        print(format_violations(result.violations))
    ```
"""

from stepgen.validation.validator import (
    OutputValidation,
    Violation,
    format_violations,
    validate_output,
)

__all__ = [
    "OutputValidation",
    "Violation",
    "format_violations",
    "validate_output",
]
