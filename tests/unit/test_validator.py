"""
Unit tests for output validation.
"""

import pytest

from stepgen.errors import InvalidRequestError
from stepgen.validation import format_violations, validate_output


SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "age": {"type": "integer", "minimum": 0, "maximum": 150},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["name", "age"],
}


class TestValidateOutput:
    """Test JSON Schema validation of generated text."""

    def test_valid_output(self):
        result = validate_output('{"name": "Alice", "age": 30}', SCHEMA)

        assert result.is_valid is True
        assert result.violations == []
        assert result.parsed == {"name": "Alice", "age": 30}

    def test_surrounding_whitespace_ignored(self):
        result = validate_output('\n  {"name": "Alice", "age": 30}  \n', SCHEMA)

        assert result.is_valid

    def test_invalid_json_syntax(self):
        result = validate_output("{invalid json}", SCHEMA)

        assert result.is_valid is False
        assert len(result.violations) == 1
        assert result.violations[0].validator == "json"
        assert "Invalid JSON" in result.violations[0].message
        assert result.parsed is None
        assert result.truncated is False

    def test_truncated_output(self):
        """A budget stop mid-document is reported as truncated."""
        result = validate_output('{"name": "Alice", "age": ', SCHEMA)

        assert result.is_valid is False
        assert result.truncated is True

    def test_truncated_inside_string(self):
        assert validate_output('{"name": "Al', SCHEMA).truncated is True

    def test_missing_required_field(self):
        result = validate_output('{"name": "Alice"}', SCHEMA)

        assert result.is_valid is False
        assert any(v.validator == "required" and "age" in v.message for v in result.violations)

    def test_wrong_type_path(self):
        result = validate_output('{"name": "Alice", "age": "old"}', SCHEMA)

        assert [v.path for v in result.violations] == [".age"]
        assert result.violations[0].expected == "integer"

    def test_nested_path(self):
        result = validate_output('{"name": "Alice", "age": 3, "tags": ["a", 1]}', SCHEMA)

        assert result.violations[0].path == ".tags.1"

    def test_range(self):
        result = validate_output('{"name": "Alice", "age": 200}', SCHEMA)

        assert result.violations[0].validator == "maximum"
        assert result.violations[0].expected == 150

    def test_invalid_schema(self):
        with pytest.raises(InvalidRequestError):
            validate_output("{}", {"type": "nope"})


class TestFormatViolations:
    """Test violation rendering."""

    def test_no_violations(self):
        assert format_violations([]) == "No problems"

    def test_formatted(self):
        result = validate_output('{"age": "old"}', SCHEMA)

        text = format_violations(result.violations)

        assert text.startswith("2 problem(s):")
        assert "'name' is a required property" in text
        assert "(expected: integer)" in text
