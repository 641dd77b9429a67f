"""
Unit tests for JSON schema loading and grammar conversion.
"""

import json

import pytest

from stepgen.errors import InvalidRequestError
from stepgen.grammar import json_schema_to_grammar, load_schema


PERSON_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "age": {"type": "integer", "minimum": 0},
    },
    "required": ["name", "age"],
}


class TestLoadSchema:
    """Test schema checking."""

    def test_dict(self):
        assert load_schema(PERSON_SCHEMA) == PERSON_SCHEMA

    def test_json_text(self):
        assert load_schema(json.dumps(PERSON_SCHEMA)) == PERSON_SCHEMA

    def test_not_json(self):
        with pytest.raises(InvalidRequestError, match="not valid JSON"):
            load_schema("{type: object")

    def test_not_an_object(self):
        with pytest.raises(InvalidRequestError, match="JSON object"):
            load_schema("[1, 2]")

    def test_invalid_schema(self):
        with pytest.raises(InvalidRequestError, match="Invalid JSON schema"):
            load_schema({"type": "nope"})


class TestJsonSchemaToGrammar:
    """Test conversion through llama-cpp-python."""

    def test_invalid_schema_rejected_first(self):
        with pytest.raises(InvalidRequestError):
            json_schema_to_grammar({"type": 12})

    def test_person_grammar(self):
        pytest.importorskip("llama_cpp")

        grammar = json_schema_to_grammar(PERSON_SCHEMA)

        assert "root ::=" in grammar
        assert "name" in grammar
