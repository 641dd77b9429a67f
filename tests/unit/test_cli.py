"""
Unit tests for the CLI.

These run the Typer app in-process; none of them loads a model.
"""

import json

import pytest
from typer.testing import CliRunner

from stepgen import __version__
from stepgen.cli import app
from stepgen.cli.commands import build_sampler_config
from stepgen.config import Selection


runner = CliRunner()


class TestApp:
    """Test top-level options."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"stepgen version {__version__}" in result.output

    def test_no_command_shows_help(self):
        result = runner.invoke(app, [])

        assert result.exit_code == 0
        assert "generate" in result.output
        assert "preprocess" in result.output

    def test_unknown_log_level(self):
        result = runner.invoke(app, ["--log-level", "LOUD", "preprocess", "a"])

        assert result.exit_code == 2


class TestPreprocessCommand:
    """Test the preprocess command."""

    def test_hex_escapes(self):
        result = runner.invoke(app, ["preprocess", r"\x41bc"])

        assert result.exit_code == 0
        assert "Abc" in result.output

    def test_show_original(self):
        result = runner.invoke(app, ["preprocess", "--show-original", "[^0-9]"])

        assert result.exit_code == 0
        assert "Original" in result.output
        assert "Processed" in result.output


class TestSchemaGrammarCommand:
    """Test the schema-grammar command."""

    def test_invalid_schema_file(self, tmp_path):
        schema_file = tmp_path / "bad.json"
        schema_file.write_text("not json")

        result = runner.invoke(app, ["schema-grammar", "--schema", str(schema_file)])

        assert result.exit_code == 1
        assert "Command failed" in result.output

    def test_writes_grammar(self, tmp_path):
        pytest.importorskip("llama_cpp")
        schema_file = tmp_path / "person.json"
        schema_file.write_text(json.dumps({"type": "object", "properties": {"name": {"type": "string"}}}))
        output = tmp_path / "person.gbnf"

        result = runner.invoke(app, ["schema-grammar", "--schema", str(schema_file), "--output", str(output)])

        assert result.exit_code == 0
        assert "root ::=" in output.read_text()


class TestGenerateCommand:
    """Test argument handling of the generate command."""

    def test_grammar_and_schema_conflict(self, tmp_path):
        grammar_file = tmp_path / "g.gbnf"
        grammar_file.write_text('root ::= "yes"')
        schema_file = tmp_path / "s.json"
        schema_file.write_text("{}")

        result = runner.invoke(app, [
            "generate", "--prompt", "Hi", "--model", "model.gguf",
            "--grammar-file", str(grammar_file), "--schema", str(schema_file),
        ])

        assert result.exit_code == 2

    def test_missing_model_file(self, tmp_path):
        result = runner.invoke(app, [
            "generate", "--prompt", "Hi", "--model", str(tmp_path / "missing.gguf"),
        ])

        assert result.exit_code == 1
        assert "Command failed" in result.output


class TestInfoCommand:
    """Test the info command with a fixed runtime report."""

    REPORT = {
        "platform": "Linux",
        "processor": "x86_64",
        "python": "3.11.4",
        "is_apple_silicon": False,
        "cpu_count": 4,
        "cpu_threads": 8,
        "memory": {"device": "cpu", "total_mb": 16000.0, "available_mb": 8000.0, "percent": 50.0},
        "llama_cpp_version": "0.3.16",
        "torch_version": None,
        "transformers_version": None,
        "engines": ["llamacpp"],
        "cuda_available": False,
        "mps_available": False,
    }

    @pytest.fixture(autouse=True)
    def fixed_report(self, monkeypatch):
        monkeypatch.setattr("stepgen.engine.device_utils.get_runtime_info", lambda: dict(self.REPORT))

    def test_table(self):
        result = runner.invoke(app, ["info"])

        assert result.exit_code == 0
        assert "llama-cpp-python" in result.output
        assert "0.3.16" in result.output

    def test_json(self):
        result = runner.invoke(app, ["info", "--json"])

        assert result.exit_code == 0
        assert '"engines"' in result.output


class TestBuildSamplerConfig:
    """Test option -> sampler settings mapping."""

    def test_no_temperature_is_greedy(self):
        assert build_sampler_config(None, 42).is_greedy

    def test_zero_temperature_is_greedy(self):
        assert build_sampler_config(0.0, None).is_greedy

    def test_temperature_and_seed(self):
        config = build_sampler_config(0.7, 42)

        assert config.selection == Selection.DIST
        assert config.temperature == 0.7
        assert config.seed == 42
