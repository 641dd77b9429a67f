"""
Unit tests for request and sampler configuration.
"""

import pytest
from pydantic import ValidationError

from stepgen.config import (
    DEFAULT_N_PREDICT,
    RANDOM_SEED,
    CompletionRequest,
    GeneratorSettings,
    SamplerConfig,
    Selection,
)
from stepgen.errors import InvalidRequestError


class TestSamplerConfig:
    """Test sampler settings."""

    def test_defaults_are_greedy(self):
        config = SamplerConfig()

        assert config.is_greedy
        assert config.seed == RANDOM_SEED
        assert config.temperature is None

    def test_dist_from_string(self):
        config = SamplerConfig(selection="dist", temperature=0.7, top_k=40)

        assert config.selection == Selection.DIST
        assert not config.is_greedy

    @pytest.mark.parametrize("kwargs", [
        {"top_p": 1.5},
        {"min_p": -0.1},
        {"top_k": 0},
        {"temperature": -1.0},
        {"seed": -1},
        {"selection": "beam"},
    ])
    def test_build_rejects_bad_values(self, kwargs):
        with pytest.raises(InvalidRequestError):
            SamplerConfig.build(**kwargs)

    def test_frozen(self):
        config = SamplerConfig()

        with pytest.raises(ValidationError):
            config.seed = 1


class TestCompletionRequest:
    """Test request validation."""

    def test_defaults(self):
        request = CompletionRequest(prompt="The sky is")

        assert request.n_predict == DEFAULT_N_PREDICT
        assert request.grammar is None

    @pytest.mark.parametrize("prompt", ["", "   ", "\n\t"])
    def test_blank_prompt_rejected(self, prompt):
        with pytest.raises(InvalidRequestError):
            CompletionRequest.build(prompt=prompt)

    def test_negative_n_predict_rejected(self):
        with pytest.raises(InvalidRequestError):
            CompletionRequest.build(prompt="Hi", n_predict=-1)

    def test_empty_grammar_is_none(self):
        assert CompletionRequest(prompt="Hi", grammar="").grammar is None

    def test_from_json(self):
        request = CompletionRequest.from_json(
            '{"prompt": "The sky is", "n_predict": 3, "grammar": "root ::= [a-z]+", "stream": true}'
        )

        assert request.prompt == "The sky is"
        assert request.n_predict == 3
        assert request.grammar == "root ::= [a-z]+"

    @pytest.mark.parametrize("params", [
        "{not json",
        "[]",
        '{"n_predict": 3}',
        '{"prompt": "Hi", "n_predict": "many"}',
    ])
    def test_from_json_rejects(self, params):
        with pytest.raises(InvalidRequestError):
            CompletionRequest.from_json(params)


class TestGeneratorSettings:
    """Test generator-wide settings."""

    def test_defaults(self):
        settings = GeneratorSettings()

        assert settings.default_max_tokens == DEFAULT_N_PREDICT
        assert settings.root_rule == "root"
