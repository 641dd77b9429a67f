"""
Configuration models.

Request parameters and sampler settings are pydantic models so that the
range checks live in one place and malformed input is rejected before any
engine resource is allocated.

Usage:
    ```python
    from stepgen.config import CompletionRequest, SamplerConfig

    request = CompletionRequest.from_json('{"prompt": "The sky is", "n_predict": 3}')

    sampling = SamplerConfig(selection="dist", seed=42, temperature=0.8, top_k=40)
    ```
"""

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stepgen.errors import InvalidRequestError

logger = logging.getLogger(__name__)

DEFAULT_N_PREDICT = 10
DEFAULT_ROOT_RULE = "root"
# Seed value that asks the selection stage for a fresh random seed.
RANDOM_SEED = 0xFFFFFFFF


class Selection(str, Enum):
    """Terminal selection stage of a sampler chain."""
    GREEDY = "greedy"
    DIST = "dist"


class SamplerConfig(BaseModel):
    """
    Selection-stage settings for a sampler chain.

    With ``selection="greedy"`` the chain is just argmax and the other
    fields are ignored. With ``selection="dist"`` the optional filter stages
    run in the order top-k, top-p, min-p, temperature before drawing from
    the distribution with ``seed``.

    Attributes:
        selection: "greedy" or "dist"
        seed: RNG seed for the distribution stage
        temperature: Logit temperature (>= 0)
        top_k: Keep the k most likely tokens (> 0)
        top_p: Nucleus probability mass in [0, 1]
        min_p: Minimum probability relative to the best token, in [0, 1]
        min_keep: Lower bound on candidates kept by top-p / min-p
    """

    model_config = ConfigDict(frozen=True)

    selection: Selection = Selection.GREEDY
    seed: int = Field(default=RANDOM_SEED, ge=0, le=RANDOM_SEED)
    temperature: Optional[float] = Field(default=None, ge=0.0)
    top_k: Optional[int] = Field(default=None, gt=0)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    min_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    min_keep: int = Field(default=1, ge=0)

    @property
    def is_greedy(self) -> bool:
        return self.selection == Selection.GREEDY

    @classmethod
    def build(cls, **kwargs) -> "SamplerConfig":
        """Construct a config, reporting bad values as InvalidRequestError."""
        try:
            return cls(**kwargs)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid sampler configuration: {e}") from e


class CompletionRequest(BaseModel):
    """
    One generation request.

    Attributes:
        prompt: Prompt text; must contain something other than whitespace
        n_predict: Maximum number of tokens to generate
        grammar: Optional grammar pattern constraining the output
    """

    model_config = ConfigDict(extra="ignore")

    prompt: str
    n_predict: int = Field(default=DEFAULT_N_PREDICT, ge=0)
    grammar: Optional[str] = None

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt must not be empty")
        return value

    @field_validator("grammar")
    @classmethod
    def _empty_grammar_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @classmethod
    def from_json(cls, params: str) -> "CompletionRequest":
        """
        Parse the JSON parameter string accepted by ``start_json``.

        Example:
            ```python
            CompletionRequest.from_json('{"prompt": "Hi", "n_predict": 5, "grammar": "root ::= [a-z]+"}')
            ```
        """
        try:
            return cls.model_validate_json(params)
        except ValidationError as e:
            logger.debug(f"Rejected request params: {params!r}")
            raise InvalidRequestError(f"Invalid completion request: {e}") from e

    @classmethod
    def build(cls, **kwargs) -> "CompletionRequest":
        try:
            return cls(**kwargs)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid completion request: {e}") from e


class GeneratorSettings(BaseModel):
    """
    Generator-wide settings.

    Attributes:
        default_max_tokens: n_predict used when a call does not give one
        root_rule: Grammar rule the constraint compiler starts from
    """

    model_config = ConfigDict(frozen=True)

    default_max_tokens: int = Field(default=DEFAULT_N_PREDICT, ge=0)
    root_rule: str = DEFAULT_ROOT_RULE
