"""
stepgen: Incremental, Resumable Text Generation

stepgen turns a single "generate text for this prompt" request into a
sequence of resumable steps. A caller starts a session, pulls one token's
worth of text per call, may cancel at any time, and always gets a final
response carrying the full text and why generation stopped.

Key Features:
    - Session-based stepping with stateless step(session id) calls
    - Cooperative cancellation from any thread
    - Per-session grammar constraints with private sampler chains
    - Grammar preprocessing (escape normalization, negated classes)
    - llama.cpp (GGUF) and HuggingFace transformers engines

Quick Start:
    ```python
    from stepgen import StreamingGenerator

    generator = StreamingGenerator.from_model("models/qwen2-0_5b-instruct-q4_k_m.gguf")

    session_id = generator.start("The sky is", max_tokens=3)
    while True:
        output = generator.step(session_id)
        if output is None or output.is_final:
            break
        print(output.text, end="", flush=True)
    generator.release(session_id)
    ```

Architecture:
    1. Config: Request and sampler settings validated with pydantic
    2. Grammar: Pattern preprocessing and JSON schema conversion
    3. Sampling: Shared default chain or a private constrained chain
    4. Session: State machine, registry and the one-token stepper
    5. Engine: Narrow primitive interface over llama.cpp / transformers
"""

__version__ = "0.1.0"

from stepgen.config import CompletionRequest, GeneratorSettings, SamplerConfig, Selection  # noqa: F401
from stepgen.errors import (  # noqa: F401
    DecodeError,
    EngineError,
    GrammarCompilationError,
    InvalidRequestError,
    InvalidStateTransition,
    StepgenError,
    TokenizationError,
)
from stepgen.generator import GenerationResult, StreamingGenerator  # noqa: F401
from stepgen.grammar import json_schema_to_grammar, preprocess  # noqa: F401
from stepgen.session import CompletionOutput, StopReason, TaskState  # noqa: F401

__all__ = [
    "StreamingGenerator",
    "GenerationResult",
    "CompletionOutput",
    "TaskState",
    "StopReason",
    "CompletionRequest",
    "GeneratorSettings",
    "SamplerConfig",
    "Selection",
    "StepgenError",
    "InvalidRequestError",
    "TokenizationError",
    "DecodeError",
    "GrammarCompilationError",
    "EngineError",
    "InvalidStateTransition",
    "preprocess",
    "json_schema_to_grammar",
]
