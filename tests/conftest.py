"""
Shared fixtures: a scripted engine that needs no model.

``ScriptedEngine`` implements the engine primitives over a fixed script of
sampled tokens and records every call, so tests can check exactly what the
session layer asked the engine to do.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

from stepgen.config import DEFAULT_ROOT_RULE, SamplerConfig
from stepgen.engine.base import Engine
from stepgen.generator import StreamingGenerator


EOG = 0

VOCAB: Dict[int, bytes] = {
    EOG: b"",
    1: b" blue",
    2: b" and",
    3: b" clear",
    4: b" today",
    # "é" split across two tokens
    5: b"\xc3",
    6: b"\xa9",
}


class ScriptedChain:
    """Chain handle handed out by ScriptedEngine.create_chain."""

    def __init__(self, constraint: Optional[Any], config: SamplerConfig):
        self.constraint = constraint
        self.config = config
        self.samples = 0
        self.accepted: List[int] = []
        self.free_count = 0


class ScriptedEngine(Engine):
    """
    Fake engine driven by a token script.

    ``sample_next`` returns the script's tokens in order and then the
    end-of-generation token forever. Prompts tokenize to one token per
    whitespace-separated word.

    Failure switches:
        fail_tokenize: tokenize returns None
        refuse_decode: decode_batch returns False
        reject_grammar: compile_constraint returns None
    """

    def __init__(self, script: Iterable[int] = (), sampler_config: Optional[SamplerConfig] = None):
        super().__init__(sampler_config=sampler_config)
        self._script = iter(script)

        self.fail_tokenize = False
        self.refuse_decode = False
        self.reject_grammar = False
        self.closed = False

        self.decode_calls: List[Tuple[List[int], List[int], Optional[List[bool]]]] = []
        self.clear_calls = 0
        self.sample_calls = 0
        self.compiled: List[str] = []
        self.chains: List[ScriptedChain] = []

    @property
    def engine_calls(self) -> int:
        return len(self.decode_calls) + self.clear_calls + self.sample_calls

    def tokenize(self, text: str) -> Optional[List[int]]:
        if self.fail_tokenize:
            return None
        return [100 + len(word) for word in text.split()]

    def detokenize_one(self, token: int) -> bytes:
        return VOCAB.get(token, b"")

    def decode_batch(
        self,
        tokens: Sequence[int],
        positions: Sequence[int],
        seq_id: int = 0,
        logits: Optional[Sequence[bool]] = None,
    ) -> bool:
        self.decode_calls.append((list(tokens), list(positions), list(logits) if logits is not None else None))
        return not self.refuse_decode

    def sample_next(self, handle: ScriptedChain) -> int:
        self.sample_calls += 1
        handle.samples += 1
        return next(self._script, EOG)

    def accept_token(self, handle: ScriptedChain, token: int) -> None:
        handle.accepted.append(token)

    def is_end_of_generation(self, token: int) -> bool:
        return token == EOG

    def compile_constraint(self, pattern: str, root_rule: str = DEFAULT_ROOT_RULE) -> Optional[Any]:
        self.compiled.append(pattern)
        if self.reject_grammar:
            return None
        return {"pattern": pattern, "root": root_rule}

    def clear_context(self) -> None:
        self.clear_calls += 1

    def create_chain(self, constraint: Optional[Any], config: SamplerConfig) -> ScriptedChain:
        handle = ScriptedChain(constraint, config)
        self.chains.append(handle)
        return handle

    def free_chain(self, handle: ScriptedChain) -> None:
        handle.free_count += 1

    def get_model_info(self) -> Dict[str, Any]:
        return {"engine": "scripted", "model": "scripted", "vocab_size": len(VOCAB)}

    def close(self) -> None:
        super().close()
        self.closed = True


@pytest.fixture
def make_engine():
    """Factory for engines with a custom script."""
    return ScriptedEngine


@pytest.fixture
def engine():
    """Engine whose script is ' blue and clear today' followed by end-of-generation."""
    return ScriptedEngine(script=[1, 2, 3, 4])


@pytest.fixture
def generator(engine):
    gen = StreamingGenerator(engine)
    yield gen
    gen.close()
