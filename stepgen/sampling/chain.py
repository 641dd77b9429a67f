"""
Sampler chain composition.

A sampler chain turns the engine's current logits into one token. Every
session samples through a chain:

    - Unconstrained sessions share the engine's default chain (selection
      stage only). It is never mutated and never freed by a session.
    - Sessions with a grammar get a private chain ``[constraint, selection]``
      that tracks the grammar state. It is freed exactly once, when the
      session is released.

Usage:
    ```python
    from stepgen.sampling import build_chain

    chain = build_chain(engine, grammar='root ::= "yes" | "no"')
    token = chain.sample()
    chain.accept(token)
    ...
    chain.free()
    ```
"""

import logging
from typing import Any, Optional

from stepgen.config import DEFAULT_ROOT_RULE, SamplerConfig
from stepgen.errors import GrammarCompilationError
from stepgen.grammar.preprocessor import preprocess

logger = logging.getLogger(__name__)


class SamplerChain:
    """
    Engine chain handle plus ownership bookkeeping.

    Attributes:
        engine: Engine that created the handle
        handle: Opaque engine-side chain
        constrained: Chain carries a constraint stage
        owned: Chain belongs to one session and must be freed by it
    """

    def __init__(self, engine: Any, handle: Any, constrained: bool = False, owned: bool = False):
        self.engine = engine
        self.handle = handle
        self.constrained = constrained
        self.owned = owned
        self._freed = False

    @property
    def is_private(self) -> bool:
        return self.owned

    @property
    def freed(self) -> bool:
        return self._freed

    def sample(self) -> int:
        """
        Sample the next token from the engine's current logits.

        Raises:
            RuntimeError: If the chain has been freed
        """
        if self._freed:
            raise RuntimeError(f"Cannot sample from a freed sampler chain {self.handle!r}")
        return self.engine.sample_next(self.handle)

    def accept(self, token: int) -> None:
        """
        Advance the constraint stage past ``token``.

        Only private constrained chains carry per-session state; the shared
        chain is left untouched.
        """
        if self.constrained and self.owned and not self._freed:
            self.engine.accept_token(self.handle, token)

    def free(self) -> None:
        """Release the engine-side chain. Safe to call more than once."""
        if not self.owned or self._freed:
            return
        self._freed = True
        self.engine.free_chain(self.handle)
        logger.debug(f"Freed private sampler chain {self.handle!r}")

    def __repr__(self) -> str:
        kind = "private" if self.owned else "shared"
        return f"SamplerChain({kind}, constrained={self.constrained}, freed={self._freed})"


def build_chain(
    engine: Any,
    grammar: Optional[str] = None,
    config: Optional[SamplerConfig] = None,
    root_rule: str = DEFAULT_ROOT_RULE,
) -> SamplerChain:
    """
    Choose or build the chain for a new session.

    Args:
        engine: Engine to sample with
        grammar: Optional grammar pattern; None or "" means unconstrained
        config: Selection settings for a private chain (engine default if None)
        root_rule: Rule the constraint compiler starts from

    Returns:
        SamplerChain: The engine's shared default chain, or a new private chain

    Raises:
        GrammarCompilationError: If the compiler rejects the processed pattern
    """
    if not grammar:
        return engine.default_chain

    processed = preprocess(grammar)
    constraint = engine.compile_constraint(processed, root_rule=root_rule)
    if constraint is None:
        logger.error(f"Constraint compiler rejected grammar ({len(processed)} chars)")
        raise GrammarCompilationError(grammar, processed)

    handle = engine.create_chain(constraint, config or engine.sampler_config)
    logger.debug(f"Built private sampler chain for grammar ({len(processed)} chars)")
    return SamplerChain(engine, handle, constrained=True, owned=True)
