"""
Selection stages on torch logits.

Used by the transformers engine, which has no native sampler chain. A
``TorchSamplerChain`` is the engine-side handle behind a ``SamplerChain``:
it masks logits with an optional FSM constraint, then runs the selection
stages from ``SamplerConfig``.

Stage order for ``selection="dist"``:
    top-k -> top-p -> min-p -> temperature -> draw

Example:
    ```python
    import torch
    from stepgen.config import SamplerConfig
    from stepgen.sampling.torch_sampler import select_token

    logits = torch.tensor([0.1, 2.0, 0.3])
    select_token(logits, SamplerConfig())    # 1 (greedy)
    ```
"""

import logging
from typing import Iterable, Optional

import torch
from torch import Tensor

from stepgen.config import RANDOM_SEED, SamplerConfig
from stepgen.sampling.fsm_constraint import FSMConstraint

logger = logging.getLogger(__name__)


def mask_logits(logits: Tensor, allowed: Iterable[int]) -> Tensor:
    """Return a copy of ``logits`` with every token outside ``allowed`` at -inf."""
    mask = torch.ones(logits.shape[-1], dtype=torch.bool, device=logits.device)
    allowed = list(allowed)
    if allowed:
        mask[torch.tensor(allowed, dtype=torch.long, device=logits.device)] = False

    masked = logits.clone()
    masked[mask] = float("-inf")
    return masked


def apply_top_k(logits: Tensor, k: int) -> Tensor:
    if k >= logits.shape[-1]:
        return logits
    threshold = torch.topk(logits, k).values[-1]
    return logits.masked_fill(logits < threshold, float("-inf"))


def apply_top_p(logits: Tensor, p: float, min_keep: int = 1) -> Tensor:
    if p >= 1.0:
        return logits

    sorted_logits, sorted_idx = torch.sort(logits, descending=True)
    probs = torch.softmax(sorted_logits, dim=-1)
    cumulative = torch.cumsum(probs, dim=-1)

    # Keep a token if the mass before it is still below p.
    remove = (cumulative - probs) >= p
    remove[:max(min_keep, 1)] = False

    filtered = logits.clone()
    filtered[sorted_idx[remove]] = float("-inf")
    return filtered


def apply_min_p(logits: Tensor, p: float, min_keep: int = 1) -> Tensor:
    if p <= 0.0:
        return logits

    probs = torch.softmax(logits, dim=-1)
    remove = probs < p * probs.max()

    if int((~remove).sum()) < min_keep:
        keep = torch.topk(probs, min(min_keep, probs.shape[-1])).indices
        remove[keep] = False

    return logits.masked_fill(remove, float("-inf"))


def select_token(logits: Tensor, config: SamplerConfig, generator: Optional[torch.Generator] = None) -> int:
    """
    Pick one token id from a 1-D logits tensor.

    Args:
        logits: Scores over the vocabulary
        config: Selection settings
        generator: RNG for the distribution draw

    Returns:
        int: Selected token id
    """
    logits = logits.float()

    if config.is_greedy or config.temperature == 0.0:
        return int(torch.argmax(logits))

    if config.top_k is not None:
        logits = apply_top_k(logits, config.top_k)
    if config.top_p is not None:
        logits = apply_top_p(logits, config.top_p, config.min_keep)
    if config.min_p is not None:
        logits = apply_min_p(logits, config.min_p, config.min_keep)
    if config.temperature is not None:
        logits = logits / config.temperature

    probs = torch.softmax(logits, dim=-1)
    return int(torch.multinomial(probs, 1, generator=generator))


class TorchSamplerChain:
    """
    Engine-side chain for the transformers engine.

    Attributes:
        config: Selection settings
        constraint: Optional FSM constraint
        state: Current FSM state (None when unconstrained)
        generator: CPU RNG for the distribution draw
    """

    def __init__(self, config: SamplerConfig, constraint: Optional[FSMConstraint] = None):
        self.config = config
        self.constraint = constraint
        self.state = constraint.initial if constraint is not None else None

        self.generator = torch.Generator(device="cpu")
        if config.seed == RANDOM_SEED:
            self.generator.seed()
        else:
            self.generator.manual_seed(config.seed)

    def sample(self, logits: Tensor, eog_tokens: Iterable[int]) -> int:
        """
        Sample from ``logits`` under the constraint.

        End-of-generation tokens are allowed only in an accepting state, or
        when the constraint has nothing else left to offer.
        """
        logits = logits.detach().to("cpu")

        if self.constraint is not None:
            allowed = list(self.constraint.allowed_tokens(self.state))
            if not allowed or self.constraint.is_accepting(self.state):
                allowed.extend(eog_tokens)
            logits = mask_logits(logits, allowed)

        return select_token(logits, self.config, self.generator)

    def accept(self, text: str) -> None:
        """Advance the FSM past the text of an accepted token."""
        if self.constraint is None:
            return

        next_state = self.constraint.advance(self.state, text)
        if next_state is None:
            logger.warning(f"Accepted token {text!r} has no transition from state {self.state}")
            return
        self.state = next_state

    def __repr__(self) -> str:
        return f"TorchSamplerChain(selection={self.config.selection.value}, state={self.state})"
