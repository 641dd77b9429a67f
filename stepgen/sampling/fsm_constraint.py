"""
Regex constraint over a token vocabulary, built on interegular.

The transformers engine has no grammar sampler of its own, so its
constraint compiler turns the (preprocessed) pattern into a character-level
FSM with interegular and works out, per FSM state, which vocabulary tokens
can be consumed from that state.

Character FSM to token validity:
    For a state S and token T with text t:
        T is allowed in S if every character of t has a transition,
        starting at S. Reaching an accepting state is not required, since
        generation is incremental.

Valid-token sets are computed on first use per state and memoized, so only
the states a generation actually visits are ever scanned.

Usage:
    ```python
    from stepgen.sampling.fsm_constraint import FSMConstraint

    vocabulary = ["a", "b", "ab", "<eos>"]
    constraint = FSMConstraint.compile("a+b", vocabulary)

    state = constraint.initial
    constraint.allowed_tokens(state)     # [0, 2]
    state = constraint.advance(state, "a")
    constraint.is_accepting(state)       # False
    ```
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from interegular import parse_pattern

logger = logging.getLogger(__name__)


class FSMConstraint:
    """
    Character FSM plus a memoized per-state token index.

    Attributes:
        pattern: Regex the FSM was built from
        fsm: interegular FSM
        vocabulary: Token text indexed by token id ("" for tokens that
            never satisfy a constraint, e.g. special tokens)
    """

    def __init__(self, pattern: str, fsm: Any, vocabulary: Sequence[str]):
        self.pattern = pattern
        self.fsm = fsm
        self.vocabulary = vocabulary
        self._allowed: Dict[int, List[int]] = {}

        logger.debug(f"FSMConstraint: {len(fsm.states)} states, vocab={len(vocabulary)}")

    @classmethod
    def compile(cls, pattern: str, vocabulary: Sequence[str]) -> Optional["FSMConstraint"]:
        """
        Build a constraint from a regex.

        Returns:
            FSMConstraint, or None if interegular cannot parse the pattern
        """
        try:
            fsm = parse_pattern(pattern).to_fsm()
        except Exception as e:
            logger.warning(f"interegular rejected pattern {pattern[:60]!r}: {e}")
            return None

        return cls(pattern, fsm, vocabulary)

    @property
    def initial(self) -> int:
        return self.fsm.initial

    def is_accepting(self, state: int) -> bool:
        return state in self.fsm.finals

    def advance(self, state: int, text: str) -> Optional[int]:
        """
        Feed ``text`` through the FSM from ``state``.

        Returns:
            State after the last character, or None on a missing transition
        """
        current = state
        for char in text:
            try:
                symbol = self.fsm.alphabet[char]
            except KeyError:
                return None

            current = self.fsm.map.get(current, {}).get(symbol)
            if current is None:
                return None

        return current

    def allowed_tokens(self, state: int) -> List[int]:
        """
        Token ids that can be consumed from ``state``.

        Empty token texts are never allowed; they would make no progress.
        """
        cached = self._allowed.get(state)
        if cached is not None:
            return cached

        allowed = [
            token_id
            for token_id, text in enumerate(self.vocabulary)
            if text and self.advance(state, text) is not None
        ]
        self._allowed[state] = allowed

        logger.debug(f"State {state}: {len(allowed)} allowed tokens")
        return allowed

    def __repr__(self) -> str:
        return f"FSMConstraint(pattern={self.pattern[:40]!r}, states={len(self.fsm.states)})"
