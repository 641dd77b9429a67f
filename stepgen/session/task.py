"""
Completion sessions - per-request generation state.

A ``CompletionSession`` holds everything needed to resume generation for
one request between stateless ``step`` calls: the prompt tokens, the
tokens generated so far, the accumulated text, the next context position,
the sampler chain and the lifecycle state.

State machine (forward only, terminal states absorb):

    PENDING -> PROCESSING_PROMPT -> GENERATING -> COMPLETED
                                               -> CANCELLED
                                               -> FAILED

Usage:
    ```python
    session = CompletionSession(1, "The sky is", max_tokens=3, sampler_chain=chain)
    session.transition(TaskState.PROCESSING_PROMPT)
    session.transition(TaskState.GENERATING)
    session.is_terminal  # False
    ```
"""

import codecs
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from stepgen.errors import InvalidStateTransition

logger = logging.getLogger(__name__)

SessionId = int


class TaskState(str, Enum):
    """Lifecycle state of a completion session."""
    PENDING = "pending"
    PROCESSING_PROMPT = "processing_prompt"
    GENERATING = "generating"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[TaskState] = frozenset(
    {TaskState.COMPLETED, TaskState.CANCELLED, TaskState.FAILED}
)

_TRANSITIONS: Dict[TaskState, FrozenSet[TaskState]] = {
    TaskState.PENDING: frozenset({TaskState.PROCESSING_PROMPT, TaskState.CANCELLED, TaskState.FAILED}),
    TaskState.PROCESSING_PROMPT: frozenset({TaskState.GENERATING, TaskState.CANCELLED, TaskState.FAILED}),
    TaskState.GENERATING: TERMINAL_STATES,
    TaskState.COMPLETED: frozenset(),
    TaskState.CANCELLED: frozenset(),
    TaskState.FAILED: frozenset(),
}


class StopReason(str, Enum):
    """Why a session produced its final response."""
    EOG = "eog"
    LIMIT = "limit"


@dataclass
class CompletionOutput:
    """
    One response from ``step``.

    Attributes:
        text: New fragment for a non-final response; the full accumulated
            text for a final one
        is_final: True on the last response of a session
        stop_reason: Set on final responses only
        token: Token sampled by this step (None for a budget stop)
    """
    text: str
    is_final: bool = False
    stop_reason: Optional[StopReason] = None
    token: Optional[int] = None

    @property
    def increment(self) -> str:
        """Text added by this step; empty on the final response."""
        return "" if self.is_final else self.text


class CompletionSession:
    """
    State of one generation request.

    ``cancelled`` may be set from any thread; everything else is mutated
    only by the thread driving ``step`` for this session.

    Attributes:
        id: Session id, unique within a generator
        prompt: Prompt text
        prompt_tokens: Tokenized prompt
        generated_tokens: Tokens sampled so far (end-of-generation excluded)
        current_text: Text decoded so far
        current_pos: Next context position
        state: Lifecycle state
        cancelled: Cooperative cancellation flag
        sampler_chain: Private chain, or the engine's shared default chain
        max_tokens: Generation budget (n_predict)
        grammar: Grammar pattern as supplied, for diagnostics
        created_at: Monotonic creation time
        last_active: Monotonic time of the last step
    """

    def __init__(
        self,
        session_id: SessionId,
        prompt: str,
        max_tokens: int,
        sampler_chain=None,
        grammar: Optional[str] = None,
    ):
        self.id = session_id
        self.prompt = prompt
        self.prompt_tokens: List[int] = []
        self.generated_tokens: List[int] = []
        self.current_text = ""
        self.current_pos = 0
        self.state = TaskState.PENDING
        self.cancelled = threading.Event()
        self.sampler_chain = sampler_chain
        self.max_tokens = max_tokens
        self.grammar = grammar
        self.created_at = time.monotonic()
        self.last_active = self.created_at

        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def budget_exhausted(self) -> bool:
        return len(self.generated_tokens) >= self.max_tokens

    def transition(self, target: TaskState) -> None:
        """
        Move to ``target``.

        Raises:
            InvalidStateTransition: If ``target`` is not reachable from here
        """
        if target not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.state, target)

        logger.debug(f"Session {self.id}: {self.state.value} -> {target.value}")
        self.state = target

    def touch(self) -> None:
        self.last_active = time.monotonic()

    def idle_seconds(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_active

    def decode_piece(self, piece: bytes) -> str:
        """
        Decode one token's bytes.

        A code point split across tokens is held back until the token that
        completes it arrives, so the fragment may be "".
        """
        return self._utf8.decode(piece)

    def flush_text(self) -> None:
        """Drop any unfinished code point left at the end of generation."""
        pending, _ = self._utf8.getstate()
        if pending:
            logger.debug(f"Session {self.id}: dropping {len(pending)} trailing byte(s) of an unfinished character")
        self._utf8.reset()

    def __repr__(self) -> str:
        return (
            f"CompletionSession(id={self.id}, state={self.state.value}, "
            f"generated={len(self.generated_tokens)}/{self.max_tokens})"
        )
