"""
Generation stepper - drive one session one token at a time.

The stepper owns the engine-facing half of a session's lifecycle:

    prepare(session):
        tokenize -> PROCESSING_PROMPT -> clear context -> decode prompt
        -> build sampler chain -> GENERATING

    step(session):
        cancelled?           -> CANCELLED, None
        budget exhausted?    -> COMPLETED, final (limit)
        sample (+ accept on a private chain)
        end of generation?   -> COMPLETED, final (eog)
        otherwise            -> detokenize, feed token back, fragment

Running-context residency:
    The engine has one running context. The stepper remembers which
    session's tokens are in it. Stepping a different session first clears
    the context and re-decodes that session's prompt and generated tokens,
    so interleaved sessions on one engine each see their own history.

Callers serialize calls into the stepper (the generator holds a lock).
"""

import logging
from typing import Any, List, Optional

from stepgen.config import DEFAULT_ROOT_RULE, SamplerConfig
from stepgen.errors import DecodeError, TokenizationError
from stepgen.sampling.chain import build_chain
from stepgen.session.task import (
    CompletionOutput,
    CompletionSession,
    SessionId,
    StopReason,
    TaskState,
)

logger = logging.getLogger(__name__)


class GenerationStepper:
    """
    Engine-side lifecycle of completion sessions.

    Attributes:
        engine: Inference engine
        root_rule: Grammar rule the constraint compiler starts from
        resident: Id of the session whose tokens occupy the running context
    """

    def __init__(self, engine: Any, root_rule: str = DEFAULT_ROOT_RULE):
        self.engine = engine
        self.root_rule = root_rule
        self.resident: Optional[SessionId] = None

    def prepare(self, session: CompletionSession, sampler_config: Optional[SamplerConfig] = None) -> None:
        """
        Process the prompt and attach a sampler chain.

        On success the session is GENERATING with ``current_pos`` equal to
        the prompt length. On failure a private chain built here has been
        freed and the exception propagates.

        Raises:
            TokenizationError: Prompt could not be tokenized
            DecodeError: Prompt batch was refused
            GrammarCompilationError: Grammar was rejected
        """
        tokens = self.engine.tokenize(session.prompt)
        if not tokens:
            logger.error(f"Session {session.id}: failed to tokenize prompt")
            raise TokenizationError(f"Failed to tokenize prompt for session {session.id}")

        session.prompt_tokens = list(tokens)
        session.transition(TaskState.PROCESSING_PROMPT)

        self.resident = None
        self.engine.clear_context()
        if not self._decode(session.prompt_tokens, start=0):
            logger.error(f"Session {session.id}: prompt decode failed ({len(tokens)} tokens)")
            raise DecodeError(
                f"Failed to decode prompt ({len(tokens)} tokens)",
                session_id=session.id,
                position=0,
            )
        self.resident = session.id

        session.sampler_chain = build_chain(
            self.engine,
            grammar=session.grammar,
            config=sampler_config,
            root_rule=self.root_rule,
        )

        session.current_pos = len(session.prompt_tokens)
        session.transition(TaskState.GENERATING)

        logger.info(
            f"Session {session.id} ready: {len(session.prompt_tokens)} prompt tokens, "
            f"max_tokens={session.max_tokens}, grammar={'yes' if session.grammar else 'no'}"
        )

    def step(self, session: CompletionSession) -> Optional[CompletionOutput]:
        """
        Advance ``session`` by at most one token.

        Returns:
            CompletionOutput, or None if the session is cancelled or finished

        Raises:
            DecodeError: Feeding the sampled token back failed; the session
                is FAILED afterwards
        """
        if session.cancelled.is_set():
            if not session.is_terminal:
                session.flush_text()
                session.transition(TaskState.CANCELLED)
                logger.info(f"Session {session.id} cancelled after {len(session.generated_tokens)} tokens")
            return None

        if session.is_terminal:
            return None

        session.touch()

        if session.budget_exhausted:
            return self._finish(session, StopReason.LIMIT)

        self._ensure_resident(session)

        chain = session.sampler_chain
        token = chain.sample()
        if chain.is_private:
            chain.accept(token)

        if self.engine.is_end_of_generation(token):
            return self._finish(session, StopReason.EOG, token)

        session.generated_tokens.append(token)
        fragment = session.decode_piece(self.engine.detokenize_one(token))
        session.current_text += fragment

        if not self.engine.decode_batch([token], [session.current_pos]):
            self.resident = None
            session.transition(TaskState.FAILED)
            logger.error(f"Session {session.id}: decode failed at position {session.current_pos}")
            raise DecodeError(
                f"Failed to decode token {token}",
                session_id=session.id,
                position=session.current_pos,
            )
        session.current_pos += 1

        logger.debug(f"Session {session.id}: token {token} -> {fragment!r}")
        return CompletionOutput(fragment, token=token)

    def forget(self, session_id: SessionId) -> None:
        """Drop residency for a session that is going away."""
        if self.resident == session_id:
            self.resident = None

    def _finish(self, session: CompletionSession, reason: StopReason, token: Optional[int] = None) -> CompletionOutput:
        session.flush_text()
        session.transition(TaskState.COMPLETED)
        logger.info(
            f"Session {session.id} completed ({reason.value}): "
            f"{len(session.generated_tokens)} tokens"
        )
        return CompletionOutput(session.current_text, is_final=True, stop_reason=reason, token=token)

    def _ensure_resident(self, session: CompletionSession) -> None:
        if self.resident == session.id:
            return

        history = session.prompt_tokens + session.generated_tokens
        logger.debug(f"Restoring session {session.id} into the running context ({len(history)} tokens)")

        self.resident = None
        self.engine.clear_context()
        if not self._decode(history, start=0):
            session.transition(TaskState.FAILED)
            logger.error(f"Session {session.id}: failed to restore running context")
            raise DecodeError(
                f"Failed to restore running context ({len(history)} tokens)",
                session_id=session.id,
                position=0,
            )
        self.resident = session.id

    def _decode(self, tokens: List[int], start: int) -> bool:
        """Decode ``tokens`` at consecutive positions, logits for the last only."""
        positions = list(range(start, start + len(tokens)))
        logits = [False] * len(tokens)
        logits[-1] = True
        return self.engine.decode_batch(tokens, positions, logits=logits)
