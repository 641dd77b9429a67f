"""
Streaming generator - the caller-facing session protocol.

A single "generate text for this prompt" request becomes a sequence of
resumable steps driven by stateless calls:

    1. start(prompt, max_tokens, grammar) -> session id
    2. step(session id) repeatedly -> fragments, then one final response
    3. release(session id)

``cancel`` may be called from any thread at any time; the next ``step``
returns None and the session stops consuming engine time.

Usage:
    ```python
    from stepgen import StreamingGenerator

    with StreamingGenerator.from_model("models/qwen2-0_5b-instruct-q4_k_m.gguf") as generator:
        session_id = generator.start("The sky is", max_tokens=3)
        while True:
            output = generator.step(session_id)
            if output is None or output.is_final:
                break
            print(output.text, end="", flush=True)
        generator.release(session_id)

        # Or let the generator drive the loop
        for output in generator.stream("Once upon a time", max_tokens=32):
            ...

        result = generator.generate("List three colors:", max_tokens=20)
        print(result.text, result.stop_reason)
    ```

Concurrency:
    Registry access takes the registry lock only. Engine calls are
    serialized by the generator lock because the engine has one running
    context. A ``step`` whose session is released before it gets the
    engine lock returns None without sampling.
    At most one ``step`` per session id may be in flight at a time;
    this is the caller's responsibility.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional

from stepgen.config import CompletionRequest, GeneratorSettings, SamplerConfig
from stepgen.errors import StepgenError
from stepgen.session.registry import SessionRegistry
from stepgen.session.stepper import GenerationStepper
from stepgen.session.task import (
    CompletionOutput,
    CompletionSession,
    SessionId,
    StopReason,
    TaskState,
)

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """
    Result of a drained stream.

    Attributes:
        text: Full generated text
        tokens_generated: Number of tokens produced (end-of-generation excluded)
        stop_reason: "eog", "limit", or None if the stream ended early
        latency_ms: Wall time from start to final response
        session_id: Session that produced the text
    """
    text: str
    tokens_generated: int
    stop_reason: Optional[StopReason]
    latency_ms: float
    session_id: SessionId


class StreamingGenerator:
    """
    Session-based incremental generation over one engine.

    Attributes:
        engine: Inference engine
        settings: Generator-wide settings
        registry: Live sessions
    """

    def __init__(
        self,
        engine: Any,
        settings: Optional[GeneratorSettings] = None,
        sampler_config: Optional[SamplerConfig] = None,
    ):
        """
        Initialize the generator.

        Args:
            engine: Loaded engine (see ``stepgen.engine``)
            settings: Generator-wide settings
            sampler_config: Selection settings for grammar-constrained
                sessions (engine default if None)
        """
        self.engine = engine
        self.settings = settings or GeneratorSettings()
        self.sampler_config = sampler_config
        self.registry = SessionRegistry()
        self._stepper = GenerationStepper(engine, root_rule=self.settings.root_rule)
        self._engine_lock = threading.RLock()
        self._closed = False

        logger.info(f"StreamingGenerator ready on {engine!r}")

    @classmethod
    def from_model(
        cls,
        model: str,
        engine_type: Optional[str] = None,
        settings: Optional[GeneratorSettings] = None,
        **engine_kwargs
    ) -> "StreamingGenerator":
        """
        Load an engine and wrap it.

        Example:
            ```python
            generator = StreamingGenerator.from_model("models/mistral-7b.gguf", n_ctx=4096)
            ```
        """
        from stepgen.engine import EngineFactory

        engine = EngineFactory.create(model, engine_type=engine_type, **engine_kwargs)
        return cls(engine, settings=settings)

    def start(self, prompt: str, max_tokens: Optional[int] = None, grammar: Optional[str] = None) -> SessionId:
        """
        Start a session: tokenize and decode the prompt, build its chain.

        Args:
            prompt: Prompt text (not empty)
            max_tokens: Token budget (default from settings)
            grammar: Optional grammar constraining the output

        Returns:
            SessionId: Id to pass to step / cancel / release

        Raises:
            InvalidRequestError: Empty prompt or negative budget
            TokenizationError: Prompt could not be tokenized
            DecodeError: Prompt decode failed
            GrammarCompilationError: Grammar was rejected
        """
        if max_tokens is None:
            max_tokens = self.settings.default_max_tokens
        request = CompletionRequest.build(prompt=prompt, n_predict=max_tokens, grammar=grammar)
        return self.start_request(request)

    def start_request(self, request: CompletionRequest) -> SessionId:
        """Start a session from a parsed request. See ``start``."""
        self._check_open()

        session = CompletionSession(
            self.registry.next_id(),
            request.prompt,
            max_tokens=request.n_predict,
            grammar=request.grammar,
        )

        with self._engine_lock:
            try:
                self._stepper.prepare(session, sampler_config=self.sampler_config)
            except StepgenError:
                self._stepper.forget(session.id)
                if session.sampler_chain is not None:
                    session.sampler_chain.free()
                raise

        self.registry.add(session)
        return session.id

    def start_json(self, params: str) -> SessionId:
        """
        Start a session from a JSON parameter string.

        Example:
            ```python
            generator.start_json('{"prompt": "The sky is", "n_predict": 3}')
            ```
        """
        return self.start_request(CompletionRequest.from_json(params))

    def step(self, session_id: SessionId) -> Optional[CompletionOutput]:
        """
        Advance a session by one token.

        Returns:
            CompletionOutput, or None for an unknown, cancelled or finished
            session

        Raises:
            DecodeError: Feeding the token back failed (session is FAILED)
        """
        session = self.registry.get(session_id)
        if session is None:
            logger.debug(f"step: unknown session {session_id}")
            return None

        # Cancelled sessions return without touching the engine.
        if session.cancelled.is_set() or session.is_terminal:
            return self._stepper.step(session)

        with self._engine_lock:
            # A release may have run between the lookup and the lock.
            if self.registry.get(session_id) is not session:
                logger.debug(f"step: session {session_id} released before stepping")
                return None
            return self._stepper.step(session)

    def cancel(self, session_id: SessionId) -> None:
        """Ask a session to stop. Takes effect at its next ``step``."""
        session = self.registry.get(session_id)
        if session is None:
            return
        session.cancelled.set()
        logger.info(f"Cancellation requested for session {session_id}")

    def release(self, session_id: SessionId) -> None:
        """Forget a session and free its private chain. Idempotent."""
        session = self.registry.remove(session_id)
        if session is None:
            return

        with self._engine_lock:
            self._stepper.forget(session_id)
            if session.sampler_chain is not None:
                session.sampler_chain.free()

        logger.debug(f"Released session {session_id} ({session.state.value})")

    def stream(
        self,
        prompt: str,
        max_tokens: Optional[int] = None,
        grammar: Optional[str] = None,
    ) -> Iterator[CompletionOutput]:
        """
        Yield every response of a new session, final one included.

        The session starts on the first ``next()`` and is released when the
        iterator is exhausted, closed or garbage collected.
        """
        session_id = self.start(prompt, max_tokens=max_tokens, grammar=grammar)
        yield from self._drive(session_id)

    def _drive(self, session_id: SessionId) -> Iterator[CompletionOutput]:
        try:
            while True:
                output = self.step(session_id)
                if output is None:
                    return
                yield output
                if output.is_final:
                    return
        finally:
            self.release(session_id)

    def generate(
        self,
        prompt: str,
        max_tokens: Optional[int] = None,
        grammar: Optional[str] = None,
    ) -> GenerationResult:
        """
        Run a session to completion.

        Example:
            ```python
            result = generator.generate("The capital of France is", max_tokens=5)
            print(f"{result.text!r} ({result.tokens_generated} tokens, {result.latency_ms:.0f}ms)")
            ```
        """
        start_time = time.time()
        text = ""
        tokens = 0
        stop_reason = None

        session_id = self.start(prompt, max_tokens=max_tokens, grammar=grammar)
        for output in self._drive(session_id):
            if output.is_final:
                text = output.text
                stop_reason = output.stop_reason
            else:
                text += output.text
                tokens += 1

        latency_ms = (time.time() - start_time) * 1000
        logger.info(f"Generated {tokens} tokens in {latency_ms:.0f}ms ({stop_reason})")

        return GenerationResult(
            text=text,
            tokens_generated=tokens,
            stop_reason=stop_reason,
            latency_ms=latency_ms,
            session_id=session_id,
        )

    def sweep_idle(self, max_idle_seconds: float) -> List[SessionId]:
        """
        Release sessions with no ``step`` for longer than ``max_idle_seconds``.

        Never called automatically.

        Returns:
            Ids of the released sessions
        """
        idle = self.registry.idle_ids(max_idle_seconds)
        for session_id in idle:
            self.release(session_id)

        if idle:
            logger.info(f"Released {len(idle)} idle session(s): {idle}")
        return idle

    def active_sessions(self) -> List[SessionId]:
        return self.registry.ids()

    def session_state(self, session_id: SessionId) -> Optional[TaskState]:
        session = self.registry.get(session_id)
        return session.state if session is not None else None

    def close(self) -> None:
        """Release every session and close the engine."""
        if self._closed:
            return
        for session_id in self.registry.ids():
            self.release(session_id)
        with self._engine_lock:
            self.engine.close()
        self._closed = True
        logger.info("StreamingGenerator closed")

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("StreamingGenerator is closed")

    def __enter__(self) -> "StreamingGenerator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"StreamingGenerator(engine={self.engine!r}, sessions={len(self.registry)})"
