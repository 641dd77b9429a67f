"""
Exception hierarchy for stepgen.

Engine adapters report failures through return values (None / False); the
session layer turns those into the exceptions below so callers get a typed
error from ``start`` or ``step``.

Hierarchy:
    StepgenError
    ├── InvalidRequestError      (also a ValueError) - rejected before allocation
    ├── TokenizationError        - prompt could not be tokenized
    ├── DecodeError              - engine refused a decode batch
    ├── GrammarCompilationError  - constraint compiler rejected the pattern
    ├── EngineError              - engine could not be created or loaded
    └── InvalidStateTransition   (also a RuntimeError) - programmer error
"""

from typing import Optional


class StepgenError(Exception):
    """Base class for all stepgen errors."""


class InvalidRequestError(StepgenError, ValueError):
    """Malformed or empty generation request."""


class TokenizationError(StepgenError):
    """The engine failed to tokenize the prompt."""


class DecodeError(StepgenError):
    """
    The engine failed to decode a batch.

    Attributes:
        session_id: Session the batch belonged to (None during start)
        position: First context position of the failed batch
    """

    def __init__(self, message: str, session_id: Optional[int] = None, position: Optional[int] = None):
        super().__init__(message)
        self.session_id = session_id
        self.position = position


class GrammarCompilationError(StepgenError):
    """
    The constraint compiler rejected a grammar.

    The whole request fails; a grammar the caller asked for is never
    silently dropped.

    Attributes:
        grammar: Pattern as supplied by the caller
        processed: Pattern after preprocessing (what the compiler saw)
    """

    def __init__(self, grammar: str, processed: str):
        preview = processed if len(processed) <= 80 else processed[:77] + "..."
        super().__init__(f"Failed to compile grammar: {preview!r}")
        self.grammar = grammar
        self.processed = processed


class EngineError(StepgenError):
    """The inference engine could not be created or loaded."""


class InvalidStateTransition(StepgenError, RuntimeError):
    """A session was asked to move to a state it cannot reach."""

    def __init__(self, current, target):
        super().__init__(f"Illegal session state transition: {current} -> {target}")
        self.current = current
        self.target = target
