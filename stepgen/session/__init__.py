"""
Session layer.

Components:
    - task: CompletionSession, TaskState and the CompletionOutput response
    - registry: Thread-safe id -> session map
    - stepper: Prompt processing and one-token steps against an engine
"""

from stepgen.session.registry import SessionRegistry
from stepgen.session.stepper import GenerationStepper
from stepgen.session.task import (
    CompletionOutput,
    CompletionSession,
    SessionId,
    StopReason,
    TaskState,
)

__all__ = [
    "CompletionOutput",
    "CompletionSession",
    "GenerationStepper",
    "SessionId",
    "SessionRegistry",
    "StopReason",
    "TaskState",
]
