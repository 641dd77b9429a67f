"""
Unit tests for completion sessions and the session state machine.
"""

import pytest

from stepgen.errors import InvalidStateTransition
from stepgen.session import CompletionOutput, CompletionSession, StopReason, TaskState
from stepgen.session.task import TERMINAL_STATES


def generating_session(max_tokens=3):
    session = CompletionSession(1, "The sky is", max_tokens=max_tokens)
    session.transition(TaskState.PROCESSING_PROMPT)
    session.transition(TaskState.GENERATING)
    return session


class TestStateMachine:
    """Test lifecycle transitions."""

    def test_new_session_is_pending(self):
        session = CompletionSession(1, "Hi", max_tokens=3)

        assert session.state == TaskState.PENDING
        assert not session.is_terminal
        assert not session.cancelled.is_set()

    def test_happy_path(self):
        session = generating_session()
        session.transition(TaskState.COMPLETED)

        assert session.state == TaskState.COMPLETED
        assert session.is_terminal

    @pytest.mark.parametrize("target", [TaskState.COMPLETED, TaskState.CANCELLED, TaskState.FAILED])
    def test_generating_reaches_every_terminal_state(self, target):
        session = generating_session()
        session.transition(target)

        assert session.is_terminal

    def test_skipping_prompt_processing_is_illegal(self):
        session = CompletionSession(1, "Hi", max_tokens=3)

        with pytest.raises(InvalidStateTransition):
            session.transition(TaskState.GENERATING)

    def test_no_backward_transition(self):
        session = generating_session()

        with pytest.raises(InvalidStateTransition) as exc_info:
            session.transition(TaskState.PROCESSING_PROMPT)

        assert exc_info.value.current == TaskState.GENERATING
        assert exc_info.value.target == TaskState.PROCESSING_PROMPT

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_states_absorb(self, terminal):
        session = generating_session()
        session.transition(terminal)

        for target in TaskState:
            with pytest.raises(InvalidStateTransition):
                session.transition(target)

    def test_pending_can_be_cancelled(self):
        session = CompletionSession(1, "Hi", max_tokens=3)
        session.transition(TaskState.CANCELLED)

        assert session.is_terminal

    def test_invalid_transition_is_runtime_error(self):
        session = CompletionSession(1, "Hi", max_tokens=3)

        with pytest.raises(RuntimeError):
            session.transition(TaskState.COMPLETED)


class TestBudgetAndActivity:
    """Test budget and idle bookkeeping."""

    def test_budget_exhausted(self):
        session = generating_session(max_tokens=2)
        assert not session.budget_exhausted

        session.generated_tokens.extend([1, 2])

        assert session.budget_exhausted

    def test_zero_budget_is_exhausted_immediately(self):
        assert generating_session(max_tokens=0).budget_exhausted

    def test_idle_seconds(self):
        session = generating_session()

        assert session.idle_seconds(now=session.last_active + 5) == pytest.approx(5)

    def test_touch_updates_last_active(self):
        session = generating_session()
        session.last_active -= 60

        session.touch()

        assert session.idle_seconds() < 60


class TestUtf8Decoding:
    """Test incremental decoding of token bytes."""

    def test_ascii_piece(self):
        session = generating_session()

        assert session.decode_piece(b" blue") == " blue"

    def test_split_code_point(self):
        session = generating_session()

        assert session.decode_piece(b"\xe2\x82") == ""
        assert session.decode_piece(b"\xac") == "€"

    def test_invalid_bytes_replaced(self):
        session = generating_session()

        assert session.decode_piece(b"\xff") == "�"

    def test_flush_drops_pending_bytes(self):
        session = generating_session()
        session.decode_piece(b"\xc3")

        session.flush_text()

        assert session.decode_piece(b"a") == "a"


class TestCompletionOutput:
    """Test the step response."""

    def test_fragment_increment(self):
        output = CompletionOutput(" blue", token=1)

        assert output.increment == " blue"
        assert not output.is_final
        assert output.stop_reason is None

    def test_final_increment_is_empty(self):
        output = CompletionOutput(" blue and clear", is_final=True, stop_reason=StopReason.LIMIT)

        assert output.increment == ""
        assert output.text == " blue and clear"

    def test_stop_reason_values(self):
        assert StopReason.EOG.value == "eog"
        assert StopReason.LIMIT.value == "limit"
