"""Retry state machine for provider requests.

Attempting(n) --OK--------------------------> Success
Attempting(n) --ABSENT----------------------> Absent
Attempting(n) --UNAVAILABLE, n+1 < max------> Attempting(n+1)
Attempting(n) --UNAVAILABLE, n+1 == max-----> TransientFailure
Attempting(n) --FORBIDDEN | UNEXPECTED------> TerminalFailure

Attempts are 0-indexed. Terminal phases absorb every further input.
"""

from dataclasses import dataclass
from enum import Enum

from warcollector.etl.base import ResponseClass


class RetryPhase(str, Enum):
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    ABSENT = "absent"
    TRANSIENT_FAILURE = "transient_failure"
    TERMINAL_FAILURE = "terminal_failure"


@dataclass(frozen=True)
class RetryState:
    phase: RetryPhase
    attempt: int = 0

    @property
    def done(self) -> bool:
        return self.phase is not RetryPhase.ATTEMPTING


INITIAL_STATE = RetryState(RetryPhase.ATTEMPTING, 0)


def next_state(state: RetryState, outcome: ResponseClass, max_attempts: int) -> RetryState:
    """Pure transition function from (state, response classification) to the next state."""
    if state.done:
        return state

    if outcome is ResponseClass.OK:
        return RetryState(RetryPhase.SUCCESS, state.attempt)
    if outcome is ResponseClass.ABSENT:
        return RetryState(RetryPhase.ABSENT, state.attempt)
    if outcome is ResponseClass.UNAVAILABLE:
        if state.attempt + 1 < max_attempts:
            return RetryState(RetryPhase.ATTEMPTING, state.attempt + 1)
        return RetryState(RetryPhase.TRANSIENT_FAILURE, state.attempt)
    return RetryState(RetryPhase.TERMINAL_FAILURE, state.attempt)


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay to wait after failed attempt `attempt` (0-indexed): base * 2^attempt."""
    return base_delay * (2 ** attempt)
