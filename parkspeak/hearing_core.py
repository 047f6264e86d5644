"""Adaptive digits-in-noise hearing screening.

Deterministic staircase core: every transition is a pure function from
``(state, input)`` to a new ``HearingTestState``. Audio playback, digit entry
and persistence live outside this module and only inspect returned states.

The procedure is a 1-up-1-down staircase over digit triplets. The step starts
at 4 dB and narrows to 2 dB after the first reversal; it never widens again.
The SRT is the mean presentation SNR over all trials after the warm-up block.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Sequence

logger = logging.getLogger(__name__)

TOTAL_TRIALS = 23
WARMUP_TRIALS = 4
INITIAL_SNR_DB = 4.0
INITIAL_STEP_DB = 4.0
FINAL_STEP_DB = 2.0

NORMAL_MAX_SRT_DB = -5.5
BORDERLINE_MAX_SRT_DB = -2.8

Triplet = tuple[int, int, int]


class Phase(str, Enum):
    INSTRUCTIONS = "instructions"
    AMBIENT_CHECK = "ambient_check"
    RUNNING = "running"
    COMPLETE = "complete"


class HearingResult(str, Enum):
    NORMAL = "normal"
    BORDERLINE = "borderline"
    REFER = "refer"


@dataclass(frozen=True, slots=True)
class Trial:
    digits: Triplet
    snr_db: float
    response: Triplet | None = None
    correct: bool | None = None

    @property
    def answered(self) -> bool:
        return self.response is not None


@dataclass(frozen=True, slots=True)
class HearingTestState:
    trials: tuple[Trial, ...] = ()
    current_snr_db: float = INITIAL_SNR_DB
    step_db: float = INITIAL_STEP_DB
    reversal_count: int = 0
    last_direction: int | None = None  # +1 raise SNR, -1 lower SNR
    phase: Phase = Phase.INSTRUCTIONS
    result: HearingResult | None = None
    srt_db: float | None = None

    @property
    def current_trial(self) -> Trial | None:
        return self.trials[-1] if self.trials else None

    @property
    def awaiting_response(self) -> bool:
        trial = self.current_trial
        return self.phase is Phase.RUNNING and trial is not None and not trial.answered

    @property
    def trial_number(self) -> int:
        return len(self.trials)


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)


def create_initial_state() -> HearingTestState:
    return HearingTestState()


def generate_triplet(rng: SeededRng, exclude_first: int | None = None) -> Triplet:
    """Draw three distinct digits, rejecting ``exclude_first`` in position 0."""

    digits: list[int] = []
    while len(digits) < 3:
        d = rng.randint(0, 9)
        if d in digits:
            continue
        if not digits and exclude_first is not None and d == exclude_first:
            continue
        digits.append(d)
    return (digits[0], digits[1], digits[2])


def begin_ambient_check(state: HearingTestState) -> HearingTestState:
    if state.phase is not Phase.INSTRUCTIONS:
        return state
    return replace(state, phase=Phase.AMBIENT_CHECK)


def start_running(state: HearingTestState, *, rng: SeededRng) -> HearingTestState:
    """Leave the ambient check and deal the first trial."""

    if state.phase is not Phase.AMBIENT_CHECK:
        return state
    return add_next_trial(replace(state, phase=Phase.RUNNING), rng=rng)


def add_next_trial(state: HearingTestState, *, rng: SeededRng) -> HearingTestState:
    if state.phase is not Phase.RUNNING:
        return state
    if len(state.trials) >= TOTAL_TRIALS:
        return state
    previous = state.current_trial
    if previous is not None and not previous.answered:
        return state

    exclude = None if previous is None else previous.digits[0]
    trial = Trial(digits=generate_triplet(rng, exclude_first=exclude), snr_db=state.current_snr_db)
    return replace(state, trials=state.trials + (trial,))


def score_trial(state: HearingTestState, response: Sequence[int]) -> HearingTestState:
    """Score the unanswered trial and step the staircase.

    Duplicate or out-of-phase submissions return ``state`` unchanged.
    """

    if not state.awaiting_response:
        return state
    answer = _coerce_response(response)
    if answer is None:
        return state

    current = state.trials[-1]
    is_correct = answer == current.digits

    direction = -1 if is_correct else 1
    is_reversal = state.last_direction is not None and direction != state.last_direction
    reversal_count = state.reversal_count + (1 if is_reversal else 0)
    step_db = FINAL_STEP_DB if reversal_count >= 1 else state.step_db

    trials = state.trials[:-1] + (replace(current, response=answer, correct=is_correct),)
    next_snr_db = state.current_snr_db + direction * step_db

    updated = replace(
        state,
        trials=trials,
        current_snr_db=next_snr_db,
        step_db=step_db,
        reversal_count=reversal_count,
        last_direction=direction,
    )

    if len(trials) >= TOTAL_TRIALS:
        srt_db = compute_srt(trials)
        return replace(updated, phase=Phase.COMPLETE, srt_db=srt_db, result=classify(srt_db))
    return updated


def compute_srt(trials: Sequence[Trial]) -> float:
    scored = trials[WARMUP_TRIALS:]
    if not scored:
        # Only reachable if TOTAL_TRIALS is lowered to <= WARMUP_TRIALS.
        logger.warning(
            "SRT requested with no trials past the %d warm-up trials; reporting 0.0 dB",
            WARMUP_TRIALS,
        )
        return 0.0
    return sum(t.snr_db for t in scored) / len(scored)


def classify(srt_db: float) -> HearingResult:
    if srt_db <= NORMAL_MAX_SRT_DB:
        return HearingResult.NORMAL
    if srt_db <= BORDERLINE_MAX_SRT_DB:
        return HearingResult.BORDERLINE
    return HearingResult.REFER


def _coerce_response(response: Sequence[int]) -> Triplet | None:
    try:
        values = tuple(int(d) for d in response)
    except (TypeError, ValueError):
        return None
    if len(values) != 3 or any(d < 0 or d > 9 for d in values):
        return None
    return (values[0], values[1], values[2])
