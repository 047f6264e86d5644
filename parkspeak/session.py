from __future__ import annotations

import logging
from typing import Sequence

from .audio import AudioPresenter
from .hearing_core import (
    HearingTestState,
    Phase,
    SeededRng,
    add_next_trial,
    begin_ambient_check,
    create_initial_state,
    score_trial,
    start_running,
)
from .persistence import PersistenceStore
from .results import HearingTestRecord, hearing_record_from_state

logger = logging.getLogger(__name__)

AMBIENT_NOISE_LIMIT_DB = 50.0


class HearingTestSession:
    """Drives one screening attempt against its collaborators.

    Calls must be serialized by the caller. Cancelling is just ``close()``
    plus dropping the session.
    """

    def __init__(
        self,
        *,
        presenter: AudioPresenter,
        store: PersistenceStore | None,
        language: str = "en",
        rate_factor: float = 1.0,
        ambient_limit_db: float = AMBIENT_NOISE_LIMIT_DB,
        seed: int | None = None,
    ) -> None:
        if rate_factor <= 0.0:
            raise ValueError("rate_factor must be > 0")
        if ambient_limit_db <= 0.0:
            raise ValueError("ambient_limit_db must be > 0")

        self._presenter = presenter
        self._store = store
        self._language = str(language)
        self._rate_factor = float(rate_factor)
        self._ambient_limit_db = float(ambient_limit_db)
        self._rng = SeededRng(seed)

        self._state: HearingTestState = create_initial_state()
        self._ambient_db: float | None = None
        self._record: HearingTestRecord | None = None
        self._saved_id: str | None = None

    @property
    def state(self) -> HearingTestState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def ambient_db(self) -> float | None:
        return self._ambient_db

    @property
    def record(self) -> HearingTestRecord | None:
        return self._record

    @property
    def saved_id(self) -> str | None:
        return self._saved_id

    @property
    def too_noisy(self) -> bool:
        return self._ambient_db is not None and self._ambient_db > self._ambient_limit_db

    def begin(self) -> bool:
        """Run the ambient check and start the test when the room is quiet.

        Returns True once the first trial is dealt. Call again to re-measure.
        """

        if self._state.phase not in (Phase.INSTRUCTIONS, Phase.AMBIENT_CHECK):
            return False
        self._state = begin_ambient_check(self._state)
        self._ambient_db = float(self._presenter.measure_ambient_noise())
        if self.too_noisy:
            logger.info(
                "Ambient level %.1f dB exceeds %.1f dB; waiting for a quieter room",
                self._ambient_db,
                self._ambient_limit_db,
            )
            return False
        self._state = start_running(self._state, rng=self._rng)
        return self._state.phase is Phase.RUNNING

    def present_current(self) -> bool:
        if not self._state.awaiting_response:
            return False
        trial = self._state.current_trial
        assert trial is not None
        self._presenter.play_triplet(trial.digits, trial.snr_db, rate_factor=self._rate_factor)
        return True

    def submit(self, response: Sequence[int]) -> bool:
        """Score a response. Returns True if it was accepted."""

        before = self._state
        scored = score_trial(before, response)
        if scored is before:
            return False

        if scored.phase is Phase.COMPLETE:
            self._state = scored
            self._finish()
        else:
            self._state = add_next_trial(scored, rng=self._rng)
        return True

    def retake(self) -> None:
        self._presenter.close()
        self._state = create_initial_state()
        self._ambient_db = None
        self._record = None
        self._saved_id = None

    def close(self) -> None:
        self._presenter.close()

    def _finish(self) -> None:
        self._record = hearing_record_from_state(
            self._state,
            ambient_noise_db=self._ambient_db,
            language=self._language,
        )
        logger.info(
            "Hearing test complete: SRT %.2f dB (%s)",
            self._record.srt_db,
            self._record.result.value,
        )
        if self._store is None:
            return
        try:
            self._saved_id = self._store.save_result(self._record)
        except Exception:
            logger.exception("Failed to save hearing test result")
