from __future__ import annotations

import json
from dataclasses import dataclass

from .hearing_core import HearingResult, HearingTestState, Phase, Trial


@dataclass(frozen=True, slots=True)
class HearingTestRecord:
    """Persistable outcome of a finished screening.

    Plain structured data; storage engines decide how to write it.
    """

    srt_db: float
    result: HearingResult
    trials: tuple[Trial, ...]
    ambient_noise_db: float | None
    language: str


def hearing_record_from_state(
    state: HearingTestState,
    *,
    ambient_noise_db: float | None,
    language: str,
) -> HearingTestRecord:
    """Build a HearingTestRecord from a completed HearingTestState."""

    if state.phase is not Phase.COMPLETE or state.srt_db is None or state.result is None:
        raise ValueError("hearing test is not complete")
    return HearingTestRecord(
        srt_db=float(state.srt_db),
        result=state.result,
        trials=state.trials,
        ambient_noise_db=None if ambient_noise_db is None else float(ambient_noise_db),
        language=str(language),
    )


def trial_to_dict(trial: Trial) -> dict[str, object]:
    return {
        "digits": list(trial.digits),
        "snrDb": trial.snr_db,
        "response": None if trial.response is None else list(trial.response),
        "correct": trial.correct,
    }


def trials_to_json(trials: tuple[Trial, ...] | list[Trial]) -> str:
    return json.dumps([trial_to_dict(t) for t in trials])


def trials_from_json(text: str) -> tuple[Trial, ...]:
    payload = json.loads(text)
    if not isinstance(payload, list):
        raise ValueError("trials payload must be a list")

    out: list[Trial] = []
    for item in payload:
        if not isinstance(item, dict):
            raise ValueError("trial entry must be an object")
        d0, d1, d2 = (int(v) for v in item["digits"])
        raw_response = item.get("response")
        response = None
        if raw_response is not None:
            r0, r1, r2 = (int(v) for v in raw_response)
            response = (r0, r1, r2)
        raw_correct = item.get("correct")
        out.append(
            Trial(
                digits=(d0, d1, d2),
                snr_db=float(item["snrDb"]),
                response=response,
                correct=None if raw_correct is None else bool(raw_correct),
            )
        )
    return tuple(out)
