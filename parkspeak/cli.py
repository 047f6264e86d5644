"""Console driver for the digits-in-noise hearing screening."""

from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path
from typing import Callable, Sequence

from .audio import PygameAudioPresenter
from .hearing_core import TOTAL_TRIALS, HearingResult, Phase
from .persistence import SqliteHearingStore
from .session import HearingTestSession
from .settings import SettingsStore

logger = logging.getLogger(__name__)

RESULT_TEXT = {
    HearingResult.NORMAL: "Your hearing in noise appears to be within the normal range.",
    HearingResult.BORDERLINE: "Your result is borderline. Consider repeating the test or seeing a specialist.",
    HearingResult.REFER: "We recommend a full hearing assessment with an audiologist.",
}

INSTRUCTIONS = "\n".join(
    [
        "Hearing Screening",
        "",
        "You will hear three spoken digits in background noise.",
        "Type the three digits you heard, in order (e.g. 4 7 1).",
        "Use headphones in a quiet room. This is a screening, not a diagnosis.",
    ]
)


def parse_response(raw: str) -> tuple[int, int, int] | None:
    digits = [int(ch) for ch in raw if ch.isdigit()]
    if len(digits) != 3:
        return None
    return (digits[0], digits[1], digits[2])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="parkspeak", description="Digits-in-noise hearing screening")
    parser.add_argument("--language", default=None, help="spoken digit language (en, he, ru)")
    parser.add_argument("--db", type=Path, default=None, help="sqlite file for results")
    parser.add_argument("--seed", type=int, default=None, help="seed the triplet generator")
    parser.add_argument("--rate-factor", type=float, default=None, help="spoken digit rate multiplier")
    parser.add_argument("--settings", type=Path, default=None, help="settings JSON file")
    parser.add_argument("--no-save", action="store_true", help="do not store the result")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def run_session(
    session: HearingTestSession,
    *,
    read_line: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
) -> HearingTestSession:
    write(INSTRUCTIONS)
    read_line("Press Enter to check background noise... ")

    while not session.begin():
        if session.phase is not Phase.AMBIENT_CHECK:
            return session
        write(f"Too noisy ({session.ambient_db:.0f} dB). Move somewhere quieter.")
        if read_line("Press Enter to retry, or q to quit: ").strip().lower() == "q":
            return session

    write(f"Background noise OK ({session.ambient_db or 0.0:.0f} dB).")

    while session.phase is Phase.RUNNING:
        write(f"Trial {session.state.trial_number} of {TOTAL_TRIALS}")
        session.present_current()
        response = parse_response(read_line("Digits: "))
        while response is None:
            write("Please enter exactly three digits.")
            response = parse_response(read_line("Digits: "))
        session.submit(response)

    record = session.record
    if record is not None:
        write("")
        write(f"SRT: {record.srt_db:+.1f} dB ({record.result.value})")
        write(RESULT_TEXT[record.result])
    return session


def run(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings_store = SettingsStore(args.settings or SettingsStore.default_path())
    settings = settings_store.settings
    language = args.language or settings.language
    rate_factor = args.rate_factor if args.rate_factor is not None else settings.hearing_adjustment

    store = None if args.no_save else SqliteHearingStore(args.db or settings.resolved_db_path())
    presenter = PygameAudioPresenter(language=language)
    session = HearingTestSession(
        presenter=presenter,
        store=store,
        language=language,
        rate_factor=rate_factor,
        seed=args.seed,
    )

    try:
        run_session(session)
    except (KeyboardInterrupt, EOFError):
        logger.info("Hearing test cancelled")
        return 1
    finally:
        session.close()

    record = session.record
    if record is None:
        return 1
    settings_store.record_hearing_result(
        result=record.result.value,
        tested_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
    )
    return 0
