"""Tests for the audio collaborators.

SDL's dummy drivers are selected before pygame is imported so the mixer never
opens a real device; TTS and the microphone are replaced with fakes.
"""

from __future__ import annotations

import os

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

import math
import sys
import types
from dataclasses import dataclass, field

import numpy as np
import pytest

from parkspeak.audio import (
    AudioConfig,
    OfflineTtsSpeaker,
    PygameAudioPresenter,
    SounddeviceAmbientMeter,
    ambient_level_db,
    snr_to_noise_volume,
)


@dataclass
class FakeTts:
    spoken: list[tuple[str, str, float]] = field(default_factory=list)
    stopped: int = 0

    def speak(self, text: str, *, voice: str, rate_wpm: float) -> None:
        self.spoken.append((text, voice, rate_wpm))

    def stop(self) -> None:
        self.stopped += 1


class FixedMeter:
    def measure(self) -> float:
        return 37.5


def test_noise_volume_tracks_snr() -> None:
    assert snr_to_noise_volume(0.0) == pytest.approx(0.8)
    assert snr_to_noise_volume(20.0) == pytest.approx(0.08)
    assert snr_to_noise_volume(6.0) == pytest.approx(0.8 * 10 ** (-6.0 / 20.0))
    # Louder noise than speech saturates at full volume.
    assert snr_to_noise_volume(-10.0) == 1.0
    assert snr_to_noise_volume(4.0, speech_volume=0.5) == pytest.approx(0.5 * 10 ** (-0.2))


def test_ambient_level_from_samples() -> None:
    rate = 16000
    t = np.arange(rate) / rate
    full_scale = np.sin(2.0 * math.pi * 440.0 * t)
    quiet = 0.01 * full_scale

    assert ambient_level_db(full_scale, sample_rate=rate) == pytest.approx(94.0 - 3.0103, abs=0.05)
    assert ambient_level_db(quiet, sample_rate=rate) == pytest.approx(94.0 - 43.0103, abs=0.05)
    assert ambient_level_db(np.zeros(rate), sample_rate=rate) == 0.0
    assert ambient_level_db(np.array([]), sample_rate=rate) == 0.0


def test_ambient_meter_records_with_sounddevice(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: dict[str, object] = {}

    def rec(frames, *, samplerate, channels, dtype, device):
        calls.update(frames=frames, samplerate=samplerate, channels=channels, dtype=dtype)
        return np.full((frames, channels), 0.1, dtype=np.float32)

    fake_sd = types.SimpleNamespace(rec=rec, wait=lambda: None)
    monkeypatch.setitem(sys.modules, "sounddevice", fake_sd)

    meter = SounddeviceAmbientMeter(AudioConfig(ambient_record_s=0.5, ambient_sample_rate=8000))
    level = meter.measure()

    assert calls == {"frames": 4000, "samplerate": 8000, "channels": 1, "dtype": "float32"}
    assert level == pytest.approx(94.0 - 20.0, abs=0.01)


def test_ambient_meter_failure_reports_zero(monkeypatch: pytest.MonkeyPatch) -> None:
    def rec(*args, **kwargs):
        raise OSError("no input device")

    monkeypatch.setitem(sys.modules, "sounddevice", types.SimpleNamespace(rec=rec, wait=lambda: None))
    assert SounddeviceAmbientMeter().measure() == 0.0


def test_tts_is_silent_under_dummy_audio_driver() -> None:
    tts = OfflineTtsSpeaker()
    assert tts.enabled is False
    tts.speak("1", voice="en", rate_wpm=140.0)
    tts.stop()


def test_presenter_speaks_each_digit_at_adjusted_rate() -> None:
    tts = FakeTts()
    presenter = PygameAudioPresenter(
        language="ru",
        config=AudioConfig(digit_gap_s=0.0, noise_lead_in_s=0.0, noise_loop_s=0.05),
        ambient_meter=FixedMeter(),
        tts=tts,
    )
    try:
        presenter.play_triplet((7, 0, 3), -6.0, rate_factor=0.5)
        assert [s[0] for s in tts.spoken] == ["7", "0", "3"]
        assert all(voice == "ru" for _, voice, _ in tts.spoken)
        assert all(rate == pytest.approx(70.0) for _, _, rate in tts.spoken)
        assert presenter.measure_ambient_noise() == 37.5
    finally:
        presenter.close()
    assert tts.stopped == 1
