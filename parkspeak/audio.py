"""Audio collaborators for the hearing screening.

This stays outside deterministic core logic. The presenter plays spoken
digits over generated masking noise and the ambient meter samples the room
before the test starts.
"""

from __future__ import annotations

import importlib.util
import logging
import math
import os
import random
import shutil
import subprocess
import sys
import time
from array import array
from dataclasses import dataclass
from typing import Protocol, Sequence

import numpy as np
import pygame

from .languages import LANGUAGES, resolve_language

logger = logging.getLogger(__name__)

# dBFS to approximate dB SPL for phone/laptop microphones.
DBFS_TO_SPL_OFFSET = 94.0


class AudioPresenter(Protocol):
    def play_triplet(self, digits: Sequence[int], snr_db: float, *, rate_factor: float = 1.0) -> None:
        """Play three digits in noise; return once playback has fully finished."""
        ...

    def measure_ambient_noise(self) -> float:
        """Return an approximate ambient level in dB SPL (>= 0)."""
        ...

    def close(self) -> None:
        ...


@dataclass(frozen=True, slots=True)
class AudioConfig:
    sample_rate: int = 22050
    speech_volume: float = 0.8
    digit_gap_s: float = 0.4
    noise_lead_in_s: float = 0.25
    noise_loop_s: float = 1.5
    speech_rate_wpm: float = 140.0

    ambient_record_s: float = 3.0
    ambient_sample_rate: int = 16000
    ambient_block_s: float = 0.2


def snr_to_noise_volume(snr_db: float, speech_volume: float = 0.8) -> float:
    """Noise volume (0..1) for a fixed speech volume; 0 dB SNR means equal levels."""

    ratio = math.pow(10.0, -float(snr_db) / 20.0)
    return min(1.0, speech_volume * ratio)


def ambient_level_db(samples: np.ndarray, *, sample_rate: int, block_s: float = 0.2) -> float:
    """Average per-block dBFS of ``samples`` (float, -1..1) mapped to dB SPL."""

    data = np.asarray(samples, dtype=np.float64).reshape(-1)
    if data.size == 0:
        return 0.0
    block = max(1, int(sample_rate * block_s))
    n_blocks = max(1, data.size // block)
    levels: list[float] = []
    for idx in range(n_blocks):
        chunk = data[idx * block : (idx + 1) * block]
        if chunk.size == 0:
            continue
        rms = float(np.sqrt(np.mean(np.square(chunk))))
        levels.append(20.0 * math.log10(max(rms, 1e-10)))
    if not levels:
        return 0.0
    return max(0.0, (sum(levels) / len(levels)) + DBFS_TO_SPL_OFFSET)


class SounddeviceAmbientMeter:
    """Short microphone recording reduced to a single ambient level."""

    def __init__(self, config: AudioConfig | None = None, *, device_id: int | None = None) -> None:
        self._config = config or AudioConfig()
        self._device_id = device_id

    def measure(self) -> float:
        cfg = self._config
        try:
            import sounddevice as sd

            frames = int(cfg.ambient_sample_rate * cfg.ambient_record_s)
            recording = sd.rec(
                frames,
                samplerate=cfg.ambient_sample_rate,
                channels=1,
                dtype="float32",
                device=self._device_id,
            )
            sd.wait()
        except Exception:
            logger.exception("Ambient noise measurement failed; reporting 0 dB")
            return 0.0
        level = ambient_level_db(recording, sample_rate=cfg.ambient_sample_rate, block_s=cfg.ambient_block_s)
        logger.info("Ambient noise level %.1f dB", level)
        return level


class OfflineTtsSpeaker:
    """Blocking offline TTS via isolated subprocesses."""

    _max_utterance_s = 6.0

    def __init__(self) -> None:
        self._enabled = False
        self._backends: list[str] = []
        self._backend: str | None = None
        self._active_proc: subprocess.Popen[bytes] | None = None

        if os.environ.get("PARKSPEAK_DISABLE_TTS", "0") == "1":
            return
        if os.environ.get("SDL_AUDIODRIVER", "").strip().lower() == "dummy":
            # Keep automated/headless runs silent and stable.
            return

        self._backends = self._resolve_backends()
        self._backend = self._backends[0] if self._backends else None
        self._enabled = self._backend is not None
        if not self._enabled:
            logger.warning("No offline TTS backend found; digits will not be spoken")

    @property
    def enabled(self) -> bool:
        return bool(self._enabled)

    def speak(self, text: str, *, voice: str, rate_wpm: float) -> None:
        phrase = " ".join(str(text).strip().split())
        if phrase == "":
            return
        while self._enabled:
            proc = self._launch_process(phrase, voice=voice, rate_wpm=rate_wpm)
            if proc is None:
                self._drop_current_backend()
                continue
            self._active_proc = proc
            try:
                proc.wait(timeout=self._max_utterance_s)
            except subprocess.TimeoutExpired:
                logger.warning("TTS backend %s timed out", self._backend)
                self._terminate_process(proc)
            finally:
                self._active_proc = None
            return

    def stop(self) -> None:
        proc = self._active_proc
        self._active_proc = None
        if proc is not None:
            self._terminate_process(proc)

    @staticmethod
    def _terminate_process(proc: subprocess.Popen[bytes]) -> None:
        try:
            proc.terminate()
        except OSError:
            return
        try:
            proc.wait(timeout=0.5)
        except subprocess.TimeoutExpired:
            try:
                proc.kill()
            except OSError:
                pass

    @staticmethod
    def _resolve_backends() -> list[str]:
        supported = ("pyttsx3-subprocess", "say", "powershell", "espeak")
        forced = os.environ.get("PARKSPEAK_TTS_BACKEND", "").strip().lower()
        if forced in supported and OfflineTtsSpeaker._backend_available(forced):
            return [forced]

        candidates: list[str] = []
        if sys.platform == "darwin":
            candidates.append("say")
        if os.name == "nt":
            candidates.append("powershell")
        candidates.extend(("espeak", "pyttsx3-subprocess"))

        seen: set[str] = set()
        resolved: list[str] = []
        for name in candidates:
            if name in seen:
                continue
            seen.add(name)
            if OfflineTtsSpeaker._backend_available(name):
                resolved.append(name)
        return resolved

    @staticmethod
    def _backend_available(name: str) -> bool:
        if name == "say":
            return shutil.which("say") is not None
        if name == "powershell":
            return (shutil.which("powershell") is not None) or (shutil.which("pwsh") is not None)
        if name == "pyttsx3-subprocess":
            return importlib.util.find_spec("pyttsx3") is not None
        if name == "espeak":
            return shutil.which("espeak") is not None
        return False

    def _drop_current_backend(self) -> None:
        backend = self._backend
        self._backends = [name for name in self._backends if name != backend]
        self._backend = self._backends[0] if self._backends else None
        self._enabled = self._backend is not None

    def _launch_process(self, text: str, *, voice: str, rate_wpm: float) -> subprocess.Popen[bytes] | None:
        backend = self._backend
        if backend is None:
            return None
        rate = str(int(round(rate_wpm)))

        try:
            if backend == "pyttsx3-subprocess":
                script = (
                    "import sys\n"
                    "txt=sys.argv[2]\n"
                    "import pyttsx3\n"
                    "e=pyttsx3.init()\n"
                    "e.setProperty('rate', int(sys.argv[1]))\n"
                    "e.setProperty('volume', 0.95)\n"
                    "e.say(txt)\n"
                    "e.runAndWait()\n"
                )
                return subprocess.Popen(
                    [sys.executable, "-c", script, rate, text],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )

            if backend == "say":
                return subprocess.Popen(
                    [shutil.which("say") or "say", "-r", rate, text],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )

            if backend == "powershell":
                ps_bin = shutil.which("powershell") or shutil.which("pwsh")
                if ps_bin is None:
                    return None
                # SAPI rate is -10..10 around ~180 wpm.
                sapi_rate = max(-10, min(10, int(round((rate_wpm - 180.0) / 10.0))))
                script = (
                    "Add-Type -AssemblyName System.Speech; "
                    "$s=New-Object System.Speech.Synthesis.SpeechSynthesizer; "
                    f"$s.Rate={sapi_rate}; "
                    "$txt=($args -join ' '); "
                    "$s.Speak($txt);"
                )
                return subprocess.Popen(
                    [ps_bin, "-NoProfile", "-NonInteractive", "-Command", script, text],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )

            if backend == "espeak":
                return subprocess.Popen(
                    ["espeak", "-v", voice, "-s", rate, text],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
        except OSError:
            return None
        return None


class PygameAudioPresenter:
    """Pygame mixer noise bed plus offline TTS digits.

    Falls back to silent playback when the mixer cannot be opened.
    """

    _amp = 32767

    def __init__(
        self,
        *,
        language: str = "en",
        config: AudioConfig | None = None,
        ambient_meter: SounddeviceAmbientMeter | None = None,
        tts: OfflineTtsSpeaker | None = None,
    ) -> None:
        self._config = config or AudioConfig()
        self._language = resolve_language(language)
        self._ambient_meter = ambient_meter or SounddeviceAmbientMeter(self._config)
        self._tts = tts or OfflineTtsSpeaker()

        self._available = False
        self._noise_sound: pygame.mixer.Sound | None = None
        self._noise_channel: pygame.mixer.Channel | None = None

        try:
            if pygame.mixer.get_init() is None:
                pygame.mixer.init(frequency=self._config.sample_rate, size=-16, channels=1, buffer=512)
            self._noise_sound = self._build_noise_sound(
                duration_s=self._config.noise_loop_s,
                seed=0x5EED,
            )
            self._noise_channel = pygame.mixer.Channel(0)
            self._available = True
        except (pygame.error, NotImplementedError):
            logger.warning("pygame mixer unavailable; hearing test noise disabled")
            self._available = False

    @property
    def available(self) -> bool:
        return self._available

    def play_triplet(self, digits: Sequence[int], snr_db: float, *, rate_factor: float = 1.0) -> None:
        cfg = self._config
        voice = LANGUAGES[self._language].tts_voice
        rate_wpm = cfg.speech_rate_wpm * max(0.25, float(rate_factor))

        self._start_noise(snr_db)
        try:
            if self._available:
                time.sleep(cfg.noise_lead_in_s)
            spoken = list(digits)[:3]
            for idx, digit in enumerate(spoken):
                self._tts.speak(str(int(digit)), voice=voice, rate_wpm=rate_wpm)
                if idx < len(spoken) - 1:
                    time.sleep(cfg.digit_gap_s)
        finally:
            self._stop_noise()

    def measure_ambient_noise(self) -> float:
        return self._ambient_meter.measure()

    def close(self) -> None:
        self._stop_noise()
        self._tts.stop()

    def _start_noise(self, snr_db: float) -> None:
        if not self._available:
            return
        assert self._noise_channel is not None
        assert self._noise_sound is not None
        volume = snr_to_noise_volume(snr_db, self._config.speech_volume)
        self._noise_channel.set_volume(volume)
        self._noise_channel.play(self._noise_sound, loops=-1)
        logger.debug("Noise started at volume %.3f (SNR %+.1f dB)", volume, snr_db)

    def _stop_noise(self) -> None:
        if self._noise_channel is not None:
            self._noise_channel.stop()

    def _build_noise_sound(self, *, duration_s: float, seed: int) -> pygame.mixer.Sound:
        # Low-passed white noise approximates a speech-shaped masker.
        rng = random.Random(int(seed))
        sample_count = max(1, int(self._config.sample_rate * duration_s))
        out = array("h")
        smooth = 0.0
        for _ in range(sample_count):
            raw = rng.uniform(-1.0, 1.0)
            smooth = (smooth * 0.86) + (raw * 0.14)
            sample = int(max(-1.0, min(1.0, smooth * 2.5)) * self._amp)
            out.append(sample)
        return pygame.mixer.Sound(buffer=out.tobytes())
