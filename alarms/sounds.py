from __future__ import annotations

import logging
import wave
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Callable, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_RATE = 24000
MIN_POWER_UP_GAIN = 0.1


def synthesize_tone(
    rate: int = DEFAULT_RATE,
    duration_seconds: float = 1.5,
    freq: float = 880.0,
    amplitude: float = 0.4,
    pause_seconds: float = 0.5,
) -> np.ndarray:
    """Beep followed by silence, as float32 samples in [-1, 1]."""
    t = np.arange(int(duration_seconds * rate)) / rate
    beep = amplitude * np.sin(2 * np.pi * freq * t)
    silence = np.zeros(int(pause_seconds * rate))
    return np.concatenate([beep, silence]).astype(np.float32)


def ensure_alarm_sound(path: Path, rate: int = DEFAULT_RATE) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(rate)
        wav.writeframes(to_pcm16(synthesize_tone(rate)))
    logger.info("Generated default alarm sound at %s", path)


def load_track(path: Path) -> Tuple[np.ndarray, int]:
    """Read a 16-bit PCM WAV file as mono float32 samples."""
    with wave.open(str(path), "rb") as wav:
        if wav.getsampwidth() != 2:
            raise ValueError(f"{path} must be 16-bit PCM")
        channels = wav.getnchannels()
        rate = wav.getframerate()
        frames = wav.readframes(wav.getnframes())
    samples = np.frombuffer(frames, dtype=np.int16).astype(np.float32) / 32768.0
    if channels > 1:
        samples = samples.reshape(-1, channels).mean(axis=1)
    return samples.astype(np.float32), rate


def apply_volume(samples: np.ndarray, volume: int, ramp_samples: int = 0, offset: int = 0) -> np.ndarray:
    """Scale by ``volume`` (0-100), ramping up over the first ``ramp_samples`` played."""
    gain = np.full(len(samples), min(max(volume, 0), 100) / 100.0, dtype=np.float32)
    if ramp_samples > 0:
        position = np.arange(offset, offset + len(samples), dtype=np.float32)
        gain *= np.clip(position / ramp_samples, MIN_POWER_UP_GAIN, 1.0)
    return samples * gain


def to_pcm16(samples: np.ndarray) -> bytes:
    return (np.clip(samples, -1.0, 1.0) * 32767).astype(np.int16).tobytes()


class AlarmSoundPlayer:
    """Plays one alarm track at a time; ``start`` replaces whatever is playing.

    ``output_factory(rate)`` must return an object with ``play_bytes`` and
    ``close`` (``audio_io.AudioPlayer`` in production).
    """

    def __init__(
        self,
        sounds_dir: Path,
        output_factory: Callable[[int], object],
        default_sound: str = "default",
        power_up_seconds: float = 0.0,
        chunk_ms: int = 100,
    ):
        self.sounds_dir = Path(sounds_dir)
        self.output_factory = output_factory
        self.default_sound = default_sound
        self.power_up_seconds = max(0.0, power_up_seconds)
        self.chunk_ms = max(10, chunk_ms)
        self._stop_event = Event()
        self._lock = Lock()
        self._thread: Optional[Thread] = None

    @property
    def is_playing(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def resolve_track(self, track_ref: Optional[str]) -> Path:
        if track_ref:
            candidate = Path(track_ref)
            if candidate.suffix and candidate.exists():
                return candidate
            named = self.sounds_dir / f"{track_ref}.wav"
            if named.exists():
                return named
            logger.warning("Alarm sound %r not found, using default", track_ref)
        default_path = self.sounds_dir / f"{self.default_sound}.wav"
        ensure_alarm_sound(default_path)
        return default_path

    def start(self, track_ref: str, volume: int, loop: bool = True) -> None:
        self.stop()
        samples, rate = load_track(self.resolve_track(track_ref))
        output = self.output_factory(rate)
        with self._lock:
            self._stop_event.clear()
            self._thread = Thread(
                target=self._play_loop,
                args=(output, samples, rate, volume, loop),
                name="alarm-sound",
                daemon=True,
            )
            self._thread.start()
        logger.info("Alarm sound started (track=%s, volume=%s, loop=%s)", track_ref, volume, loop)

    def stop(self) -> None:
        with self._lock:
            self._stop_event.set()
            thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=2)

    def _play_loop(self, output, samples: np.ndarray, rate: int, volume: int, loop: bool) -> None:
        chunk = max(1, int(rate * self.chunk_ms / 1000))
        ramp = int(self.power_up_seconds * rate)
        pos = 0
        played = 0
        try:
            while not self._stop_event.is_set():
                piece = samples[pos : pos + chunk]
                if len(piece) == 0:
                    if not loop or len(samples) == 0:
                        break
                    pos = 0
                    continue
                output.play_bytes(to_pcm16(apply_volume(piece, volume, ramp, played)))
                pos += len(piece)
                played += len(piece)
        except Exception:  # pragma: no cover - device errors
            logger.error("Alarm sound playback failed", exc_info=True)
        finally:
            output.close()
