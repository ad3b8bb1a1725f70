import logging
from typing import Optional

import pyaudio

logger = logging.getLogger(__name__)


def create_pyaudio() -> pyaudio.PyAudio:
    pa = pyaudio.PyAudio()
    return pa


def get_output_device_name(pa: pyaudio.PyAudio, device_index: Optional[int] = None) -> str:
    if device_index is None:
        device_index = int(pa.get_default_output_device_info()["index"])
    info = pa.get_device_info_by_index(device_index)
    return str(info.get("name", "unknown"))


class AudioPlayer:
    def __init__(self, pa: pyaudio.PyAudio, rate: int, device_index: Optional[int] = None):
        self.pa = pa
        self.rate = rate
        self.stream = self.pa.open(
            format=pyaudio.paInt16,
            channels=1,
            rate=self.rate,
            output=True,
            output_device_index=device_index,
        )

    def play_bytes(self, audio_bytes: bytes) -> None:
        self.stream.write(audio_bytes)

    def close(self) -> None:
        self.stream.stop_stream()
        self.stream.close()


class OutputFactory:
    """Opens a fresh output stream per alarm episode on a shared PyAudio instance."""

    def __init__(self, device_index: Optional[int] = None):
        self.device_index = device_index
        self._pa: Optional[pyaudio.PyAudio] = None

    def __call__(self, rate: int) -> AudioPlayer:
        if self._pa is None:
            self._pa = create_pyaudio()
            logger.info("Alarm output device: %s", get_output_device_name(self._pa, self.device_index))
        return AudioPlayer(self._pa, rate, device_index=self.device_index)

    def terminate(self) -> None:
        if self._pa is not None:
            self._pa.terminate()
            self._pa = None
