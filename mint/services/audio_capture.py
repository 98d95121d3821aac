from __future__ import annotations

import asyncio
import logging
import math
import threading
from typing import Callable, Optional

import numpy as np
import sounddevice as sd

FrameCallback = Callable[[bytes], None]

# Substrings of input-device names that expose system playback as a recordable source.
LOOPBACK_HINTS = (
    "blackhole",
    "loopback",
    "soundflower",
    "audiotee",
    "stereo mix",
    "what u hear",
    "monitor of",
)


class DeviceError(RuntimeError):
    pass


def list_devices() -> list[dict]:
    devices = sd.query_devices()
    return [
        {
            "index": idx,
            "name": device["name"],
            "max_input_channels": device["max_input_channels"],
            "default_samplerate": device["default_samplerate"],
        }
        for idx, device in enumerate(devices)
        if device["max_input_channels"] > 0
    ]


def find_loopback_device() -> Optional[int]:
    """Index of the first input device that looks like a system-audio loopback."""
    for device in list_devices():
        name = str(device["name"]).lower()
        if any(hint in name for hint in LOOPBACK_HINTS):
            return int(device["index"])
    return None


def resampled_length(input_length: int, native_rate: int, target_rate: int) -> int:
    ratio = native_rate / target_rate
    # Half-up rounding, not Python's banker's rounding.
    return int(math.floor(input_length / ratio + 0.5))


def resample_linear(samples: np.ndarray, native_rate: int, target_rate: int) -> np.ndarray:
    """Linear-interpolation resample of int16 mono samples.

    Output length is ``round(len(samples) / (native_rate / target_rate))``.
    """
    samples = np.asarray(samples)
    if native_rate == target_rate:
        return samples.astype(np.int16, copy=False)
    out_length = resampled_length(samples.size, native_rate, target_rate)
    if out_length == 0 or samples.size == 0:
        return np.zeros(0, dtype=np.int16)
    ratio = native_rate / target_rate
    positions = np.arange(out_length, dtype=np.float64) * ratio
    resampled = np.interp(positions, np.arange(samples.size), samples.astype(np.float64))
    return np.clip(np.round(resampled), -32768, 32767).astype(np.int16)


class AudioCaptureService:
    """Captures one input device and emits fixed-size 16-bit mono PCM frames.

    The PortAudio callback thread only converts audio; frames are handed to
    ``on_frame`` on the asyncio loop thread. ``stop()`` waits for the stream to
    stop, and any frame scheduled before that is discarded by generation check.
    """

    def __init__(
        self,
        name: str,
        on_frame: FrameCallback,
        device: Optional[int] = None,
        target_rate: int = 16000,
        frame_ms: int = 100,
    ) -> None:
        self.name = name
        self._on_frame = on_frame
        self._device = device
        self._target_rate = target_rate
        self._frame_bytes = int(target_rate * frame_ms / 1000) * 2
        self._lock = threading.Lock()
        self._pending = bytearray()
        self._stream: Optional[sd.RawInputStream] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._active = False
        self._generation = 0
        self._native_rate = target_rate
        self._channels = 1
        self._callback_counter = 0
        self._logger = logging.getLogger(f"mint.audio.{name}")

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def frame_bytes(self) -> int:
        return self._frame_bytes

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> dict:
        if self._active:
            raise DeviceError(f"{self.name} capture already running")
        self._loop = loop or asyncio.get_running_loop()

        try:
            device_info = sd.query_devices(self._device, "input")
        except (ValueError, sd.PortAudioError) as exc:
            self._logger.warning("Input device unavailable: device=%s error=%s", self._device, exc)
            raise DeviceError(f"Input device unavailable: {self._device}") from exc

        max_channels = int(device_info.get("max_input_channels", 0))
        if max_channels < 1:
            raise DeviceError(f"Device has no input channels: {device_info.get('name')}")
        self._native_rate = int(device_info.get("default_samplerate") or self._target_rate)
        self._channels = min(max_channels, 2)
        self._callback_counter = 0
        with self._lock:
            self._pending.clear()
        self._generation += 1
        self._active = True

        try:
            self._stream = sd.RawInputStream(
                device=self._device,
                samplerate=self._native_rate,
                channels=self._channels,
                dtype="int16",
                blocksize=int(self._native_rate * 0.05),
                callback=self._audio_callback,
            )
            self._stream.start()
        except (ValueError, sd.PortAudioError) as exc:
            self._active = False
            self._stream = None
            self._logger.warning("Failed to open input stream: %s", exc)
            raise DeviceError(f"Failed to open input stream: {exc}") from exc

        self._logger.info(
            "Capture start: device=%s name=%s native_rate=%s channels=%s target_rate=%s",
            self._device,
            device_info.get("name"),
            self._native_rate,
            self._channels,
            self._target_rate,
        )
        return {
            "device": self._device,
            "name": device_info.get("name"),
            "native_rate": self._native_rate,
            "target_rate": self._target_rate,
        }

    def stop(self) -> None:
        if not self._active and self._stream is None:
            return
        self._active = False
        self._generation += 1
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError as exc:
                self._logger.warning("Error closing input stream: %s", exc)
        with self._lock:
            self._pending.clear()
        self._logger.info("Capture stop: callbacks=%d", self._callback_counter)

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        if status:
            self._logger.warning("Audio callback status: %s", status)
        if not self._active:
            return
        self._callback_counter += 1
        samples = np.frombuffer(bytes(indata), dtype=np.int16)
        if self._channels > 1:
            samples = samples.reshape(-1, self._channels).mean(axis=1)
        if self._callback_counter == 1:
            rms = float(np.sqrt(np.mean(samples.astype(np.float32) ** 2))) if samples.size else 0.0
            self._logger.info("First audio callback: frames=%s rms=%.1f", frames, rms)
        converted = resample_linear(samples, self._native_rate, self._target_rate)
        self._push_samples(converted.tobytes())

    def _push_samples(self, payload: bytes) -> None:
        generation = self._generation
        ready: list[bytes] = []
        with self._lock:
            self._pending.extend(payload)
            while len(self._pending) >= self._frame_bytes:
                ready.append(bytes(self._pending[: self._frame_bytes]))
                del self._pending[: self._frame_bytes]
        loop = self._loop
        if loop is None:
            return
        for frame in ready:
            try:
                loop.call_soon_threadsafe(self._deliver, generation, frame)
            except RuntimeError:
                # Loop already closed during shutdown.
                return

    def _deliver(self, generation: int, frame: bytes) -> None:
        if not self._active or generation != self._generation:
            return
        try:
            self._on_frame(frame)
        except Exception as exc:
            self._logger.exception("Frame handler failed: %s", exc)
