# common/cues.py
from __future__ import annotations
import numpy as np

from common.logging import get_logger

log = get_logger("cues")

SAMPLE_RATE = 44100
VOLUME = 0.15

TICK_FREQ = 880      # Hz, first countdown tick
TICK_STEP = 60       # Hz added per tick as the count falls
TICK_MS = 120
FINAL_FREQ = 1200    # the "smile" tone, higher and longer
FINAL_MS = 200

def square_tone(freq: float, ms: int, volume: float = VOLUME, fs: int = SAMPLE_RATE) -> np.ndarray:
    """Square wave with an exponential fade to ~silence, float32 mono."""
    n = max(1, int(fs * ms / 1000))
    t = np.arange(n, dtype=np.float32) / fs
    wave = np.sign(np.sin(2 * np.pi * freq * t)).astype(np.float32)
    # 0.15 -> 0.0001 over the tone length
    env = volume * np.power(0.0001 / volume, t / (ms / 1000.0)).astype(np.float32)
    return (wave * env).astype(np.float32)

def tick_frequency(remaining: int, total: int) -> int:
    return TICK_FREQ + TICK_STEP * max(0, total - remaining)


class ToneCue:
    """
    Countdown beeper played through the default output device.
    Audio trouble (no device, no PortAudio) never interrupts a session.
    """

    def __init__(self, volume: float = VOLUME, samplerate: int = SAMPLE_RATE, enabled: bool = True):
        self.volume = volume
        self.samplerate = samplerate
        self.enabled = enabled

    def beep(self, freq: float, ms: int):
        if not self.enabled:
            return
        tone = square_tone(freq, ms, self.volume, self.samplerate)
        try:
            import sounddevice as sd  # loads PortAudio; kept off the import path of headless runs
            sd.play(tone, self.samplerate)
        except Exception as e:
            log.debug(f"[beep] skipped {freq}Hz: {e}")

    def tick(self, remaining: int, total: int):
        self.beep(tick_frequency(remaining, total), TICK_MS)

    def final(self):
        self.beep(FINAL_FREQ, FINAL_MS)
