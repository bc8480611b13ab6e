"""Lightweight noise suppression for 16-bit PCM (high-pass + gate)."""

import numpy as np

# Levels in int16 units
_MIN_LEVEL = 60.0
_NOISE_CEILING = 500.0  # louder blocks are treated as signal, never as noise


class NoiseReducer:
    """Removes low-frequency rumble and gates samples under a running noise floor.

    Filter state carries over between blocks, so one reducer must be used
    per stream.
    """

    def __init__(self, sample_rate: int, cutoff_hz: float = 120.0, smoothing: float = 0.9) -> None:
        self.sample_rate = sample_rate
        self.cutoff = max(10.0, float(cutoff_hz))
        self.smoothing = max(0.0, min(float(smoothing), 0.999))
        self._prev_input = 0.0
        self._prev_output = 0.0
        self._noise_floor = 0.0

    def apply_pcm(self, pcm: bytes) -> bytes:
        """Filter a block of 16-bit signed PCM bytes."""
        samples = np.frombuffer(pcm, dtype=np.int16).astype(np.float32)
        if samples.size == 0:
            return pcm
        filtered = self._gate(self._high_pass(samples))
        return np.clip(filtered, -32768, 32767).astype(np.int16).tobytes()

    def _high_pass(self, data: np.ndarray) -> np.ndarray:
        rc = 1.0 / (2 * np.pi * self.cutoff)
        dt = 1.0 / self.sample_rate
        alpha = rc / (rc + dt)
        output = np.empty_like(data)
        prev_in = self._prev_input
        prev_out = self._prev_output
        for idx, sample in enumerate(data):
            out = alpha * (prev_out + sample - prev_in)
            output[idx] = out
            prev_out = out
            prev_in = sample
        self._prev_input = float(prev_in)
        self._prev_output = float(prev_out)
        return output

    def _gate(self, data: np.ndarray) -> np.ndarray:
        # Mute 20 ms blocks whose level stays under the smoothed noise floor.
        # Only quiet blocks feed the floor estimate, so sustained speech never raises it.
        window = max(64, int(self.sample_rate * 0.02))
        output = data.copy()
        for begin in range(0, len(data), window):
            block = data[begin : begin + window]
            energy = float(np.mean(block**2))
            rms = np.sqrt(energy)
            threshold = max(_MIN_LEVEL, np.sqrt(self._noise_floor) * 1.5)
            if rms <= threshold:
                output[begin : begin + window] = 0.0
            if rms <= _NOISE_CEILING:
                self._noise_floor = (
                    self.smoothing * self._noise_floor + (1 - self.smoothing) * energy
                )
        return output
