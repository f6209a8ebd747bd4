"""Audio processing utilities for NR Recorder.

This module provides the level meter used for live UI feedback and the
driver detection used when listing input devices.
"""

import math

import numpy as np

from .models import AudioBlock

# Level window: NOISE_FLOOR_DB maps to 0.0, full scale (0 dBFS) maps to 1.0
NOISE_FLOOR_DB = -60.0


def compute_level(block: AudioBlock) -> float:
    """Calculate the normalized loudness of an audio block.

    The RMS of channel 0 is converted to dBFS and mapped linearly from the
    ``NOISE_FLOOR_DB``..0 dB window onto 0.0..1.0.

    Args:
        block: Audio block to measure

    Returns:
        Level in the 0.0-1.0 range (0.0 for silence or an empty block)
    """
    samples = block.channel(0)
    if samples.size == 0:
        return 0.0

    # Calculate RMS (Root Mean Square) in float64 so int-range values don't overflow
    rms = float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))

    # Silence has no logarithm
    if not rms > 0.0:
        return 0.0

    db = 20 * math.log10(rms)
    return max(0.0, min(1.0, (db - NOISE_FLOOR_DB) / -NOISE_FLOOR_DB))


def level_to_db(level: float) -> float:
    """Map a level reading back onto the dBFS window for display.

    Args:
        level: Level in the 0.0-1.0 range

    Returns:
        dBFS value between ``NOISE_FLOOR_DB`` and 0
    """
    level = max(0.0, min(1.0, level))
    return NOISE_FLOOR_DB + level * -NOISE_FLOOR_DB


def detect_driver_type(device_name: str) -> str:
    """Detect the audio driver type from device name.

    Args:
        device_name: The name of the audio device

    Returns:
        Driver type: 'pulse', 'alsa', 'jack', 'default', etc.
    """
    name_lower = device_name.lower()

    if 'pulse' in name_lower or 'pipewire' in name_lower:
        return 'pulse'
    elif 'alsa' in name_lower or 'hw:' in name_lower or 'plughw' in name_lower:
        return 'alsa'
    elif 'jack' in name_lower:
        return 'jack'
    elif 'usb' in name_lower:
        return 'usb'
    else:
        return 'default'
