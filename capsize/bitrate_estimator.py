"""
Bitrate Estimation Module
Closed-form video bitrate for a byte ceiling, plus heuristics mapping a bitrate
or size ratio back onto a quality index for quality-driven encoders.
"""

import logging
import math
from dataclasses import dataclass
from typing import Tuple

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN = 0.92
DEFAULT_FLOOR_BPS = 100_000


@dataclass(frozen=True)
class BitrateEstimate:
    video_bitrate: int  # bits per second
    floor_hit: bool

    @property
    def kbps(self) -> int:
        return self.video_bitrate // 1000


class BitrateEstimator:
    def __init__(self, safety_margin: float = DEFAULT_SAFETY_MARGIN,
                 floor_bps: int = DEFAULT_FLOOR_BPS):
        self.safety_margin = safety_margin
        self.floor_bps = floor_bps

    @classmethod
    def from_config(cls, config) -> 'BitrateEstimator':
        return cls(
            safety_margin=float(config.get('compression.bitrate.safety_margin', DEFAULT_SAFETY_MARGIN)),
            floor_bps=int(config.get('compression.bitrate.floor_bps', DEFAULT_FLOOR_BPS)),
        )

    def estimate(self, target_size_bytes: int, duration_seconds: float,
                 audio_bitrate_bits: int = 0, safety_margin: float = None) -> BitrateEstimate:
        """
        Video bitrate that fits target_size_bytes over duration_seconds.

        The margin absorbs container/muxing overhead. When the result falls
        under the floor it is clamped and floor_hit is set: the ceiling will
        likely not be met exactly and callers should not retry expecting it.
        """
        if duration_seconds <= 0:
            raise ValueError(f"Duration must be positive, got {duration_seconds}")
        margin = self.safety_margin if safety_margin is None else safety_margin

        video_budget = target_size_bytes * 8 * margin - audio_bitrate_bits * duration_seconds
        bitrate = math.floor(video_budget / duration_seconds)

        if bitrate < self.floor_bps:
            logger.warning(f"Estimated bitrate {bitrate // 1000}kbps below floor "
                           f"{self.floor_bps // 1000}kbps; ceiling may not be met")
            return BitrateEstimate(self.floor_bps, True)

        logger.debug(f"Estimated video bitrate {bitrate // 1000}kbps for {target_size_bytes} bytes "
                     f"over {duration_seconds:.2f}s")
        return BitrateEstimate(bitrate, False)

    @staticmethod
    def quality_hint(estimate: BitrateEstimate, source_bitrate: int,
                     domain: Tuple[int, int]) -> int:
        """Approximate quality index for an estimated bitrate.

        Linear in the estimated/source bitrate ratio across the domain.
        """
        low, high = domain
        if source_bitrate <= 0:
            return (low + high) // 2
        ratio = max(0.0, min(1.0, estimate.video_bitrate / source_bitrate))
        return int(round(low + (high - low) * ratio))

    @staticmethod
    def ratio_quality_hint(target_size_bytes: int, original_size_bytes: int,
                           domain: Tuple[int, int]) -> int:
        """Quality seed for assets without a duration, from the size ratio."""
        low, high = domain
        if original_size_bytes <= 0:
            return (low + high) // 2
        ratio = max(0.0, min(1.0, target_size_bytes / original_size_bytes))
        # Quality falls off slower than size; sqrt keeps the seed from undershooting
        return int(round(low + (high - low) * math.sqrt(ratio)))
