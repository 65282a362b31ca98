"""
Encoder parameter bundles passed to the encoding collaborators.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class TimeRange:
    """Portion of a time-based asset to encode: (start, duration) in seconds."""
    start: float
    duration: float

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True)
class ParameterSet:
    """Opaque configuration bundle for one encoder attempt."""
    codec: str
    label: str = 'default'
    quality: Optional[int] = None
    bitrate: Optional[int] = None  # bits per second
    audio_codec: Optional[str] = None
    audio_bitrate: Optional[int] = None
    preset: Optional[str] = None
    threads: int = 0
    options: Tuple[str, ...] = field(default_factory=tuple)

    def with_bitrate(self, bitrate: int) -> 'ParameterSet':
        return replace(self, bitrate=int(bitrate))

    def with_quality(self, quality: int) -> 'ParameterSet':
        return replace(self, quality=int(quality))

    def with_audio_bitrate(self, audio_bitrate: int) -> 'ParameterSet':
        return replace(self, audio_bitrate=int(audio_bitrate))

    def describe(self) -> str:
        """Human readable summary used in logs and chain-exhaustion errors."""
        parts = [f"{self.label}:{self.codec}"]
        if self.bitrate is not None:
            parts.append(f"{self.bitrate // 1000}kbps")
        if self.quality is not None:
            parts.append(f"q={self.quality}")
        if self.preset:
            parts.append(f"preset={self.preset}")
        if self.threads:
            parts.append(f"threads={self.threads}")
        return ' '.join(parts)

    @classmethod
    def from_config(cls, step: Dict[str, Any], audio_bitrate: Optional[int] = None) -> 'ParameterSet':
        """Build from one entry of an encoder chain in compression.yaml."""
        options: List[str] = [str(o) for o in step.get('options', []) or []]
        return cls(
            codec=str(step['codec']),
            label=str(step.get('label', step['codec'])),
            quality=step.get('quality'),
            bitrate=step.get('bitrate'),
            audio_codec=step.get('audio_codec'),
            audio_bitrate=step.get('audio_bitrate', audio_bitrate),
            preset=step.get('preset'),
            threads=int(step.get('threads', 0) or 0),
            options=tuple(options),
        )
