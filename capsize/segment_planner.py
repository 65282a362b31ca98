"""
Segment planning
Divides a timeline into contiguous parts, either evenly by size or at detected
quality-change boundaries.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .quality_boundary_detector import QualityChangeEvent

logger = logging.getLogger(__name__)

DEFAULT_MIN_SEGMENT_SECONDS = 0.001


@dataclass(frozen=True)
class Segment:
    index: int
    start_time: float
    end_time: float
    boundary_event: Optional[QualityChangeEvent] = None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'start_time': round(self.start_time, 3),
            'end_time': round(self.end_time, 3),
            'duration': round(self.duration, 3),
            'boundary_event': self.boundary_event.to_dict() if self.boundary_event else None,
        }


def count_parts(total_size_bytes: int, target_size_bytes: int) -> int:
    if target_size_bytes <= 0:
        raise ValueError(f"Target size must be positive, got {target_size_bytes}")
    return max(1, math.ceil(total_size_bytes / target_size_bytes))


class SegmentPlanner:
    def __init__(self, min_segment_seconds: float = DEFAULT_MIN_SEGMENT_SECONDS):
        self.min_segment_seconds = min_segment_seconds

    def plan_uniform(self, total_size_bytes: int, target_size_bytes: int,
                     duration_seconds: float) -> List[Segment]:
        """Equal-length segments, one per target-sized share of the source"""
        if duration_seconds <= 0:
            raise ValueError(f"Duration must be positive, got {duration_seconds}")
        total_parts = count_parts(total_size_bytes, target_size_bytes)
        segment_duration = duration_seconds / total_parts

        points = [i * segment_duration for i in range(total_parts)] + [duration_seconds]
        segments = self._segments_from_points(points, {})
        logger.info(f"Planned {len(segments)} uniform segments of ~{segment_duration:.2f}s "
                    f"for {duration_seconds:.2f}s")
        return segments

    def plan_at_boundaries(self, boundaries: Iterable[Union[QualityChangeEvent, float]],
                           duration_seconds: float,
                           total_size_bytes: Optional[int] = None,
                           target_size_bytes: Optional[int] = None) -> List[Segment]:
        """
        Segments split at boundary timestamps.

        Falls back to a uniform plan when no usable boundary remains; that needs
        the size arguments, otherwise the whole timeline is one segment.
        """
        if duration_seconds <= 0:
            raise ValueError(f"Duration must be positive, got {duration_seconds}")

        events: Dict[float, QualityChangeEvent] = {}
        timestamps = set()
        for boundary in boundaries:
            if isinstance(boundary, QualityChangeEvent):
                timestamp = boundary.timestamp
                events.setdefault(timestamp, boundary)
            else:
                timestamp = float(boundary)
            if 0 < timestamp < duration_seconds:
                timestamps.add(timestamp)

        if not timestamps:
            if total_size_bytes is not None and target_size_bytes is not None:
                logger.info("No quality boundaries, falling back to uniform segmentation")
                return self.plan_uniform(total_size_bytes, target_size_bytes, duration_seconds)
            return [Segment(0, 0.0, duration_seconds)]

        points = [0.0] + sorted(timestamps) + [duration_seconds]
        segments = self._segments_from_points(points, events)
        logger.info(f"Planned {len(segments)} segments at {len(timestamps)} quality boundaries")
        return segments

    def _segments_from_points(self, points: Sequence[float],
                              events: Dict[float, QualityChangeEvent]) -> List[Segment]:
        """Build contiguous segments, merging slivers into their predecessor"""
        bounds: List[List[float]] = []
        pending_start = None
        for start, end in zip(points, points[1:]):
            if pending_start is not None:
                start, pending_start = pending_start, None
            if end - start < self.min_segment_seconds:
                if bounds:
                    bounds[-1][1] = end
                else:
                    # Leading sliver is absorbed by the next segment
                    pending_start = start
                continue
            bounds.append([start, end])

        if not bounds:
            bounds = [[points[0], points[-1]]]

        return [
            Segment(index=i, start_time=start, end_time=end, boundary_event=events.get(start))
            for i, (start, end) in enumerate(bounds)
        ]
