"""
Quality boundary detection
Mines the diagnostic stream of a no-output analysis encode for bitrate and
resolution changes, which become candidate split points.
"""

import logging
import math
import re
import subprocess
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .ffmpeg_utils import FFmpegUtils

logger = logging.getLogger(__name__)

BITRATE_TOKEN = re.compile(r'bitrate[:=]\s*(\d+(?:\.\d+)?)\s*kbits/s')
RESOLUTION_TOKEN = re.compile(r'(?<![\w.])(\d{2,5})x(\d{2,5})(?!\w)')


class ChangeKind(Enum):
    BITRATE_CHANGE = "bitrate_change"
    RESOLUTION_CHANGE = "resolution_change"


@dataclass(frozen=True)
class QualityChangeEvent:
    timestamp: float
    kind: ChangeKind
    from_value: Union[float, str]
    to_value: Union[float, str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'kind': self.kind.value,
            'from': self.from_value,
            'to': self.to_value,
        }


@dataclass(frozen=True)
class DetectorConfig:
    min_interval: float = 3.0
    bitrate_threshold_kbps: float = 150.0
    dedup_window: float = 2.0
    timeout: float = 30.0

    @classmethod
    def from_config(cls, config) -> 'DetectorConfig':
        return cls(
            min_interval=float(config.get('compression.detection.min_interval_seconds', 3.0)),
            bitrate_threshold_kbps=float(config.get('compression.detection.bitrate_threshold_kbps', 150)),
            dedup_window=float(config.get('compression.detection.dedup_window_seconds', 2.0)),
            timeout=float(config.get('compression.detection.timeout_seconds', 30)),
        )


@dataclass
class DetectorState:
    previous_bitrate: float = 0.0
    previous_resolution: Optional[str] = None
    last_event_timestamp: float = -math.inf
    events: List[QualityChangeEvent] = field(default_factory=list)


def process_line(state: DetectorState, line: str,
                 config: DetectorConfig = DetectorConfig()) -> List[QualityChangeEvent]:
    """Feed one diagnostic line through the detector, returning events it emits."""
    timestamp = FFmpegUtils.parse_time_token(line)
    if timestamp is None:
        return []
    if timestamp - state.last_event_timestamp < config.min_interval:
        return []

    emitted: List[QualityChangeEvent] = []

    bitrate_match = BITRATE_TOKEN.search(line)
    if bitrate_match:
        current = float(bitrate_match.group(1))
        if state.previous_bitrate > 0 and abs(current - state.previous_bitrate) > config.bitrate_threshold_kbps:
            emitted.append(QualityChangeEvent(timestamp, ChangeKind.BITRATE_CHANGE,
                                              state.previous_bitrate, current))
        state.previous_bitrate = current

    resolution_match = RESOLUTION_TOKEN.search(line)
    if resolution_match:
        current_resolution = resolution_match.group(0)
        if state.previous_resolution and current_resolution != state.previous_resolution:
            emitted.append(QualityChangeEvent(timestamp, ChangeKind.RESOLUTION_CHANGE,
                                              state.previous_resolution, current_resolution))
        state.previous_resolution = current_resolution

    if emitted:
        state.last_event_timestamp = timestamp
        state.events.extend(emitted)
    return emitted


def dedupe_events(events: Iterable[QualityChangeEvent], window: float) -> List[QualityChangeEvent]:
    """Sort ascending, dropping any event within `window` seconds of the last kept one."""
    kept: List[QualityChangeEvent] = []
    for event in sorted(events, key=lambda e: e.timestamp):
        if kept and event.timestamp - kept[-1].timestamp < window:
            continue
        kept.append(event)
    return kept


class QualityBoundaryDetector:
    def __init__(self, config: Optional[DetectorConfig] = None,
                 command_builder: Callable[[str], List[str]] = FFmpegUtils.build_analysis_command):
        self.config = config or DetectorConfig()
        self._command_builder = command_builder

    def detect_from_lines(self, lines: Iterable[str]) -> List[QualityChangeEvent]:
        """Run the state machine over an already captured stream"""
        state = DetectorState()
        for line in lines:
            process_line(state, line, self.config)
        return dedupe_events(state.events, self.config.dedup_window)

    def detect(self, input_path: str) -> List[QualityChangeEvent]:
        """
        Run an analysis pass over input_path and return deduplicated events.

        Timeouts and encoder failures resolve to an empty list; callers then
        fall back to uniform segmentation.
        """
        cmd = self._command_builder(input_path)
        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                encoding='utf-8',
                errors='replace'
            )
        except OSError as e:
            logger.warning(f"Boundary analysis could not start: {e}")
            return []

        state = DetectorState()

        def consume():
            # ffmpeg rewrites progress with carriage returns
            for raw in process.stderr:
                for line in raw.split('\r'):
                    process_line(state, line, self.config)

        reader = threading.Thread(target=consume, name='boundary-detector', daemon=True)
        reader.start()
        reader.join(self.config.timeout)

        if reader.is_alive():
            logger.warning(f"Boundary analysis timed out after {self.config.timeout:.0f}s; "
                           f"treating {input_path} as having no boundaries")
            process.kill()
            process.wait()
            reader.join(1.0)
            return []

        return_code = process.wait()
        if return_code != 0:
            logger.warning(f"Boundary analysis exited with code {return_code}; ignoring detected events")
            return []

        events = dedupe_events(state.events, self.config.dedup_window)
        logger.info(f"Detected {len(events)} quality changes in {input_path}")
        return events
