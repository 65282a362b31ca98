"""
Tests for the quality boundary detector state machine and its analysis pass.
"""

import threading
from unittest.mock import MagicMock, patch

import pytest

from capsize.quality_boundary_detector import (
    ChangeKind,
    DetectorConfig,
    DetectorState,
    QualityBoundaryDetector,
    QualityChangeEvent,
    dedupe_events,
    process_line,
)


def progress(seconds, kbps, resolution=''):
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    stamp = f"{int(hours):02d}:{int(minutes):02d}:{secs:05.2f}"
    return f"frame=  100 fps= 50 q=-0.0 size=N/A time={stamp} bitrate: {kbps} kbits/s {resolution}".rstrip()


def event(timestamp, kind=ChangeKind.BITRATE_CHANGE):
    return QualityChangeEvent(timestamp, kind, 1000.0, 2000.0)


SCENARIO = [
    "Input #0, matroska,webm, from 'talk.webm':",
    "  Stream #0:0: Video: vp9, yuv420p(tv), 1920x1080, SAR 1:1 DAR 16:9, 30 fps",
    progress(10.0, 2500, '1920x1080'),
    progress(20.0, 2500, '1920x1080'),
    progress(30.5, 1500, '1920x1080'),
    progress(40.0, 1500, '1920x1080'),
    progress(60.0, 1500, '1920x1080'),
    progress(75.2, 1500, '1280x720'),
    progress(90.0, 1500, '1280x720'),
]


class TestProcessLine:
    def test_line_without_time_token_is_ignored(self):
        state = DetectorState()
        assert process_line(state, "Stream #0:0: Video: vp9, 1920x1080") == []
        assert state.previous_resolution is None

    def test_first_observation_sets_baseline_only(self):
        state = DetectorState()
        assert process_line(state, progress(5.0, 2500, '1920x1080')) == []
        assert state.previous_bitrate == 2500
        assert state.previous_resolution == '1920x1080'

    def test_small_bitrate_change_is_not_an_event(self):
        state = DetectorState()
        process_line(state, progress(5.0, 2500))
        assert process_line(state, progress(10.0, 2400)) == []
        assert state.previous_bitrate == 2400

    def test_bitrate_change_over_threshold_emits(self):
        state = DetectorState()
        process_line(state, progress(5.0, 2500))
        emitted = process_line(state, progress(10.0, 1500))

        assert emitted == [QualityChangeEvent(10.0, ChangeKind.BITRATE_CHANGE, 2500.0, 1500.0)]
        assert state.last_event_timestamp == 10.0
        assert state.events == emitted

    def test_lines_within_min_interval_of_last_event_are_rejected(self):
        state = DetectorState()
        process_line(state, progress(5.0, 2500))
        process_line(state, progress(10.0, 1500))

        assert process_line(state, progress(11.0, 3000)) == []
        # Rejected lines do not update the baseline
        assert state.previous_bitrate == 1500
        assert len(process_line(state, progress(13.5, 3000))) == 1

    def test_hex_tokens_are_not_resolutions(self):
        state = DetectorState()
        process_line(state, progress(5.0, 2500) + " tag 0x0000")
        assert state.previous_resolution is None

    def test_equals_form_of_bitrate_token(self):
        state = DetectorState()
        process_line(state, "time=00:00:05.00 bitrate=2500.0kbits/s speed=2x")
        process_line(state, "time=00:00:09.00 bitrate=1000.0kbits/s speed=2x")
        assert [e.kind for e in state.events] == [ChangeKind.BITRATE_CHANGE]

    def test_thresholds_come_from_config(self):
        config = DetectorConfig(min_interval=0.0, bitrate_threshold_kbps=50)
        state = DetectorState()
        process_line(state, progress(1.0, 1000), config)
        assert len(process_line(state, progress(1.5, 1100), config)) == 1


class TestDedupe:
    def test_close_events_collapse_keeping_earlier(self):
        kept = dedupe_events([event(10.5), event(10.0)], window=2.0)
        assert [e.timestamp for e in kept] == [10.0]

    def test_distant_events_both_survive(self):
        kept = dedupe_events([event(40.0), event(10.0)], window=2.0)
        assert [e.timestamp for e in kept] == [10.0, 40.0]


class TestDetector:
    def test_scenario_yields_two_ascending_events(self):
        events = QualityBoundaryDetector().detect_from_lines(SCENARIO)

        assert [e.kind for e in events] == [ChangeKind.BITRATE_CHANGE, ChangeKind.RESOLUTION_CHANGE]
        assert [e.timestamp for e in events] == pytest.approx([30.5, 75.2])
        assert (events[0].from_value, events[0].to_value) == (2500.0, 1500.0)
        assert (events[1].from_value, events[1].to_value) == ('1920x1080', '1280x720')

    def test_same_line_events_deduplicate(self):
        detector = QualityBoundaryDetector(DetectorConfig(min_interval=0.0))
        events = detector.detect_from_lines([
            progress(5.0, 2500, '1920x1080'),
            progress(10.0, 1000, '1280x720'),
            progress(10.5, 2500, '1920x1080'),
        ])
        assert [e.timestamp for e in events] == [10.0]

    def _process(self, lines, return_code=0):
        process = MagicMock()
        process.stderr = iter(lines)
        process.wait.return_value = return_code
        return process

    @patch('capsize.quality_boundary_detector.subprocess.Popen')
    def test_detect_runs_analysis_pass(self, mock_popen):
        mock_popen.return_value = self._process([line + "\n" for line in SCENARIO])

        events = QualityBoundaryDetector().detect('talk.webm')

        cmd = mock_popen.call_args[0][0]
        assert cmd[-3:] == ['-f', 'null', '-']
        assert len(events) == 2

    @patch('capsize.quality_boundary_detector.subprocess.Popen')
    def test_carriage_return_progress_is_split(self, mock_popen):
        mock_popen.return_value = self._process(["\r".join(SCENARIO[2:]) + "\n"])

        assert len(QualityBoundaryDetector().detect('talk.webm')) == 2

    @patch('capsize.quality_boundary_detector.subprocess.Popen')
    def test_encoder_error_resolves_empty(self, mock_popen):
        mock_popen.return_value = self._process(SCENARIO, return_code=1)

        assert QualityBoundaryDetector().detect('broken.webm') == []

    @patch('capsize.quality_boundary_detector.subprocess.Popen', side_effect=FileNotFoundError("ffmpeg"))
    def test_missing_ffmpeg_resolves_empty(self, mock_popen):
        assert QualityBoundaryDetector().detect('talk.webm') == []

    @patch('capsize.quality_boundary_detector.subprocess.Popen')
    def test_timeout_kills_process_and_resolves_empty(self, mock_popen):
        released = threading.Event()

        def stalled_stream():
            yield progress(5.0, 2500)
            released.wait(5)

        process = MagicMock()
        process.stderr = stalled_stream()
        process.kill.side_effect = released.set
        process.wait.return_value = -9
        mock_popen.return_value = process

        detector = QualityBoundaryDetector(DetectorConfig(timeout=0.2))
        assert detector.detect('slow.webm') == []
        process.kill.assert_called_once()


def test_config_from_manager():
    config = MagicMock()
    config.get.side_effect = lambda key, default=None: {
        'compression.detection.min_interval_seconds': 1.5,
        'compression.detection.timeout_seconds': 12,
    }.get(key, default)

    detector_config = DetectorConfig.from_config(config)

    assert detector_config.min_interval == 1.5
    assert detector_config.timeout == 12.0
    assert detector_config.bitrate_threshold_kbps == pytest.approx(150.0)
    assert detector_config.dedup_window == pytest.approx(2.0)
