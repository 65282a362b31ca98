import pytest

from capsize.quality_boundary_detector import ChangeKind, QualityChangeEvent
from capsize.segment_planner import SegmentPlanner, count_parts

KB = 1024


def assert_contiguous(segments, duration):
    assert segments[0].start_time == 0.0
    assert segments[-1].end_time == pytest.approx(duration)
    for previous, current in zip(segments, segments[1:]):
        assert current.start_time == pytest.approx(previous.end_time)
    assert all(segment.duration > 0 for segment in segments)
    assert [segment.index for segment in segments] == list(range(len(segments)))


def test_uniform_plan_for_oversized_video():
    planner = SegmentPlanner()

    segments = planner.plan_uniform(256_000 * KB, 100_000 * KB, 120.5)

    assert len(segments) == 3
    for segment in segments:
        assert segment.duration == pytest.approx(40.1667, abs=1e-3)
    assert sum(segment.duration for segment in segments) == pytest.approx(120.5)
    assert_contiguous(segments, 120.5)


@pytest.mark.parametrize("total,target,expected", [
    (100, 100, 1),
    (101, 100, 2),
    (50, 100, 1),
    (1000, 3, 334),
])
def test_count_parts(total, target, expected):
    assert count_parts(total, target) == expected


def test_count_parts_rejects_non_positive_target():
    with pytest.raises(ValueError):
        count_parts(100, 0)


def test_boundary_plan_attaches_events():
    first = QualityChangeEvent(30.5, ChangeKind.BITRATE_CHANGE, 2500.0, 1500.0)
    second = QualityChangeEvent(75.2, ChangeKind.RESOLUTION_CHANGE, '1920x1080', '1280x720')

    segments = SegmentPlanner().plan_at_boundaries([second, first], 120.0)

    assert [(s.start_time, s.end_time) for s in segments] == [(0.0, 30.5), (30.5, 75.2), (75.2, 120.0)]
    assert segments[0].boundary_event is None
    assert segments[1].boundary_event is first
    assert segments[2].boundary_event is second
    assert segments[1].to_dict()['boundary_event']['kind'] == 'bitrate_change'


def test_boundary_plan_drops_out_of_range_and_duplicate_timestamps():
    segments = SegmentPlanner().plan_at_boundaries([0.0, 40.0, 40.0, 120.0, 150.0, -3.0], 120.0)

    assert [(s.start_time, s.end_time) for s in segments] == [(0.0, 40.0), (40.0, 120.0)]


def test_empty_boundaries_fall_back_to_uniform():
    segments = SegmentPlanner().plan_at_boundaries([], 120.5, 256_000 * KB, 100_000 * KB)

    assert len(segments) == 3
    assert_contiguous(segments, 120.5)


def test_empty_boundaries_without_sizes_give_one_segment():
    segments = SegmentPlanner().plan_at_boundaries([], 60.0)

    assert len(segments) == 1
    assert (segments[0].start_time, segments[0].end_time) == (0.0, 60.0)


def test_trailing_sliver_merged_into_previous_segment():
    segments = SegmentPlanner().plan_at_boundaries([50.0, 119.9995], 120.0)

    assert len(segments) == 2
    assert segments[-1].start_time == 50.0
    assert segments[-1].end_time == 120.0


def test_leading_sliver_absorbed_by_next_segment():
    segments = SegmentPlanner().plan_at_boundaries([0.0004, 60.0], 120.0)

    assert [(s.start_time, s.end_time) for s in segments] == [(0.0, 60.0), (60.0, 120.0)]
    assert_contiguous(segments, 120.0)


def test_non_positive_duration_rejected():
    with pytest.raises(ValueError):
        SegmentPlanner().plan_uniform(100, 10, 0)
    with pytest.raises(ValueError):
        SegmentPlanner().plan_at_boundaries([1.0], -1)
