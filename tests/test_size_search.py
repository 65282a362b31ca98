"""
Tests for the size target search: convergence, copy-through, early exit,
floor fallback and seeded windows.
"""

from unittest.mock import MagicMock

import pytest

from capsize.error_handler import SearchError
from capsize.size_search import SOURCE_PARAMETER, SizeTargetSearch

# A band no fitting candidate can reach, so the search runs to convergence
NO_EARLY_EXIT = (1.01, 1.01)


def linear_encoder(calls=None):
    """Size grows by 1000 bytes per quality step; output records the quality."""
    def encode(quality):
        if calls is not None:
            calls.append(quality)
        return quality * 1000, f"out-{quality}"
    return encode


def test_copy_through_when_source_fits():
    encode_fn = MagicMock()
    search = SizeTargetSearch()

    result = search.search(encode_fn, 1000, source_size_bytes=800, source_output="original")

    assert result.parameter == SOURCE_PARAMETER
    assert result.iterations == 0
    assert result.output == "original"
    assert result.size_bytes == 800
    encode_fn.assert_not_called()


def test_converges_on_highest_fitting_quality():
    search = SizeTargetSearch(early_exit_band=NO_EARLY_EXIT)

    result = search.search(linear_encoder(), 55_500)

    assert result.parameter == 55
    assert result.size_bytes == 55_000
    assert result.output == "out-55"
    assert result.ceiling_met


def test_search_is_monotonic_in_target():
    search = SizeTargetSearch(early_exit_band=NO_EARLY_EXIT)
    targets = [15_000, 20_000, 40_000, 63_000, 90_000, 120_000]

    params = [search.search(linear_encoder(), target).parameter for target in targets]

    assert params == sorted(params)


def test_early_exit_inside_band_after_next_step_overshoots():
    calls = []
    search = SizeTargetSearch()

    result = search.search(linear_encoder(calls), 52_000)

    # 52 lands in the band; 53 is tried once and overshoots
    assert calls == [55, 32, 43, 49, 52, 53]
    assert result.parameter == 52
    assert result.iterations == 6


def test_wide_band_resumes_bisection_after_confirming_step():
    calls = []
    search = SizeTargetSearch(early_exit_band=(0.5, 1.0))

    result = search.search(linear_encoder(calls), 52_000)

    assert result.parameter == 52
    assert len(calls) <= search.max_iterations


def test_floor_result_when_nothing_fits():
    calls = []

    def encode(quality):
        calls.append(quality)
        return 10 ** 9, f"out-{quality}"

    search = SizeTargetSearch()
    result = search.search(encode, 5_000)

    assert result.parameter == 10
    assert result.output == "out-10"
    assert result.ratio > 1
    assert not result.ceiling_met
    # The floor attempt made during the search is reused, not re-encoded
    assert calls.count(10) == 1
    assert result.iterations == len(calls)


def test_iteration_budget_is_respected():
    calls = []
    search = SizeTargetSearch(max_iterations=3, early_exit_band=NO_EARLY_EXIT)

    result = search.search(linear_encoder(calls), 55_500)

    assert len(calls) == 3
    assert result.iterations == 3
    assert result.ceiling_met


def test_discarded_outputs_are_released():
    released = []
    produced = []

    def encode(quality):
        produced.append(f"out-{quality}")
        return quality * 1000, f"out-{quality}"

    search = SizeTargetSearch(early_exit_band=NO_EARLY_EXIT, release=released.append)
    result = search.search(encode, 55_500)

    assert result.output not in released
    assert set(released) | {result.output} == set(produced)


def test_seeded_search_matches_cold_search():
    cold_calls, warm_calls = [], []
    search = SizeTargetSearch(early_exit_band=NO_EARLY_EXIT)

    cold = search.search(linear_encoder(cold_calls), 55_500)
    warm = search.search(linear_encoder(warm_calls), 55_500, initial_guess=55)

    assert warm.parameter == cold.parameter
    assert len(warm_calls) <= len(cold_calls)
    assert all(40 <= q <= 70 for q in warm_calls)


@pytest.mark.parametrize("seed", [45, 50, 52, 60, 90])
def test_seeded_search_matches_cold_search_with_default_band(seed):
    cold_calls, warm_calls = [], []
    search = SizeTargetSearch()

    cold = search.search(linear_encoder(cold_calls), 52_000)
    warm = search.search(linear_encoder(warm_calls), 52_000, initial_guess=seed)

    assert warm.parameter == cold.parameter == 52
    assert warm.size_bytes == cold.size_bytes


def test_seeded_window_widens_downward():
    search = SizeTargetSearch(max_iterations=20, early_exit_band=NO_EARLY_EXIT)

    result = search.search(linear_encoder(), 20_500, initial_guess=90)

    assert result.parameter == 20


def test_seeded_window_widens_upward():
    search = SizeTargetSearch(max_iterations=20, early_exit_band=NO_EARLY_EXIT)

    result = search.search(linear_encoder(), 90_500, initial_guess=20)

    assert result.parameter == 90


def test_invalid_inputs_raise_search_error():
    with pytest.raises(SearchError):
        SizeTargetSearch(domain=(50, 10))
    with pytest.raises(SearchError):
        SizeTargetSearch().search(linear_encoder(), 0)


def test_from_config_reads_domain_for_format():
    config = MagicMock()
    config.get.side_effect = lambda key, default=None: {
        'compression.search.early_exit_band': [0.9, 1.0],
        'compression.search.max_iterations': 7,
        'compression.search.seed_window': 5,
    }.get(key, default)
    config.get_search_domain.return_value = (20, 90)

    search = SizeTargetSearch.from_config(config, 'webp')

    config.get_search_domain.assert_called_once_with('webp')
    assert (search.floor, search.ceiling) == (20, 90)
    assert search.max_iterations == 7
    assert search.seed_window == 5
    assert search.early_exit_low == 0.9
