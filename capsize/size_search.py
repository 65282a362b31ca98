"""
Size target search
Binary search over an integer encoder parameter (quality index) converging on
the highest value whose encoded output still fits a byte-size ceiling.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Union

from .error_handler import SearchError

logger = logging.getLogger(__name__)

EncodeFn = Callable[[int], Tuple[int, Any]]
ReleaseFn = Callable[[Any], None]

SOURCE_PARAMETER = 'source'


@dataclass
class SearchState:
    """Mutable state owned by a single search invocation."""
    low: int
    high: int
    best_parameter: Optional[int] = None
    best_size_bytes: Optional[int] = None
    best_output: Any = None
    iteration_count: int = 0


@dataclass
class SearchResult:
    parameter: Union[int, str]
    size_bytes: int
    output: Any
    iterations: int
    target_size_bytes: int

    @property
    def ratio(self) -> float:
        return self.size_bytes / self.target_size_bytes if self.target_size_bytes else float('inf')

    @property
    def ceiling_met(self) -> bool:
        return self.size_bytes <= self.target_size_bytes


class SizeTargetSearch:
    """Find the highest quality whose output meets the target size"""

    def __init__(self, domain: Tuple[int, int] = (10, 100), max_iterations: int = 10,
                 early_exit_band: Tuple[float, float] = (0.95, 1.0), seed_window: int = 15,
                 release: Optional[ReleaseFn] = None):
        if domain[0] > domain[1]:
            raise SearchError(f"Invalid search domain {domain}")
        self.floor, self.ceiling = int(domain[0]), int(domain[1])
        self.max_iterations = max_iterations
        self.early_exit_low, self.early_exit_high = early_exit_band
        self.seed_window = seed_window
        self._release = release or (lambda output: None)

    @classmethod
    def from_config(cls, config, fmt: Optional[str] = None,
                    release: Optional[ReleaseFn] = None) -> 'SizeTargetSearch':
        band = config.get('compression.search.early_exit_band', [0.95, 1.0])
        return cls(
            domain=config.get_search_domain(fmt),
            max_iterations=int(config.get('compression.search.max_iterations', 10)),
            early_exit_band=(float(band[0]), float(band[1])),
            seed_window=int(config.get('compression.search.seed_window', 15)),
            release=release,
        )

    def _initial_window(self, initial_guess: Optional[int]) -> Tuple[int, int]:
        if initial_guess is None:
            return self.floor, self.ceiling
        guess = max(self.floor, min(self.ceiling, int(initial_guess)))
        return max(self.floor, guess - self.seed_window), min(self.ceiling, guess + self.seed_window)

    def search(self, encode_fn: EncodeFn, target_size_bytes: int,
               initial_guess: Optional[int] = None,
               source_size_bytes: Optional[int] = None,
               source_output: Any = None) -> SearchResult:
        """
        Run the search.

        Args:
            encode_fn: parameter -> (size_bytes, output); called once per iteration
            target_size_bytes: byte ceiling
            initial_guess: seed from the parameter cache or a ratio heuristic
            source_size_bytes: when given and within the ceiling, no encoding happens
            source_output: output reported for that copy-through case

        Returns:
            SearchResult; ratio > 1 means the ceiling was unreachable at the floor
        """
        if target_size_bytes <= 0:
            raise SearchError(f"Target size must be positive, got {target_size_bytes}")

        if source_size_bytes is not None and target_size_bytes >= source_size_bytes:
            logger.info("Source already fits the target, copying through")
            return SearchResult(SOURCE_PARAMETER, source_size_bytes, source_output, 0, target_size_bytes)

        window_low, window_high = self._initial_window(initial_guess)
        state = SearchState(low=window_low, high=window_high)
        floor_output: Optional[Tuple[int, Any]] = None
        # Next step up from an in-band fit. If it overshoots the search is done,
        # otherwise bisection resumes above it.
        confirm: Optional[int] = None

        while state.iteration_count < self.max_iterations:
            if state.low > state.high:
                # Seeded windows may miss the answer; widen once per direction
                if state.best_parameter is None and window_low > self.floor:
                    state.low, state.high = self.floor, window_low - 1
                    window_low = self.floor
                    continue
                if state.best_parameter == window_high and window_high < self.ceiling:
                    state.low, state.high = window_high + 1, self.ceiling
                    window_high = self.ceiling
                    continue
                break

            confirming = confirm is not None
            mid = confirm if confirming else (state.low + state.high) // 2
            confirm = None
            size, output = encode_fn(mid)
            state.iteration_count += 1
            ratio = size / target_size_bytes
            logger.debug(f"Iteration {state.iteration_count}: quality {mid}, size {size} "
                         f"(target {target_size_bytes}, ratio {ratio:.3f})")

            if size <= target_size_bytes:
                if state.best_output is not None:
                    self._release(state.best_output)
                state.best_parameter, state.best_size_bytes, state.best_output = mid, size, output
                state.low = mid + 1
                if (not confirming and state.low <= state.high
                        and self.early_exit_low <= ratio <= self.early_exit_high):
                    logger.debug(f"Within {ratio * 100:.1f}% of target, checking quality {mid + 1}")
                    confirm = mid + 1
            else:
                if mid == self.floor:
                    floor_output = (size, output)
                else:
                    self._release(output)
                state.high = mid - 1

        if state.best_parameter is not None:
            if floor_output is not None:
                self._release(floor_output[1])
            logger.info(f"Search converged on quality {state.best_parameter} "
                        f"({state.best_size_bytes} bytes) after {state.iteration_count} iterations")
            return SearchResult(state.best_parameter, state.best_size_bytes, state.best_output,
                                state.iteration_count, target_size_bytes)

        # Ceiling unreachable inside the domain: accept the floor
        if floor_output is None:
            floor_output = encode_fn(self.floor)
            state.iteration_count += 1
        size, output = floor_output
        logger.warning(f"Target {target_size_bytes} bytes not reachable; using quality floor "
                       f"{self.floor} ({size} bytes)")
        return SearchResult(self.floor, size, output, state.iteration_count, target_size_bytes)
