"""
Encode Scheduler
Runs encode jobs under a concurrency cap. Each job walks its fallback chain of
parameter sets in order until one succeeds or the chain is exhausted.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from tqdm import tqdm

from .compression_params import ParameterSet, TimeRange
from .error_handler import EncodeChainExhausted, EncodeError
from .temp_file_manager import TempFileManager

logger = logging.getLogger(__name__)


class JobState(Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class EncodeJob:
    index: int
    input_path: str
    chain: List[ParameterSet]
    output_path: str
    time_range: Optional[TimeRange] = None


@dataclass
class EncodeResult:
    index: int
    state: JobState
    parameter_set: Optional[ParameterSet] = None
    size_bytes: int = 0
    output_ref: Optional[str] = None
    attempts: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is JobState.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'state': self.state.value,
            'parameters': self.parameter_set.describe() if self.parameter_set else None,
            'size': self.size_bytes,
            'output_ref': self.output_ref,
            'attempts': [{'label': label, 'error': error} for label, error in self.attempts],
        }


# Observer signature: (job_index, new_state)
JobObserver = Callable[[int, JobState], None]


class EncodeScheduler:
    """Bounded-concurrency runner for encode jobs with per-job fallback chains"""

    def __init__(self, encoder, temp_dir: Optional[str] = None,
                 observer: Optional[JobObserver] = None, show_progress: bool = False):
        """
        Args:
            encoder: object exposing encode(input_path, time_range, parameter_set, output_path)
            temp_dir: where attempts write before the output is moved into place;
                defaults to the directory of each job's output
            observer: called on every job state transition
            show_progress: display a tqdm bar over completed jobs
        """
        self.encoder = encoder
        self.temp_dir = temp_dir
        self.observer = observer
        self.show_progress = show_progress
        self._observer_lock = threading.Lock()

    def _notify(self, index: int, state: JobState) -> None:
        if self.observer is None:
            return
        with self._observer_lock:
            self.observer(index, state)

    def run_job(self, job: EncodeJob) -> EncodeResult:
        """Attempt each parameter set in order; never revisits an earlier one"""
        attempts: List[Tuple[str, str]] = []
        output_path = Path(job.output_path)
        temp_dir = self.temp_dir or str(output_path.parent)

        for params in job.chain:
            self._notify(job.index, JobState.ATTEMPTING)
            logger.debug(f"Job {job.index}: attempting {params.describe()}")
            with TempFileManager.temp_path(temp_dir, suffix=output_path.suffix) as temp_output:
                try:
                    self.encoder.encode(job.input_path, job.time_range, params, str(temp_output))
                    size = os.path.getsize(temp_output)
                    TempFileManager.persist(temp_output, output_path)
                except (EncodeError, OSError) as e:
                    logger.warning(f"Job {job.index}: {params.label} ({params.codec}) failed: {e}")
                    attempts.append((params.describe(), str(e)))
                    continue

            self._notify(job.index, JobState.SUCCEEDED)
            logger.info(f"Job {job.index} encoded with {params.describe()} ({size} bytes)")
            return EncodeResult(job.index, JobState.SUCCEEDED, params, size, str(output_path), attempts)

        self._notify(job.index, JobState.FAILED)
        logger.error(f"Job {job.index}: fallback chain exhausted after {len(attempts)} attempts")
        return EncodeResult(job.index, JobState.FAILED, attempts=attempts)

    def run_batch(self, jobs: Sequence[EncodeJob], max_concurrent: int,
                  raise_on_failure: bool = False) -> List[EncodeResult]:
        """
        Run jobs in batches of at most max_concurrent.

        A batch starts only after the previous one has settled. Results are
        returned ordered by job index regardless of completion order.

        Raises:
            EncodeChainExhausted: when raise_on_failure is set and a job failed;
                later batches are not started
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")

        ordered = sorted(jobs, key=lambda j: j.index)
        for job in ordered:
            self._notify(job.index, JobState.PENDING)

        results: Dict[int, EncodeResult] = {}
        with tqdm(total=len(ordered), desc="Encoding", unit="job",
                  disable=not self.show_progress) as progress:
            for offset in range(0, len(ordered), max_concurrent):
                batch = ordered[offset:offset + max_concurrent]
                logger.debug(f"Starting batch of {len(batch)} jobs "
                             f"({[job.index for job in batch]})")
                with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                    futures = [executor.submit(self.run_job, job) for job in batch]
                    for future in futures:
                        result = future.result()
                        results[result.index] = result
                        progress.update(1)

                failed = [results[job.index] for job in batch if not results[job.index].succeeded]
                if failed and raise_on_failure:
                    first = failed[0]
                    raise EncodeChainExhausted(first.index, first.attempts)

        return [results[job.index] for job in ordered]
