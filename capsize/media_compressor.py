"""
Media Compressor
Orchestrates probing, parameter selection, segmentation and encoding so that
every output of a request fits its byte-size ceiling.
"""

import logging
import os
import shutil
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .bitrate_estimator import BitrateEstimate, BitrateEstimator
from .compression_params import ParameterSet, TimeRange
from .config_manager import ConfigManager
from .encode_scheduler import EncodeJob, EncodeResult, EncodeScheduler
from .error_handler import EncodeChainExhausted, SearchError
from .ffmpeg_utils import AUDIO_ONLY_CODEC, FFmpegEncoder
from .hardware_detector import HardwareDetector
from .image_encoder import ImageEncoder
from .media_probe import MediaAsset, MetadataCache, MetadataProbe
from .parameter_cache import ParameterCache
from .quality_boundary_detector import DetectorConfig, QualityBoundaryDetector, QualityChangeEvent
from .segment_planner import Segment, SegmentPlanner
from .size_search import SOURCE_PARAMETER, SizeTargetSearch
from .temp_file_manager import TempFileManager
from .utils.segments_naming import compressed_output_path, segment_output_path

logger = logging.getLogger(__name__)

ACTION_COPIED = 'copied'
ACTION_COMPRESSED = 'compressed'
ACTION_SPLIT = 'split'
ACTION_SPLIT_WITH_DETECTION = 'split_with_quality_detection'


class CompressionMode(Enum):
    SINGLE = "single"
    SEGMENTED = "segmented"


@dataclass(frozen=True)
class CompressionRequest:
    asset: MediaAsset
    target_size_bytes: int
    mode: CompressionMode = CompressionMode.SINGLE
    detect_boundaries: bool = False


@dataclass
class SingleOutputResult:
    parameter: Union[int, str]
    original_size: int
    result_size: int
    target_size: int
    output_ref: str
    action: str
    iterations: int
    encoder: Optional[str] = None

    @property
    def ratio_achieved(self) -> float:
        return self.result_size / self.target_size

    @property
    def ceiling_met(self) -> bool:
        return self.result_size <= self.target_size

    def to_dict(self) -> Dict[str, Any]:
        return {
            'parameter': self.parameter,
            'original_size': self.original_size,
            'result_size': self.result_size,
            'ratio_achieved': round(self.ratio_achieved, 4),
            'ceiling_met': self.ceiling_met,
            'output_ref': self.output_ref,
            'action': self.action,
            'iterations': self.iterations,
            'encoder': self.encoder,
        }


@dataclass
class SegmentOutput:
    segment: Segment
    size: int
    output_ref: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.segment.to_dict()
        data['size'] = self.size
        data['output_ref'] = self.output_ref
        return data


@dataclass
class SegmentedOutputResult:
    segments: List[SegmentOutput]
    action: str
    target_size: int
    quality_changes: List[QualityChangeEvent] = field(default_factory=list)

    @property
    def total_parts(self) -> int:
        return len(self.segments)

    @property
    def ceiling_met(self) -> bool:
        return all(part.size <= self.target_size for part in self.segments)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_parts': self.total_parts,
            'segments': [part.to_dict() for part in self.segments],
            'quality_changes': [event.to_dict() for event in self.quality_changes],
            'ceiling_met': self.ceiling_met,
            'action': self.action,
        }


CompressionResult = Union[SingleOutputResult, SegmentedOutputResult]


def _with_budget(params: ParameterSet, budget_bps: int) -> ParameterSet:
    """Apply a bit budget to the stream that carries it"""
    if params.codec == AUDIO_ONLY_CODEC:
        return params.with_audio_bitrate(budget_bps)
    return params.with_bitrate(budget_bps)


def quality_to_crf(quality: int, domain: Tuple[int, int], crf_range: Sequence[int]) -> int:
    """Map a quality index (higher is better) onto a CRF value (lower is better)."""
    low, high = domain
    best_crf, worst_crf = int(crf_range[0]), int(crf_range[1])
    if high <= low:
        return best_crf
    fraction = (quality - low) / (high - low)
    return int(round(worst_crf - fraction * (worst_crf - best_crf)))


class MediaCompressor:
    """Entry point: path + ceiling + mode in, result payload out."""

    def __init__(self, config: ConfigManager,
                 probe: Optional[MetadataProbe] = None,
                 hardware: Optional[HardwareDetector] = None,
                 scheduler: Optional[EncodeScheduler] = None,
                 parameter_cache: Optional[ParameterCache] = None,
                 detector: Optional[QualityBoundaryDetector] = None,
                 show_progress: bool = False):
        self.config = config
        if probe is None:
            probe = MetadataProbe(MetadataCache(
                ttl_seconds=config.get('compression.cache.metadata_ttl_seconds', 300),
                max_entries=config.get('compression.cache.metadata_max_entries', 100),
            ))
        self.probe_service = probe
        self.hardware = hardware if hardware is not None else HardwareDetector()
        self.scheduler = scheduler if scheduler is not None else EncodeScheduler(
            FFmpegEncoder(), temp_dir=config.get_temp_dir(), show_progress=show_progress)
        if parameter_cache is None:
            parameter_cache = ParameterCache(
                ttl_seconds=config.get('compression.cache.parameter_ttl_seconds', 3600),
                max_entries=config.get('compression.cache.parameter_max_entries', 100),
            )
        self.parameter_cache = parameter_cache
        self.detector = detector if detector is not None else QualityBoundaryDetector(
            DetectorConfig.from_config(config))
        self.estimator = BitrateEstimator.from_config(config)
        self.planner = SegmentPlanner(
            config.get('compression.segmentation.min_segment_seconds', 0.001))

    def compress_file(self, path: str, target_size_bytes: int,
                      mode: CompressionMode = CompressionMode.SINGLE,
                      detect_boundaries: bool = False) -> CompressionResult:
        asset = self.probe_service.probe(path)
        return self.compress(CompressionRequest(asset, target_size_bytes, mode, detect_boundaries))

    def compress(self, request: CompressionRequest) -> CompressionResult:
        asset = request.asset
        if request.target_size_bytes <= 0:
            raise SearchError(f"Target size must be positive, got {request.target_size_bytes}")

        logger.info(f"Compressing {asset.path} ({asset.byte_size} bytes) to <= "
                    f"{request.target_size_bytes} bytes, mode {request.mode.value}")

        if asset.byte_size <= request.target_size_bytes:
            copied = self._copy_through(request)
            if request.mode is CompressionMode.SEGMENTED and asset.is_time_based:
                return self._as_single_part(copied, asset.duration)
            return copied

        if not asset.is_time_based:
            if request.mode is CompressionMode.SEGMENTED:
                logger.warning("Segmented mode needs time-based media; compressing image as a single output")
            return self._compress_image(request)

        if request.mode is CompressionMode.SEGMENTED:
            return self._compress_segmented(request)
        return self._compress_time_based(request)

    def cache_stats(self) -> Dict[str, Any]:
        return {
            'parameter_cache': self.parameter_cache.stats(),
            'metadata_cache_size': len(self.probe_service.cache),
        }

    def _copy_through(self, request: CompressionRequest) -> SingleOutputResult:
        asset = request.asset
        output_path = compressed_output_path(self.config.get_output_dir(), asset.path)
        if os.path.abspath(output_path) != os.path.abspath(asset.path):
            shutil.copy2(asset.path, output_path)
        logger.info(f"{asset.path} already fits the target; copied to {output_path}")
        return SingleOutputResult(
            parameter=SOURCE_PARAMETER,
            original_size=asset.byte_size,
            result_size=asset.byte_size,
            target_size=request.target_size_bytes,
            output_ref=str(output_path),
            action=ACTION_COPIED,
            iterations=0,
        )

    def _as_single_part(self, copied: SingleOutputResult, duration: float) -> SegmentedOutputResult:
        """A copied asset reported in the segmented payload shape: one part covering everything"""
        part = SegmentOutput(Segment(0, 0.0, duration), copied.result_size, copied.output_ref)
        return SegmentedOutputResult(segments=[part], action=ACTION_COPIED, target_size=copied.target_size)

    def _compress_image(self, request: CompressionRequest) -> SingleOutputResult:
        asset = request.asset
        target = request.target_size_bytes
        encoder = ImageEncoder(asset.path, asset.byte_size, target, fmt=asset.format)
        fmt = encoder.output_format

        search = SizeTargetSearch.from_config(self.config, fmt)
        seed = self.parameter_cache.get(fmt, asset.byte_size, target)
        if seed is None:
            seed = BitrateEstimator.ratio_quality_hint(target, asset.byte_size, (search.floor, search.ceiling))
            logger.debug(f"Parameter cache miss, seeding search with quality {seed}")
        else:
            logger.debug(f"Parameter cache hit, seeding search with quality {seed}")

        result = search.search(encoder.encode, target, initial_guess=seed)
        if result.ceiling_met:
            self.parameter_cache.set(fmt, asset.byte_size, target, result.parameter)
        else:
            logger.warning(f"{asset.path}: best effort {result.size_bytes} bytes exceeds target {target}")

        output_path = compressed_output_path(self.config.get_output_dir(), asset.path,
                                             encoder.output_extension)
        with TempFileManager.temp_path(self.config.get_temp_dir(),
                                       suffix=encoder.output_extension) as temp_output:
            temp_output.write_bytes(result.output)
            TempFileManager.persist(temp_output, output_path)

        return SingleOutputResult(
            parameter=result.parameter,
            original_size=asset.byte_size,
            result_size=result.size_bytes,
            target_size=target,
            output_ref=str(output_path),
            action=ACTION_COMPRESSED,
            iterations=result.iterations,
            encoder=f"pillow-{fmt}",
        )

    def _output_container(self, asset: MediaAsset) -> str:
        if asset.video_codec is None:
            return 'm4a'
        return 'webm' if asset.format == 'webm' else 'mp4'

    def _chain_for(self, asset: MediaAsset, container: str,
                   budget_bps: Optional[int] = None) -> List[ParameterSet]:
        """Concrete fallback chain for a container, with the bit budget applied when given"""
        audio_bps = int(self.config.get('compression.bitrate.audio_bitrate_bps', 128000))
        chain = self.hardware.resolve_chain(self.config.get_encoder_chain(container),
                                            audio_bitrate=audio_bps if asset.audio_codec else None)
        if budget_bps is None:
            return chain
        return [_with_budget(p, budget_bps) for p in chain]

    def _audio_bits(self, asset: MediaAsset, container: str) -> int:
        if container == 'm4a' or not asset.audio_codec:
            return 0
        return int(self.config.get('compression.bitrate.audio_bitrate_bps', 128000))

    def _compress_time_based(self, request: CompressionRequest) -> SingleOutputResult:
        asset = request.asset
        target = request.target_size_bytes
        container = self._output_container(asset)

        estimate = self.estimator.estimate(target, asset.duration, self._audio_bits(asset, container))
        output_path = compressed_output_path(self.config.get_output_dir(), asset.path, f".{container}")
        if container != 'm4a' and self.config.get('compression.rate_control', 'bitrate') == 'quality':
            return self._compress_quality_driven(request, container, estimate, str(output_path))

        chain = self._chain_for(asset, container, estimate.video_bitrate)

        job = EncodeJob(0, asset.path, chain, str(output_path))
        result = self.scheduler.run_batch([job], 1, raise_on_failure=True)[0]
        iterations = len(result.attempts) + 1
        bitrate = estimate.video_bitrate

        if (result.size_bytes > target and not estimate.floor_hit
                and self.config.get('compression.bitrate.overshoot_retry', True)):
            retry = self._retry_overshoot(job, result, bitrate, target)
            if retry is not None:
                result, bitrate = retry
                iterations += 1

        if result.size_bytes > target:
            logger.warning(f"{asset.path}: output {result.size_bytes} bytes exceeds target {target}")

        return SingleOutputResult(
            parameter=bitrate,
            original_size=asset.byte_size,
            result_size=result.size_bytes,
            target_size=target,
            output_ref=result.output_ref,
            action=ACTION_COMPRESSED,
            iterations=iterations,
            encoder=result.parameter_set.describe(),
        )

    def _retry_overshoot(self, job: EncodeJob, result: EncodeResult, bitrate: int, target: int):
        """One re-encode with the bitrate scaled by target/actual, using the configuration that worked"""
        scaled = int(bitrate * target / result.size_bytes)
        if scaled < self.estimator.floor_bps:
            return None
        params = _with_budget(result.parameter_set, scaled)
        logger.info(f"Output overshot by {result.size_bytes - target} bytes; "
                    f"retrying at {scaled // 1000}kbps")
        retry_job = EncodeJob(job.index, job.input_path, [params], job.output_path, job.time_range)
        retry_result = self.scheduler.run_batch([retry_job], 1)[0]
        if not retry_result.succeeded:
            logger.warning("Overshoot retry failed; keeping the first output")
            return None
        return retry_result, scaled

    def _compress_quality_driven(self, request: CompressionRequest, container: str,
                                 estimate: BitrateEstimate, output_path: str) -> SingleOutputResult:
        """Search a constant-quality setting instead of trusting one bitrate encode.

        The search is seeded from the parameter cache, or from the bitrate
        estimate mapped onto the quality domain on a cache miss.
        """
        asset = request.asset
        target = request.target_size_bytes
        chain = self._chain_for(asset, container)
        search = SizeTargetSearch.from_config(self.config, container, release=TempFileManager.remove)
        domain = (search.floor, search.ceiling)
        crf_range = self.config.get('compression.quality_mode.crf_range', [18, 50])

        seed = self.parameter_cache.get(container, asset.byte_size, target)
        if seed is None:
            seed = BitrateEstimator.quality_hint(estimate, asset.bitrate, domain)
            logger.debug(f"Parameter cache miss, seeding quality search at {seed} from "
                         f"{estimate.kbps}kbps estimate")

        temp_dir = self.config.get_temp_dir()
        attempts: Dict[str, EncodeResult] = {}

        def encode_at(quality: int):
            crf = quality_to_crf(quality, domain, crf_range)
            attempt_path = os.path.join(temp_dir, f"capsize_q{quality}_{uuid.uuid4().hex}.{container}")
            TempFileManager.register(attempt_path)
            job = EncodeJob(0, asset.path, [p.with_quality(crf) for p in chain], attempt_path)
            result = self.scheduler.run_batch([job], 1, raise_on_failure=True)[0]
            attempts[attempt_path] = result
            return result.size_bytes, attempt_path

        try:
            found = search.search(encode_at, target, initial_guess=seed)
        except EncodeChainExhausted:
            for attempt_path in attempts:
                TempFileManager.remove(attempt_path)
            raise

        TempFileManager.persist(found.output, output_path)
        if found.ceiling_met:
            self.parameter_cache.set(container, asset.byte_size, target, found.parameter)
        else:
            logger.warning(f"{asset.path}: best effort {found.size_bytes} bytes exceeds target {target}")

        return SingleOutputResult(
            parameter=found.parameter,
            original_size=asset.byte_size,
            result_size=found.size_bytes,
            target_size=target,
            output_ref=output_path,
            action=ACTION_COMPRESSED,
            iterations=found.iterations,
            encoder=attempts[found.output].parameter_set.describe(),
        )

    def _compress_segmented(self, request: CompressionRequest) -> SegmentedOutputResult:
        asset = request.asset
        target = request.target_size_bytes
        container = self._output_container(asset)

        enabled_formats = self.config.get('compression.detection.enabled_formats', ['webm']) or []
        use_detection = request.detect_boundaries and asset.format in enabled_formats
        if request.detect_boundaries and not use_detection:
            logger.info(f"Boundary detection not enabled for {asset.format}; splitting uniformly")

        events: List[QualityChangeEvent] = []
        if use_detection:
            events = self.detector.detect(asset.path)
            plan = self.planner.plan_at_boundaries(events, asset.duration, asset.byte_size, target)
        else:
            plan = self.planner.plan_uniform(asset.byte_size, target, asset.duration)

        output_dir = self.config.get_output_dir()
        audio_bits = self._audio_bits(asset, container)
        jobs: List[EncodeJob] = []
        for segment in plan:
            estimate = self.estimator.estimate(target, segment.duration, audio_bits)
            jobs.append(EncodeJob(
                index=segment.index,
                input_path=asset.path,
                chain=self._chain_for(asset, container, estimate.video_bitrate),
                output_path=str(segment_output_path(output_dir, asset.path, segment.index,
                                                    len(plan), f".{container}")),
                time_range=TimeRange(segment.start_time, segment.duration),
            ))

        configured = int(self.config.get('compression.segmentation.max_concurrent', 2))
        max_concurrent = self.hardware.recommended_concurrency(configured)
        logger.info(f"Encoding {len(jobs)} segments with up to {max_concurrent} in parallel")
        try:
            results = self.scheduler.run_batch(jobs, max_concurrent, raise_on_failure=True)
        except EncodeChainExhausted:
            self._remove_partial_outputs(jobs)
            raise

        parts = [SegmentOutput(segment, res.size_bytes, res.output_ref) for segment, res in zip(plan, results)]
        oversized = [part.segment.index for part in parts if part.size > target]
        if oversized:
            logger.warning(f"Segments {oversized} exceed the target of {target} bytes")

        return SegmentedOutputResult(
            segments=parts,
            action=ACTION_SPLIT_WITH_DETECTION if use_detection else ACTION_SPLIT,
            target_size=target,
            quality_changes=events,
        )

    @staticmethod
    def _remove_partial_outputs(jobs: List[EncodeJob]) -> None:
        """Delete parts already written by a segmented run that failed later on"""
        removed = 0
        for job in jobs:
            if os.path.exists(job.output_path):
                os.remove(job.output_path)
                removed += 1
        if removed:
            logger.warning(f"Removed {removed} segments written before the failure")
