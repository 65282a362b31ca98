"""capsize package root.

Export primary classes and CLI for convenience when installed via pip.
"""

from .cli import main as cli_main  # noqa: F401
from .media_compressor import MediaCompressor, CompressionMode, CompressionRequest  # noqa: F401
from .media_compressor import SingleOutputResult, SegmentedOutputResult  # noqa: F401
from .media_probe import MediaAsset, MetadataProbe, MetadataCache  # noqa: F401
from .size_search import SizeTargetSearch, SearchResult  # noqa: F401
from .bitrate_estimator import BitrateEstimator, BitrateEstimate  # noqa: F401
from .segment_planner import SegmentPlanner, Segment  # noqa: F401
from .quality_boundary_detector import QualityBoundaryDetector, QualityChangeEvent  # noqa: F401
from .encode_scheduler import EncodeScheduler, EncodeJob, EncodeResult, JobState  # noqa: F401
from .parameter_cache import ParameterCache  # noqa: F401
from .error_handler import CapsizeError, ProbeError, EncodeError, EncodeChainExhausted, SearchError  # noqa: F401
