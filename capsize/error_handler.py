"""
Error Handling Module
Exception types raised by the compression pipeline, plus centralized error
categorization and logging for batch operations.
"""

import logging
from typing import Dict, Any, List, Optional, Sequence, Tuple
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class CapsizeError(Exception):
    """Base class for failures surfaced to the caller. Carries the originating stage."""

    stage = 'general'

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class ProbeError(CapsizeError):
    """Asset is unreadable or not a recognized container"""

    stage = 'probe'

    def __init__(self, path: str, reason: str):
        super().__init__(f"Cannot probe {path}: {reason}")
        self.path = path
        self.reason = reason


class SearchError(CapsizeError):
    """Search was invoked with inputs it cannot work with"""

    stage = 'search'


class EncodeError(CapsizeError):
    """A single encoder configuration failed"""

    stage = 'encode'

    def __init__(self, codec_id: str, cause: Any):
        super().__init__(f"Encoder {codec_id} failed: {cause}")
        self.codec_id = codec_id
        self.cause = cause


class EncodeChainExhausted(CapsizeError):
    """Every configuration in a job's fallback chain failed"""

    stage = 'encode'

    def __init__(self, job_index: int, attempts: Sequence[Tuple[str, str]]):
        self.job_index = job_index
        self.attempts = list(attempts)
        lines = [f"All {len(self.attempts)} encoder configurations failed for job {job_index}:"]
        for label, error in self.attempts:
            lines.append(f"  - {label}: {error}")
        super().__init__("\n".join(lines))


class ErrorCategory(Enum):
    """Categories of processing errors for better handling and reporting"""
    PROBE = "probe"
    ENCODER = "encoder"
    SEARCH = "search"
    SEGMENTATION = "segmentation"
    TIMEOUT = "timeout"
    PERMISSION = "permission"
    GENERAL = "general"


@dataclass
class ProcessingError:
    """Structured representation of a processing error"""
    category: ErrorCategory
    message: str
    file_path: str
    exception_type: str
    severity: str  # 'warning', 'error', 'critical'
    suggestions: List[str]
    retryable: bool = True
    context: Optional[str] = None

    def get_short_description(self) -> str:
        """Get concise error description for logging"""
        return f"{self.category.value}: {self.message}"

    def get_detailed_description(self) -> str:
        """Get detailed error description with suggestions"""
        base = f"Error in {self.file_path}: {self.message}"
        if self.context:
            base += f" (Context: {self.context})"

        if self.suggestions:
            base += "\nSuggestions:\n" + "\n".join(f"  • {s}" for s in self.suggestions)

        return base


SUGGESTIONS = {
    ErrorCategory.PROBE: [
        "Check file integrity",
        "Confirm ffprobe is installed and on PATH",
        "Convert to a standard container first",
    ],
    ErrorCategory.ENCODER: [
        "Check the encoder chain in compression.yaml",
        "Update FFmpeg installation",
        "Try segmented mode for long inputs",
    ],
    ErrorCategory.SEARCH: [
        "Check the search domain for this format",
        "Increase the target size",
    ],
    ErrorCategory.SEGMENTATION: [
        "Increase the per-segment target size",
        "Disable boundary detection",
    ],
    ErrorCategory.TIMEOUT: [
        "Reduce input duration",
        "Use segmented mode",
    ],
    ErrorCategory.PERMISSION: [
        "Check file permissions",
        "Ensure output directory is writable",
    ],
    ErrorCategory.GENERAL: [
        "Check system resources",
        "Retry operation",
        "Check logs for more details",
    ],
}


class ErrorHandler:
    """Centralized error handling and categorization for batch processing"""

    def __init__(self):
        self.error_counts = {category: 0 for category in ErrorCategory}
        self.processed_errors: List[ProcessingError] = []

    def categorize_error(self, exception: Exception, file_path: str,
                         context: str = None) -> ProcessingError:
        """Categorize an exception into a structured ProcessingError"""
        error_msg = str(exception)
        exception_type = type(exception).__name__
        error_lower = error_msg.lower()

        if isinstance(exception, ProbeError):
            category, severity, retryable = ErrorCategory.PROBE, 'critical', False
        elif isinstance(exception, (EncodeError, EncodeChainExhausted)):
            category, severity, retryable = ErrorCategory.ENCODER, 'error', True
        elif isinstance(exception, SearchError):
            category, severity, retryable = ErrorCategory.SEARCH, 'error', False
        elif isinstance(exception, PermissionError) or 'permission' in error_lower or 'access denied' in error_lower:
            category, severity, retryable = ErrorCategory.PERMISSION, 'error', False
        elif 'timeout' in error_lower or 'timed out' in error_lower:
            category, severity, retryable = ErrorCategory.TIMEOUT, 'warning', True
        elif 'segment' in error_lower:
            category, severity, retryable = ErrorCategory.SEGMENTATION, 'error', True
        elif 'encoder' in error_lower or 'ffmpeg' in error_lower:
            category, severity, retryable = ErrorCategory.ENCODER, 'error', True
        else:
            category, severity, retryable = ErrorCategory.GENERAL, 'error', True

        return ProcessingError(
            category=category,
            message=error_msg,
            file_path=file_path,
            exception_type=exception_type,
            severity=severity,
            suggestions=list(SUGGESTIONS[category]),
            retryable=retryable,
            context=context or getattr(exception, 'stage', None),
        )

    def handle_error(self, exception: Exception, file_path: str,
                     context: str = None, continue_processing: bool = True) -> ProcessingError:
        """Handle an error by categorizing it and logging appropriately"""
        error = self.categorize_error(exception, file_path, context)
        self.processed_errors.append(error)
        self.error_counts[error.category] += 1

        if error.severity == 'critical':
            logger.error(f"CRITICAL ERROR: {error.get_short_description()}")
            logger.error(f"Details: {error.get_detailed_description()}")
        elif error.severity == 'error':
            logger.error(f"ERROR: {error.get_short_description()}")
            logger.info(f"Suggestions: {'; '.join(error.suggestions[:2])}")
        else:
            logger.warning(f"WARNING: {error.get_short_description()}")

        if continue_processing:
            logger.info(f"Continuing batch processing despite {error.category.value} error")

        return error

    def get_error_summary(self) -> Dict[str, Any]:
        """Get error summary for batch processing"""
        total_errors = len(self.processed_errors)
        if total_errors == 0:
            return {'total_errors': 0, 'categories': {}}

        category_counts = {cat.value: count for cat, count in self.error_counts.items() if count > 0}
        retryable_count = sum(1 for error in self.processed_errors if error.retryable)

        return {
            'total_errors': total_errors,
            'categories': category_counts,
            'most_common_category': max(category_counts.items(), key=lambda x: x[1])[0],
            'retryable_errors': retryable_count,
            'non_retryable_errors': total_errors - retryable_count,
        }

    def log_batch_summary(self, total_files: int, successful_files: int):
        """Log batch processing summary with error breakdown"""
        failed_files = total_files - successful_files
        success_rate = (successful_files / total_files * 100) if total_files > 0 else 0

        logger.info(f"Total files: {total_files}, Successful: {successful_files}, Failed: {failed_files}")
        logger.info(f"Success rate: {success_rate:.1f}%")

        if failed_files == 0:
            return

        logger.error("Error breakdown by category:")
        for category, count in self.error_counts.items():
            if count > 0:
                logger.error(f"  • {category.value}: {count} files")

    def reset(self):
        """Reset error tracking for new batch processing session"""
        self.error_counts = {category: 0 for category in ErrorCategory}
        self.processed_errors.clear()
