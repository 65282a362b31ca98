"""Utilities for generating canonical output, segment folder and segment filenames."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

INVALID_WINDOWS_CHARS = {'<', '>', ':', '"', '/', '\\', '|', '?', '*'}
FALLBACK_BASE_NAME = 'output'
MAX_BASE_LENGTH = 180

__all__ = [
    'sanitize_base_name',
    'compressed_output_path',
    'segments_folder',
    'segment_filename',
    'segment_output_path',
]


def sanitize_base_name(name: Optional[Union[str, Path]]) -> str:
    """
    Normalize potentially messy titles into filesystem-safe base names.

    - Replaces Windows-reserved characters and the Unicode division slash (⧸).
    - Collapses non-ASCII glyphs into underscores for portability.
    - Trims leading/trailing whitespace and dots, enforcing a deterministic fallback.
    """
    text = str(name or '').strip()
    if not text:
        text = FALLBACK_BASE_NAME

    safe_chars: list[str] = []
    for char in text:
        codepoint = ord(char)
        if char == '⧸' or char in INVALID_WINDOWS_CHARS:
            safe_chars.append('_')
        elif codepoint < 32:
            # Control characters are dropped entirely
            continue
        elif codepoint < 128:
            safe_chars.append(char)
        else:
            safe_chars.append('_')

    sanitized = ''.join(safe_chars).strip().strip('._ ')
    if not sanitized:
        sanitized = FALLBACK_BASE_NAME

    if len(sanitized) > MAX_BASE_LENGTH:
        sanitized = sanitized[:MAX_BASE_LENGTH].rstrip('._ ')
        if not sanitized:
            sanitized = FALLBACK_BASE_NAME

    return sanitized


def compressed_output_path(output_dir: Union[str, Path], source: Union[str, Path],
                           extension: Optional[str] = None) -> Path:
    """'<output_dir>/<base>_compressed<ext>', keeping the source extension by default."""
    source = Path(source)
    ext = extension if extension is not None else source.suffix
    return Path(output_dir) / f"{sanitize_base_name(source.stem)}_compressed{ext}"


def segments_folder(output_dir: Union[str, Path], source: Union[str, Path]) -> Path:
    """Folder receiving every part of one segmented source: '<base>_segments'."""
    return Path(output_dir) / f"{sanitize_base_name(Path(source).stem)}_segments"


def segment_filename(base_name: Optional[Union[str, Path]], index: int, total_parts: int,
                     extension: str) -> str:
    """'<base>_part<NN><ext>' with the part number 1-based and zero padded to the part count."""
    width = max(2, len(str(total_parts)))
    return f"{sanitize_base_name(base_name)}_part{index + 1:0{width}d}{extension}"


def segment_output_path(output_dir: Union[str, Path], source: Union[str, Path], index: int,
                        total_parts: int, extension: Optional[str] = None) -> Path:
    source = Path(source)
    ext = extension if extension is not None else source.suffix
    return segments_folder(output_dir, source) / segment_filename(source.stem, index, total_parts, ext)
