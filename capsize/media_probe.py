"""
Media probing with a fingerprint-keyed metadata cache.

Time-based media (video/audio containers) are described by ffprobe; still
images are opened with Pillow.
"""

import hashlib
import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional

from PIL import Image, UnidentifiedImageError

from .error_handler import ProbeError
from .ffmpeg_utils import FFmpegUtils
from .logger_setup import get_logger

logger = get_logger(__name__)

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp', '.gif', '.bmp', '.tif', '.tiff'}


@dataclass(frozen=True)
class MediaAsset:
    """Immutable snapshot of an input file's metadata."""
    path: str
    byte_size: int
    format: str
    duration: float = 0.0
    width: int = 0
    height: int = 0
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    bitrate: int = 0  # container bitrate, bits per second

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def is_time_based(self) -> bool:
        return self.duration > 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['resolution'] = self.resolution
        return data


def generate_file_fingerprint(path: str) -> str:
    """md5 over path, size and modification time"""
    stats = os.stat(path)
    digest = hashlib.md5()
    digest.update(f"{os.path.abspath(path)}|{stats.st_size}|{stats.st_mtime_ns}".encode('utf-8'))
    return digest.hexdigest()


class MetadataCache:
    """Bounded TTL cache of MediaAsset keyed by file fingerprint."""

    def __init__(self, ttl_seconds: float = 300, max_entries: int = 100,
                 clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: 'OrderedDict[str, tuple]' = OrderedDict()
        self._lock = threading.RLock()

    def get(self, fingerprint: str) -> Optional[MediaAsset]:
        with self._lock:
            cached = self._entries.get(fingerprint)
            if cached is None:
                return None
            asset, stored_at = cached
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[fingerprint]
                return None
            return asset

    def set(self, fingerprint: str, asset: MediaAsset) -> None:
        with self._lock:
            if fingerprint not in self._entries and len(self._entries) >= self.max_entries:
                # Oldest insertion goes first
                self._entries.popitem(last=False)
            self._entries[fingerprint] = (asset, self._clock())

    def clear_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, ts) in self._entries.items() if now - ts >= self.ttl_seconds]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class MetadataProbe:
    """MetadataProbe collaborator: path -> MediaAsset, raising ProbeError."""

    def __init__(self, cache: Optional[MetadataCache] = None,
                 ffprobe: Callable[[str], Dict[str, Any]] = FFmpegUtils.run_ffprobe):
        self.cache = cache if cache is not None else MetadataCache()
        self._ffprobe = ffprobe

    def probe(self, path: str) -> MediaAsset:
        if not os.path.isfile(path):
            raise ProbeError(path, "file not found")

        fingerprint = generate_file_fingerprint(path)
        cached = self.cache.get(fingerprint)
        if cached is not None:
            logger.debug(f"Metadata cache hit for {path}")
            return cached

        if os.path.splitext(path)[1].lower() in IMAGE_EXTENSIONS:
            asset = self._probe_image(path)
        else:
            asset = self._probe_container(path)

        self.cache.set(fingerprint, asset)
        logger.info(f"Probed {os.path.basename(path)}: {asset.format} {asset.resolution}, "
                    f"{asset.duration:.2f}s, {asset.byte_size} bytes")
        return asset

    def _probe_image(self, path: str) -> MediaAsset:
        try:
            with Image.open(path) as img:
                width, height = img.size
                fmt = (img.format or 'unknown').lower()
        except (UnidentifiedImageError, OSError) as e:
            raise ProbeError(path, f"unrecognized image: {e}") from e

        return MediaAsset(
            path=path,
            byte_size=os.path.getsize(path),
            format='jpeg' if fmt == 'jpg' else fmt,
            width=width,
            height=height,
        )

    def _probe_container(self, path: str) -> MediaAsset:
        data = self._ffprobe(path)
        streams = data.get('streams', [])
        fmt = data.get('format', {}) or {}
        video = next((s for s in streams if s.get('codec_type') == 'video'), None)
        audio = next((s for s in streams if s.get('codec_type') == 'audio'), None)
        if video is None and audio is None:
            raise ProbeError(path, "no audio or video stream")

        try:
            duration = float(fmt.get('duration') or 0.0)
        except (TypeError, ValueError):
            duration = 0.0
        if duration <= 0:
            raise ProbeError(path, "container reports no duration")

        try:
            bitrate = int(fmt.get('bit_rate') or 0)
        except (TypeError, ValueError):
            bitrate = 0

        format_name = (fmt.get('format_name') or '').split(',')[0]
        extension = os.path.splitext(path)[1].lower().lstrip('.')
        # Matroska and WebM share a demuxer name; the extension disambiguates
        if extension in ('webm', 'mp4', 'mkv', 'mov') or not format_name:
            format_name = extension or format_name

        return MediaAsset(
            path=path,
            byte_size=int(fmt.get('size') or os.path.getsize(path)),
            format=format_name,
            duration=duration,
            width=int(video.get('width', 0)) if video else 0,
            height=int(video.get('height', 0)) if video else 0,
            video_codec=video.get('codec_name') if video else None,
            audio_codec=audio.get('codec_name') if audio else None,
            bitrate=bitrate,
        )
