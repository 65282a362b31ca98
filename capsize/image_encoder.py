"""
Pillow-based still image encoder
Encodes an image at a given quality index into an in-memory buffer so the
size search can measure candidates without touching disk.
"""

import io
import logging
import math
from typing import Optional, Tuple

from PIL import Image

from .error_handler import EncodeError

logger = logging.getLogger(__name__)

# Formats the quality search can drive directly; anything else is re-encoded as JPEG
QUALITY_FORMATS = {'jpeg', 'png', 'webp'}


class ImageEncoder:
    """Encode one source image at varying quality levels"""

    def __init__(self, path: str, source_size: int, target_size: int,
                 fmt: Optional[str] = None):
        self.path = path
        self.source_size = source_size
        self.target_size = target_size
        with Image.open(path) as img:
            self.source_format = (fmt or img.format or 'jpeg').lower()
            img.load()
            self._image = img.copy()

    @property
    def output_format(self) -> str:
        if self.source_format in QUALITY_FORMATS or self.source_format == 'gif':
            return self.source_format
        return 'jpeg'

    @property
    def output_extension(self) -> str:
        return '.jpg' if self.output_format == 'jpeg' else f".{self.output_format}"

    def encode(self, quality: int) -> Tuple[int, bytes]:
        """Encode at the quality index, returning (size_bytes, buffer)"""
        buffer = io.BytesIO()
        fmt = self.output_format
        try:
            if fmt == 'jpeg':
                image = self._image if self._image.mode in ('RGB', 'L') else self._image.convert('RGB')
                image.save(buffer, 'JPEG', quality=int(quality), optimize=True)
            elif fmt == 'webp':
                self._image.save(buffer, 'WEBP', quality=int(quality))
            elif fmt == 'png':
                self._encode_png(buffer, quality)
            else:
                self._encode_gif(buffer, quality)
        except (OSError, ValueError) as e:
            raise EncodeError(f"pillow-{fmt}", e) from e
        data = buffer.getvalue()
        return len(data), data

    def _encode_png(self, buffer: io.BytesIO, quality: int) -> None:
        # PNG is lossless; quality maps onto palette size for lossy reduction
        if quality >= 100:
            self._image.save(buffer, 'PNG', optimize=True, compress_level=9)
            return
        colors = max(2, min(256, int(256 * quality / 100)))
        image = self._image
        if image.mode not in ('RGB', 'RGBA', 'L', 'P'):
            image = image.convert('RGBA')
        method = Image.Quantize.FASTOCTREE if image.mode == 'RGBA' else Image.Quantize.MEDIANCUT
        quantized = image.quantize(colors=colors, method=method)
        quantized.save(buffer, 'PNG', optimize=True, compress_level=9)

    def _encode_gif(self, buffer: io.BytesIO, quality: int) -> None:
        # GIF has no quality knob; the quality index scales the canvas instead
        scale = math.sqrt(self.target_size / max(self.source_size, 1)) * quality / 100
        scale = max(0.05, min(1.0, scale))
        width = max(1, int(self._image.width * scale))
        height = max(1, int(self._image.height * scale))
        resized = self._image.resize((width, height), Image.Resampling.LANCZOS)
        resized.save(buffer, 'GIF', optimize=True)
