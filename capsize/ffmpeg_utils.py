"""
FFmpeg Utilities Module
Shared helpers for ffprobe metadata, FFmpeg command building and execution.
"""

import json
import os
import re
import subprocess
import logging
from typing import Any, Callable, Dict, List, Optional

from .compression_params import ParameterSet, TimeRange
from .error_handler import EncodeError, ProbeError

logger = logging.getLogger(__name__)
ffmpeg_logger = logging.getLogger('capsize.ffmpeg')

TIME_TOKEN = re.compile(r'time=(\d+):(\d+):(\d+(?:\.\d+)?)')

# Codec id of audio-only chain steps; the video stream is dropped
AUDIO_ONLY_CODEC = 'none'

# Observer signature: (seconds_encoded, total_seconds)
ProgressObserver = Callable[[float, Optional[float]], None]


class FFmpegUtils:
    """Shared utilities for FFmpeg operations"""

    FFMPEG = 'ffmpeg'
    FFPROBE = 'ffprobe'

    @staticmethod
    def parse_time_token(line: str) -> Optional[float]:
        """Return seconds for the first 'time=HH:MM:SS.sss' token, or None."""
        match = TIME_TOKEN.search(line)
        if not match:
            return None
        hours, minutes, seconds = match.groups()
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)

    @staticmethod
    def _safe_file_path(file_path: str) -> str:
        """Normalize a path before handing it to FFmpeg"""
        abs_path = os.path.abspath(file_path)
        if os.name == 'nt':
            abs_path = abs_path.replace('"', '')
        return abs_path

    @staticmethod
    def run_ffprobe(path: str, timeout: int = 30) -> Dict[str, Any]:
        """Return ffprobe's JSON description of a file, raising ProbeError on failure"""
        safe_path = FFmpegUtils._safe_file_path(path)
        if not os.path.exists(safe_path):
            raise ProbeError(path, "file not found")
        if not os.access(safe_path, os.R_OK):
            raise ProbeError(path, "file not readable")

        cmd = [
            FFmpegUtils.FFPROBE, '-v', 'quiet', '-print_format', 'json',
            '-show_format', '-show_streams', safe_path
        ]
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding='utf-8',
                errors='replace',
                timeout=timeout
            )
        except FileNotFoundError as e:
            raise ProbeError(path, f"ffprobe not available: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise ProbeError(path, f"ffprobe timed out after {timeout}s") from e

        if result.returncode != 0:
            raise ProbeError(path, f"unrecognized container ({result.stderr.strip() or 'ffprobe failed'})")

        try:
            data = json.loads(result.stdout or '{}')
        except json.JSONDecodeError as e:
            raise ProbeError(path, "invalid ffprobe output") from e

        if not data.get('streams'):
            raise ProbeError(path, "no media streams found")
        return data

    @staticmethod
    def build_encode_command(input_path: str, output_path: str, params: ParameterSet,
                             time_range: Optional[TimeRange] = None) -> List[str]:
        """Build an FFmpeg command for one encode attempt"""
        cmd = [FFmpegUtils.FFMPEG, '-y', '-hide_banner']

        # Input seeking keeps segment jobs fast
        if time_range is not None:
            cmd.extend(['-ss', f"{time_range.start:.3f}"])
        cmd.extend(['-i', FFmpegUtils._safe_file_path(input_path)])
        if time_range is not None:
            cmd.extend(['-t', f"{time_range.duration:.3f}"])

        if params.codec == AUDIO_ONLY_CODEC:
            cmd.append('-vn')
        else:
            cmd.extend(['-c:v', params.codec])
            if params.bitrate:
                kbps = max(1, params.bitrate // 1000)
                cmd.extend(['-b:v', f"{kbps}k", '-maxrate', f"{kbps}k", '-bufsize', f"{kbps * 2}k"])
            elif params.codec.startswith('libvpx'):
                # Constant quality mode for VP8/VP9
                cmd.extend(['-b:v', '0'])
            if params.quality is not None:
                cmd.extend(['-crf', str(params.quality)])
            if params.preset:
                cmd.extend(['-preset', params.preset])
        cmd.extend(['-threads', str(params.threads)])
        cmd.extend(params.options)

        if params.audio_codec:
            cmd.extend(['-c:a', params.audio_codec])
            if params.audio_bitrate:
                cmd.extend(['-b:a', f"{params.audio_bitrate // 1000}k"])

        if output_path.lower().endswith('.mp4') and params.codec != AUDIO_ONLY_CODEC:
            cmd.extend(['-movflags', '+faststart', '-pix_fmt', 'yuv420p'])
        cmd.append(output_path)
        return cmd

    @staticmethod
    def build_analysis_command(input_path: str) -> List[str]:
        """No-output analysis pass whose stderr carries the diagnostic stream"""
        return [FFmpegUtils.FFMPEG, '-hide_banner', '-i', FFmpegUtils._safe_file_path(input_path),
                '-f', 'null', '-']

    @staticmethod
    def execute(cmd: List[str], codec_id: str, duration: Optional[float] = None,
                observer: Optional[ProgressObserver] = None) -> None:
        """Run an FFmpeg command, forwarding stderr to the ffmpeg logger.

        Raises EncodeError when the process cannot start or exits non-zero.
        """
        ffmpeg_logger.debug(' '.join(cmd))
        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                encoding='utf-8',
                errors='replace'
            )
        except OSError as e:
            raise EncodeError(codec_id, e) from e

        tail: List[str] = []
        for raw in process.stderr:
            # Progress updates are separated by carriage returns
            for line in raw.split('\r'):
                line = line.rstrip()
                if not line:
                    continue
                ffmpeg_logger.debug(line)
                tail.append(line)
                del tail[:-5]
                if observer is not None:
                    seconds = FFmpegUtils.parse_time_token(line)
                    if seconds is not None:
                        observer(seconds, duration)

        return_code = process.wait()
        if return_code != 0:
            raise EncodeError(codec_id, f"exit code {return_code}: {' | '.join(tail) or 'no output'}")


class FFmpegEncoder:
    """Encoder engine collaborator for time-based media (video and audio)."""

    def __init__(self, observer: Optional[ProgressObserver] = None):
        self.observer = observer

    def encode(self, input_path: str, time_range: Optional[TimeRange],
               parameter_set: ParameterSet, output_path: str) -> str:
        cmd = FFmpegUtils.build_encode_command(input_path, output_path, parameter_set, time_range)
        duration = time_range.duration if time_range else None
        FFmpegUtils.execute(cmd, parameter_set.codec, duration=duration, observer=self.observer)
        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise EncodeError(parameter_set.codec, "encoder produced no output")
        return output_path
