"""
Hardware Detection for capsize
Detects which FFmpeg encoders are usable and turns encoder chain templates
into concrete fallback chains.
"""

import subprocess
import psutil
import platform
import logging
from typing import Any, Dict, List, Optional, Tuple

from .compression_params import ParameterSet

logger = logging.getLogger(__name__)


# Priority order per codec family: hardware first, software last
ENCODER_PRIORITY = {
    'h264': [('h264_nvenc', 'nvidia'), ('h264_amf', 'amd'), ('h264_qsv', 'intel'), ('libx264', 'software')],
    'hevc': [('hevc_nvenc', 'nvidia'), ('hevc_amf', 'amd'), ('hevc_qsv', 'intel'), ('libx265', 'software')],
}

SOFTWARE_FALLBACK = {'h264': 'libx264', 'hevc': 'libx265'}

# Rate-control flags that keep hardware encoders close to the requested bitrate
HARDWARE_OPTIONS = {
    'nvidia': ('-rc', 'cbr'),
    'amd': ('-usage', 'transcoding', '-rc', 'cbr'),
    'intel': (),
}


class HardwareDetector:
    def __init__(self, probe_encoders: bool = True):
        self.system_info = self._get_system_info()
        self.ffmpeg_encoders = self._detect_ffmpeg_encoders() if probe_encoders else {}
        self.software_only = False

    def _get_system_info(self) -> Dict[str, Any]:
        """Get basic system information"""
        return {
            'platform': platform.system(),
            'architecture': platform.architecture()[0],
            'cpu_count': psutil.cpu_count() or 1,
            'memory_gb': round(psutil.virtual_memory().total / (1024 ** 3), 2)
        }

    def _detect_ffmpeg_encoders(self) -> Dict[str, bool]:
        """Detect available FFmpeg encoders"""
        names = {name for family in ENCODER_PRIORITY.values() for name, _ in family}
        names.update({'libvpx', 'libvpx-vp9', 'aac', 'libopus', 'libvorbis'})
        encoders = {name: False for name in names}

        try:
            result = subprocess.run(['ffmpeg', '-hide_banner', '-encoders'],
                                    capture_output=True, text=True, timeout=15)
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.error(f"FFmpeg not available - encoder detection skipped: {e}")
            return encoders

        if result.returncode != 0:
            logger.warning("FFmpeg not found or not working properly")
            return encoders

        available = set()
        for line in (result.stdout + result.stderr).splitlines():
            parts = line.split()
            if len(parts) >= 2:
                available.add(parts[1])
        for encoder in encoders:
            encoders[encoder] = encoder in available
        logger.info(f"Detected {sum(encoders.values())} available FFmpeg encoders")
        return encoders

    def get_best_encoder(self, codec: str = "h264") -> Tuple[str, str]:
        """
        Get the best available encoder for the specified codec family
        Returns: (encoder_name, acceleration_type)
        """
        family = 'hevc' if codec.lower() in ('h265', 'hevc') else codec.lower()
        if not self.software_only:
            for encoder, accel in ENCODER_PRIORITY.get(family, []):
                if accel != 'software' and self.ffmpeg_encoders.get(encoder):
                    return encoder, accel

        fallback = SOFTWARE_FALLBACK.get(family, 'libx264')
        logger.debug(f"No hardware acceleration selected for {codec}, using {fallback}")
        return fallback, 'software'

    def force_software_encoding(self) -> None:
        """Force software encoding by disabling all hardware encoders"""
        logger.info("Forcing software encoding mode")
        self.software_only = True

    def resolve_chain(self, template: List[Dict[str, Any]],
                      audio_bitrate: Optional[int] = None) -> List[ParameterSet]:
        """Turn an encoder chain template into concrete parameter sets.

        'auto_<family>' codecs are replaced by the best detected encoder of that
        family; consecutive duplicates produced by that substitution collapse.
        """
        chain: List[ParameterSet] = []
        for step in template:
            step = dict(step)
            codec = str(step['codec'])
            if codec.startswith('auto_'):
                encoder, accel = self.get_best_encoder(codec[len('auto_'):])
                step['codec'] = encoder
                if accel != 'software':
                    step['options'] = list(HARDWARE_OPTIONS.get(accel, ())) + list(step.get('options', []) or [])
                    step.pop('preset', None)
            params = ParameterSet.from_config(step, audio_bitrate=audio_bitrate)
            if chain and chain[-1].codec == params.codec and chain[-1].options == params.options \
                    and chain[-1].preset == params.preset and chain[-1].threads == params.threads:
                continue
            chain.append(params)
        return chain

    def recommended_concurrency(self, configured: int) -> int:
        """Cap the configured encode concurrency by available CPU cores"""
        cpu_count = self.system_info.get('cpu_count') or 1
        return max(1, min(int(configured), max(1, cpu_count // 2)))

    def get_system_report(self) -> str:
        """Generate a system and encoder report"""
        report = ["=== Hardware Detection Report ==="]
        report.append(f"Platform: {self.system_info['platform']} ({self.system_info['architecture']})")
        report.append(f"CPU Cores: {self.system_info['cpu_count']}")
        report.append(f"Memory: {self.system_info['memory_gb']} GB")
        report.append("")
        report.append("=== FFmpeg Encoders ===")
        for encoder in sorted(self.ffmpeg_encoders):
            status = "available" if self.ffmpeg_encoders[encoder] else "missing"
            report.append(f"  {encoder}: {status}")
        encoder, accel = self.get_best_encoder("h264")
        report.append("")
        report.append(f"Preferred H.264 encoder: {encoder} ({accel})")
        return "\n".join(report)
