"""
Configuration Manager for capsize
Handles loading and managing configuration from YAML files and CLI arguments
"""

import os
import tempfile
import yaml
import logging
from typing import Dict, Any, Optional, List, Tuple

logger = logging.getLogger(__name__)


class ConfigManager:
    CONFIG_FILES = [
        'compression.yaml',
        'logging.yaml',
    ]

    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = config_dir
        self.config = {}
        self._loaded_paths: Dict[str, str] = {}
        self._load_all_configs()

    @staticmethod
    def packaged_config_dir() -> str:
        return os.path.join(os.path.abspath(os.path.dirname(__file__)), 'config')

    def _load_all_configs(self):
        """Load packaged defaults, then overlay files from the explicit config dir"""
        for config_file in self.CONFIG_FILES:
            packaged_path = os.path.join(self.packaged_config_dir(), config_file)
            if os.path.exists(packaged_path):
                self._merge_file(packaged_path, config_file)

            if self.config_dir:
                config_path = os.path.join(self.config_dir, config_file)
                if os.path.exists(config_path) and os.path.abspath(config_path) != os.path.abspath(packaged_path):
                    self._merge_file(config_path, config_file)
                    logger.debug(f"Loaded config overrides from {config_path}")

            if config_file not in self._loaded_paths:
                logger.warning(f"Config file not found in '{self.config_dir}' or packaged defaults: {config_file}")

    def _merge_file(self, path: str, name: str) -> None:
        with open(path, 'r', encoding='utf-8') as file:
            config_data = yaml.safe_load(file)
        if config_data:
            self._deep_merge(self.config, config_data)
        self._loaded_paths[name] = path

    def _deep_merge(self, base: Dict, update: Dict) -> None:
        """Deep merge configuration dictionaries."""
        for key, value in update.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: get('compression.search.max_iterations')
        """
        keys = key_path.split('.')
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            logger.debug(f"Configuration key '{key_path}' not found, using default: {default}")
            return default

    def update_from_args(self, args_dict: Dict[str, Any]):
        """Update configuration with command line arguments"""
        applied = 0
        for key, value in args_dict.items():
            if value is not None:
                old_value = self.get(key)
                self._set_nested_value(key, value)
                applied += 1
                logger.info(f"Configuration override applied: {key} = {value} (was: {old_value})")

        if applied:
            logger.info(f"Applied {applied} CLI configuration overrides")
        else:
            logger.debug("No CLI configuration overrides to apply")

    def _set_nested_value(self, key_path: str, value: Any):
        """Set nested configuration value using dot notation"""
        keys = key_path.split('.')
        config_section = self.config

        for key in keys[:-1]:
            if key not in config_section or not isinstance(config_section[key], dict):
                config_section[key] = {}
            config_section = config_section[key]

        config_section[keys[-1]] = value

    def get_search_domain(self, fmt: Optional[str] = None) -> Tuple[int, int]:
        """Quality domain for a format, falling back to the default domain"""
        domains = self.get('compression.search.domains', {}) or {}
        domain = domains.get((fmt or '').lower()) or domains.get('default') or [10, 100]
        return int(domain[0]), int(domain[1])

    def get_encoder_chain(self, container: str) -> List[Dict[str, Any]]:
        """Fallback chain template for an output container (mp4 when unknown)"""
        encoders = self.get('compression.encoders', {}) or {}
        chain = encoders.get(container.lower()) or encoders.get('mp4') or []
        return [dict(step) for step in chain]

    def get_temp_dir(self) -> str:
        """Return the configured temp directory, or a capsize folder under the system temp dir"""
        temp_dir = self.get('compression.temp_dir') or os.path.join(tempfile.gettempdir(), 'capsize')
        os.makedirs(temp_dir, exist_ok=True)
        return temp_dir

    def get_output_dir(self) -> str:
        output_dir = self.get('compression.output_dir') or 'output'
        os.makedirs(output_dir, exist_ok=True)
        return output_dir

    def validate_config(self) -> bool:
        """Validate that required configuration values are present and sane"""
        positive_keys = [
            'compression.search.max_iterations',
            'compression.bitrate.floor_bps',
            'compression.segmentation.max_concurrent',
            'compression.detection.min_interval_seconds',
            'compression.detection.bitrate_threshold_kbps',
            'compression.detection.dedup_window_seconds',
            'compression.detection.timeout_seconds',
            'compression.cache.parameter_ttl_seconds',
            'compression.cache.parameter_max_entries',
            'compression.cache.metadata_ttl_seconds',
            'compression.cache.metadata_max_entries',
        ]

        for key in positive_keys:
            value = self.get(key)
            if value is None:
                logger.error(f"Required configuration key missing: {key}")
                return False
            if not isinstance(value, (int, float)) or value <= 0:
                logger.error(f"Invalid {key}: {value} (must be positive number)")
                return False

        safety_margin = self.get('compression.bitrate.safety_margin')
        if not isinstance(safety_margin, (int, float)) or not 0 < safety_margin <= 1:
            logger.error(f"Invalid safety_margin: {safety_margin} (must be in (0, 1])")
            return False

        band = self.get('compression.search.early_exit_band', [])
        if not isinstance(band, list) or len(band) != 2 or not 0 < band[0] <= band[1] <= 1:
            logger.error(f"Invalid early_exit_band: {band} (must be [low, high] within (0, 1])")
            return False

        domains = self.get('compression.search.domains', {})
        if not isinstance(domains, dict) or 'default' not in domains:
            logger.error("search.domains must be a dictionary with a 'default' entry")
            return False
        for fmt, domain in domains.items():
            if (not isinstance(domain, list) or len(domain) != 2
                    or not all(isinstance(v, int) for v in domain) or domain[0] > domain[1]):
                logger.error(f"Invalid search domain for {fmt}: {domain} (must be [low, high] integers)")
                return False

        rate_control = self.get('compression.rate_control', 'bitrate')
        if rate_control not in ('bitrate', 'quality'):
            logger.error(f"Invalid rate_control: {rate_control} (must be 'bitrate' or 'quality')")
            return False

        encoders = self.get('compression.encoders', {})
        if not isinstance(encoders, dict) or not encoders:
            logger.error("encoders must define at least one fallback chain")
            return False
        for container, chain in encoders.items():
            if not isinstance(chain, list) or not chain:
                logger.error(f"Encoder chain for {container} must be a non-empty list")
                return False
            for step in chain:
                if not isinstance(step, dict) or 'codec' not in step:
                    logger.error(f"Invalid encoder chain step for {container}: {step}")
                    return False

        logger.info("Configuration validation passed")
        return True
