"""
Configuration Manager for EventChasor
Loads the YAML config and exposes dot-path access plus a few process-wide gates.
"""

import os
import yaml
import asyncio
from typing import Dict, Any, Optional
from pathlib import Path
import logging

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "EVENTCHASOR_CONFIG"


class ConfigManager:
    """
    Centralized configuration manager for EventChasor

    Loads configuration from a YAML file and provides easy access to nested values.
    Falls back to a minimal built-in config if the file is missing or broken.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager

        Args:
            config_path: Path to config file. If None, uses $EVENTCHASOR_CONFIG or the default location.
        """
        self._config = {}
        self._config_path = config_path or os.getenv(CONFIG_ENV_VAR) or self._get_default_config_path()
        self._load_config()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path"""
        project_root = Path(__file__).parent.parent
        config_file = project_root / "config" / "config.yaml"
        if config_file.exists():
            return str(config_file)

        fallback_config = Path(__file__).parent / "config.yaml"
        if fallback_config.exists():
            return str(fallback_config)

        # Missing file is not fatal, _load_config falls back to defaults
        return str(config_file)

    def _load_config(self):
        """Load configuration from YAML file"""
        try:
            with open(self._config_path, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}
            logger.info(f"Configuration loaded from: {self._config_path}")
        except FileNotFoundError:
            logger.error(f"Configuration file not found: {self._config_path}")
            self._config = self._get_default_config()
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration: {e}")
            self._config = self._get_default_config()

        self._apply_environment_overrides()

    def _apply_environment_overrides(self):
        """Apply environment-specific configuration overrides"""
        env = os.getenv("EVENTCHASOR_ENV") or self.get('system.environment', 'development')
        self.set('system.environment', env)

        if env == 'production':
            self.set('logging.level', 'WARNING')
            self.set('system.debug', False)
        elif env == 'testing':
            self.set('logging.level', 'DEBUG')
            # tests never touch the real snapshot files
            self.set('cache.save_every_ops', 10 ** 6)

    def _get_default_config(self) -> Dict[str, Any]:
        """Get minimal default configuration if file loading fails"""
        return {
            'system': {
                'name': 'EventChasor',
                'version': '1.0.0',
                'environment': 'development',
                'debug': True,
            },
            'logging': {'level': 'INFO'},
            'query_builder': {'max_query_length': 256, 'domain_batch_size': 3},
            'search': {'min_results_threshold': 5, 'database_limit': 50, 'fallback_confidence': 0.6},
            'extraction': {
                'max_urls': 20,
                'batch_threshold': 10,
                'concurrency': 12,
                'per_host_gap_ms': 250,
                'poll_timeout_s': 15,
                'poll_step_ms': 800,
                'min_confidence': 0.3,
                'job_retention_s': 60,
            },
            'cache': {'path': './data/url_extractions.json', 'ttl_days': 14},
            'event_store': {'path': './data/collected_events.json'},
            'admission': {'tolerance_days': 7, 'override_confidence': 0.75, 'undated_fallback_limit': 5},
            'dedup': {'timeout_seconds': 300, 'cleanup_interval_seconds': 60},
            'search_terms': {},
        }

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation

        Examples:
            config.get('extraction.concurrency')
            config.get('search.firecrawl.timeout', 15)
        """
        value = self._config
        try:
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any):
        """Set configuration value using dot notation"""
        keys = key.split('.')
        config = self._config
        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section (e.g., 'extraction', 'search_terms')"""
        return self.get(section, {}) or {}

    def validate(self) -> bool:
        """Check that the sections the pipeline reads are present"""
        required_sections = ['system', 'query_builder', 'search', 'extraction', 'cache', 'admission']
        for section in required_sections:
            if section not in self._config:
                logger.warning(f"Missing required configuration section: {section}")
                return False
        logger.info("Configuration validation passed")
        return True

    def __str__(self) -> str:
        return f"ConfigManager(path={self._config_path}, sections={list(self._config.keys())})"

    def __repr__(self) -> str:
        return self.__str__()


# Global configuration instance
_config_instance = None

# Global semaphore instances
_global_gate = None
_extraction_gate = None


def get_config() -> ConfigManager:
    """Get global configuration instance (singleton pattern)"""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigManager()
    return _config_instance


def get_global_gate() -> asyncio.Semaphore:
    """Semaphore bounding concurrent pipeline requests served by the API"""
    global _global_gate
    if _global_gate is None:
        max_requests = get_config().get('performance.concurrency.max_concurrent_requests', 100)
        _global_gate = asyncio.Semaphore(max_requests)
        logger.info(f"Global gate initialized with limit: {max_requests}")
    return _global_gate


def get_extraction_gate() -> asyncio.Semaphore:
    """Semaphore bounding concurrent extraction runs (each run has its own worker pool)"""
    global _extraction_gate
    if _extraction_gate is None:
        limit = get_config().get('performance.concurrency.extraction_concurrent_limit', 8)
        _extraction_gate = asyncio.Semaphore(limit)
        logger.info(f"Extraction gate initialized with limit: {limit}")
    return _extraction_gate


def get_search_terms() -> Dict[str, Any]:
    """Industry term lists handed to the query builder"""
    return get_config().get_section('search_terms')


def get_log_level() -> str:
    return str(get_config().get('logging.level', 'INFO')).upper()
