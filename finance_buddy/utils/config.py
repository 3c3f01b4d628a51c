"""
Configuration Management

Centralized settings for the RAG core: YAML file, built-in defaults,
and environment overrides loaded from .env.
"""

import copy
import os
import yaml
from dotenv import load_dotenv
from pathlib import Path
from typing import Any, Dict, Optional

# Environment variable -> dot path
ENV_OVERRIDES = {
    'FINANCE_BUDDY_DB_PATH': 'rag.db_path',
    'FINANCE_BUDDY_EMBEDDINGS': 'embeddings.provider',
    'OLLAMA_BASE_URL': 'embeddings.ollama.base_url',
    'OPENAI_API_KEY': 'generation.api_key',
}

DEFAULT_SETTINGS: Dict[str, Any] = {
    'app': {
        'name': 'Finance Buddy RAG',
        'version': '1.0.0',
    },
    'logging': {
        'level': 'INFO',
    },
    'rag': {
        'db_path': 'data/rag_index.db',
        'chunk_max_chars': 800,
        'upload_chunk_chars': 500,
        'max_upload_bytes': 10 * 1024 * 1024,
        'top_k': 6,
    },
    'embeddings': {
        'provider': 'word_vectors',
        'word_vectors': {
            'path': 'data/glove.6B.100d.txt',
        },
        'sentence_model': {
            'model_name': 'all-MiniLM-L6-v2',
        },
        'ollama': {
            'model': 'nomic-embed-text',
            'base_url': 'http://localhost:11434',
            'timeout': 30,
        },
    },
    'generation': {
        'model': 'gpt-4o-mini',
        'api_key': None,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """Manages the settings file and environment overrides"""

    def __init__(self, config_root: str = "config"):
        self.config_root = Path(config_root)
        self.global_config: Dict[str, Any] = {}

    def load_global_config(self) -> dict:
        """Load settings.yaml merged over the defaults, then apply env overrides"""
        load_dotenv()
        settings_path = self.config_root / "settings.yaml"

        if settings_path.exists():
            with open(settings_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
            self.global_config = _deep_merge(DEFAULT_SETTINGS, loaded)
        else:
            self.global_config = copy.deepcopy(DEFAULT_SETTINGS)

        for env_var, path in ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value:
                self.set(path, value)

        return self.global_config

    def get(self, path: str, default: Any = None) -> Any:
        """
        Get config value using dot notation.

        Examples:
            config.get('rag.top_k')
            config.get('embeddings.ollama.model')
        """
        if not self.global_config:
            self.load_global_config()

        keys = path.split('.')
        value = self.global_config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, path: str, value: Any):
        """Set a config value using dot notation (in memory only)"""
        keys = path.split('.')
        node = self.global_config
        for key in keys[:-1]:
            node = node.setdefault(key, {})
        node[keys[-1]] = value

    def section(self, path: str) -> Dict[str, Any]:
        """Get a config subtree as a dict (empty when missing)"""
        value = self.get(path, {})
        return dict(value) if isinstance(value, dict) else {}


# Global instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_root: Optional[str] = None) -> ConfigManager:
    """Get global config manager"""
    global _config_manager
    if _config_manager is None or config_root is not None:
        _config_manager = ConfigManager(config_root or "config")
    return _config_manager


def load_global_config() -> dict:
    """Convenience function to load global config"""
    return get_config_manager().load_global_config()
