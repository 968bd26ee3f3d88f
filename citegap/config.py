"""User configuration: persisted settings and API key resolution."""

import os
import re
import sys
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml


API_KEY_ENV_VAR = 'SEMANTIC_SCHOLAR_API_KEY'
API_KEY_CONFIG_KEY = 'semantic_scholar_api_key'

logger = logging.getLogger(__name__)


def default_config_dir() -> Path:
    """Platform-conventional directory for citegap's user configuration."""
    home = Path.home()

    if sys.platform == 'win32':
        return Path(os.environ.get('APPDATA', home / 'AppData' / 'Roaming')) / 'citegap'
    if sys.platform == 'darwin':
        return home / 'Library' / 'Application Support' / 'citegap'
    return Path(os.environ.get('XDG_CONFIG_HOME', home / '.config')) / 'citegap'


class Config:
    """Key/value settings persisted as YAML in the user's config directory."""

    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.config_file = self.config_dir / 'config.yml'

    def load(self) -> Dict[str, Any]:
        """Load all settings; a corrupted file is treated as empty."""
        if not self.config_file.exists():
            return {}

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Config file {self.config_file} unreadable, ignoring it: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Config file {self.config_file} is not a mapping, ignoring it")
            return {}
        return data

    def save(self, config: Dict[str, Any]) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump(config, f, default_flow_style=False)

    def get(self, key: str) -> Any:
        return self.load().get(key)

    def set(self, key: str, value: Any) -> None:
        config = self.load()
        config[key] = value
        self.save(config)

    def remove(self, key: str) -> None:
        config = self.load()
        if key in config:
            del config[key]
            self.save(config)

    def get_all(self) -> Dict[str, Any]:
        return self.load()

    def get_semantic_scholar_api_key(self) -> Optional[str]:
        return self.get(API_KEY_CONFIG_KEY)

    def set_semantic_scholar_api_key(self, api_key: str) -> None:
        if not api_key or not isinstance(api_key, str):
            raise ValueError("API key must be a non-empty string")
        self.set(API_KEY_CONFIG_KEY, api_key.strip())

    def remove_semantic_scholar_api_key(self) -> None:
        self.remove(API_KEY_CONFIG_KEY)


def load_api_key_from_env_file(search_dirs: Optional[Iterable[Path]] = None) -> Optional[str]:
    """Find SEMANTIC_SCHOLAR_API_KEY in a .env file in the cwd or up to two parents."""
    if search_dirs is None:
        cwd = Path.cwd()
        search_dirs = [cwd, cwd.parent, cwd.parent.parent]

    pattern = re.compile(rf'^\s*{API_KEY_ENV_VAR}\s*=\s*(.+?)\s*$', re.MULTILINE)

    for directory in search_dirs:
        env_path = Path(directory) / '.env'
        if not env_path.is_file():
            continue
        try:
            content = env_path.read_text(encoding='utf-8')
        except OSError as e:
            logger.debug(f"Could not read {env_path}: {e}")
            continue
        match = pattern.search(content)
        if match:
            return match.group(1).strip('\'"')

    return None


def resolve_api_key(explicit: Optional[str] = None, config: Optional[Config] = None,
                    search_dirs: Optional[Iterable[Path]] = None) -> Optional[str]:
    """Resolve the Semantic Scholar API key.

    Precedence: explicit argument, environment variable, persisted config,
    project-local .env file.
    """
    if explicit:
        return explicit

    env_key = os.environ.get(API_KEY_ENV_VAR)
    if env_key:
        return env_key

    config = config or Config()
    config_key = config.get_semantic_scholar_api_key()
    if config_key:
        return config_key

    return load_api_key_from_env_file(search_dirs)
