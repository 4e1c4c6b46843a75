"""Application configuration settings.

This module centralizes all configuration values loaded from:
1. config.base.yaml (shared defaults)
2. config.{env}.yaml (environment-specific: dev, staging, prod)
3. config.local.yaml (local overrides, git-ignored)
4. Environment variables (highest priority)

Default environment is 'development' (DEV).

Usage:
    from config.settings import config

    # Access config values
    secret = config.JWT_SECRET
    db_name = config.LF_DB_NAME

    # Check current environment
    env = config.ENV  # 'development', 'staging', or 'production'
"""
import os
from pathlib import Path
from typing import Optional, Any, Dict
import yaml


# Environment name mappings
ENV_ALIASES = {
    'dev': 'development',
    'development': 'development',
    'test': 'testing',
    'testing': 'testing',
    'staging': 'staging',
    'stage': 'staging',
    'prod': 'production',
    'production': 'production',
}

# Default environment
DEFAULT_ENV = 'development'


def _env_flag(name: str) -> Optional[bool]:
    env_val = os.getenv(name, '').lower()
    if env_val:
        return env_val in ('1', 'true', 'yes')
    return None


class Config:
    """Centralized application configuration.

    Loads configuration from YAML files based on environment.

    Priority (highest to lowest):
    1. Environment variables
    2. config.local.yaml (for local development overrides)
    3. config.{env}.yaml (environment-specific: dev, staging, prod)
    4. config.base.yaml (shared defaults)

    Environment is determined by:
    1. FLASK_ENV environment variable
    2. APP_ENV environment variable
    3. Default: 'development'
    """

    _config_data: Dict[str, Any] = {}
    _loaded: bool = False
    _current_env: str = DEFAULT_ENV

    def __init__(self):
        if not Config._loaded:
            self._load_config()

    @classmethod
    def _get_environment(cls) -> str:
        """Determine current environment from env vars or default to dev."""
        env = os.getenv('FLASK_ENV') or os.getenv('APP_ENV') or DEFAULT_ENV
        env = env.lower().strip()
        return ENV_ALIASES.get(env, DEFAULT_ENV)

    def _load_config(self):
        """Load configuration from YAML files based on environment."""
        config_dir = Path(__file__).parent
        Config._current_env = self._get_environment()

        Config._config_data = self._read_yaml(config_dir / 'config.base.yaml')

        env_config_map = {
            'development': 'config.dev.yaml',
            'testing': 'config.test.yaml',
            'staging': 'config.staging.yaml',
            'production': 'config.prod.yaml',
        }
        env_config_file = env_config_map.get(Config._current_env, 'config.dev.yaml')
        Config._config_data = self._deep_merge(
            Config._config_data, self._read_yaml(config_dir / env_config_file)
        )

        # Local overrides (not in git)
        Config._config_data = self._deep_merge(
            Config._config_data, self._read_yaml(config_dir / 'config.local.yaml')
        )

        Config._loaded = True

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _deep_merge(self, base: dict, override: dict) -> dict:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _get_yaml_value(self, *keys, default=None) -> Any:
        """Get a nested value from YAML config."""
        value = Config._config_data
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    @classmethod
    def reload(cls):
        """Reload configuration (useful for testing)."""
        cls._loaded = False
        cls._config_data = {}
        instance = cls()
        return instance

    # ==========================================================================
    # Environment Info
    # ==========================================================================

    @property
    def IS_TESTING(self) -> bool:
        return Config._current_env == 'testing'

    @property
    def IS_PROD(self) -> bool:
        return Config._current_env == 'production'

    # ==========================================================================
    # Application Settings
    # ==========================================================================

    @property
    def DEBUG(self) -> bool:
        """Flask debug mode."""
        flag = _env_flag('FLASK_DEBUG')
        if flag is not None:
            return flag
        return self._get_yaml_value('app', 'debug', default=False)

    @property
    def ENV(self) -> str:
        return Config._current_env

    @property
    def PORT(self) -> int:
        """Server port."""
        env_val = os.getenv('PORT')
        if env_val:
            return int(env_val)
        return self._get_yaml_value('app', 'port', default=5000)

    @property
    def APP_NAME(self) -> str:
        return os.getenv('APP_NAME') or self._get_yaml_value('app', 'name', default='Campus Lost & Found API')

    @property
    def APP_VERSION(self) -> str:
        return self._get_yaml_value('app', 'version', default='1.0.0')

    # ==========================================================================
    # Security Settings
    # ==========================================================================

    @property
    def JWT_SECRET(self) -> Optional[str]:
        """JWT secret key for token signing. Required in production."""
        secret = os.getenv('JWT_SECRET') or self._get_yaml_value('security', 'jwt', 'secret')
        if not secret and not self.IS_PROD:
            return 'dev-secret'
        return secret

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv('JWT_ALGORITHM') or self._get_yaml_value('security', 'jwt', 'algorithm', default='HS256')

    @property
    def ACCESS_TOKEN_EXPIRE_MINUTES(self) -> int:
        """Access token expiry in minutes."""
        env_val = os.getenv('ACCESS_TOKEN_MINUTES')
        if env_val:
            return int(env_val)
        return self._get_yaml_value('security', 'jwt', 'access_token_expire_minutes', default=10080)

    # ==========================================================================
    # Database Settings
    # ==========================================================================

    @property
    def MONGO_URI(self) -> str:
        """MongoDB connection URI."""
        return os.getenv('MONGO_URI') or self._get_yaml_value('database', 'mongo_uri', default='mongodb://localhost:27017')

    @property
    def LF_DB_NAME(self) -> str:
        """Database holding conversations, messages, profiles and listings."""
        return os.getenv('LF_DB_NAME') or self._get_yaml_value('database', 'name', default='lost_found_db')

    # ==========================================================================
    # CORS Settings
    # ==========================================================================

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv('CORS_ORIGINS') or self._get_yaml_value('cors', 'origins', default='*')

    @property
    def CORS_ORIGINS_LIST(self) -> list:
        """Get CORS origins as a list."""
        origins = self.CORS_ORIGINS
        if origins == '*':
            return ['*']
        return [o.strip() for o in origins.split(',') if o.strip()]

    # ==========================================================================
    # Messaging Settings
    # ==========================================================================

    @property
    def WORKER_THREADS(self) -> int:
        """Threads available for background history loads."""
        env_val = os.getenv('WORKER_THREADS')
        if env_val:
            return int(env_val)
        return self._get_yaml_value('messaging', 'worker_threads', default=8)

    @property
    def CLOSURE_FALLBACK_NAME(self) -> str:
        """Name used in the closing system message when the profile is unavailable."""
        return os.getenv('CLOSURE_FALLBACK_NAME') or self._get_yaml_value(
            'messaging', 'closure_fallback_name', default='A participant'
        )

    @property
    def HISTORY_LIMIT(self) -> int:
        """Maximum messages returned by one history load."""
        env_val = os.getenv('HISTORY_LIMIT')
        if env_val:
            return int(env_val)
        return self._get_yaml_value('messaging', 'history_limit', default=500)

    # ==========================================================================
    # Logging Settings
    # ==========================================================================

    @property
    def LOG_LEVEL(self) -> str:
        """Logging level."""
        env_val = os.getenv('LOG_LEVEL')
        if env_val:
            return env_val.upper()
        if self.LOG_DEBUG:
            return 'DEBUG'
        return self._get_yaml_value('logging', 'level', default='INFO')

    @property
    def LOG_DEBUG(self) -> bool:
        """Enable debug logging (verbose)."""
        flag = _env_flag('LOG_DEBUG')
        if flag is not None:
            return flag
        return self._get_yaml_value('logging', 'debug', default=False)

    @property
    def LOG_PATTERN(self) -> str:
        return os.getenv('LOG_PATTERN') or self._get_yaml_value('logging', 'pattern', default='%(message)s')

    @property
    def LOG_INCLUDE_DATETIME(self) -> bool:
        flag = _env_flag('LOG_INCLUDE_DATETIME')
        if flag is not None:
            return flag
        return self._get_yaml_value('logging', 'include_datetime', default=True)

    @property
    def LOG_INCLUDE_NAME(self) -> bool:
        flag = _env_flag('LOG_INCLUDE_NAME')
        if flag is not None:
            return flag
        return self._get_yaml_value('logging', 'include_name', default=True)

    @property
    def LOG_INCLUDE_LEVEL(self) -> bool:
        flag = _env_flag('LOG_INCLUDE_LEVEL')
        if flag is not None:
            return flag
        return self._get_yaml_value('logging', 'include_level', default=True)

    @property
    def LOG_DATE_FORMAT(self) -> str:
        return self._get_yaml_value('logging', 'date_format', default='%H:%M:%S')

    @property
    def LOG_FORMAT(self) -> str:
        """Build log format string based on config options."""
        pattern = self.LOG_PATTERN
        if pattern and pattern != '%(message)s':
            return pattern

        parts = []
        if self.LOG_INCLUDE_DATETIME:
            parts.append('%(asctime)s')
        if self.LOG_INCLUDE_NAME:
            parts.append('%(name)s')
        if self.LOG_INCLUDE_LEVEL:
            parts.append('%(levelname)s')
        parts.append('%(message)s')

        return ' - '.join(parts) if len(parts) > 1 else parts[0]

    def to_dict(self) -> Dict[str, Any]:
        """Export non-sensitive config as a dictionary (for debugging)."""
        return {
            'env': self.ENV,
            'app': {
                'name': self.APP_NAME,
                'version': self.APP_VERSION,
                'port': self.PORT,
                'debug': self.DEBUG,
            },
            'database': {
                'mongo_uri': '***' if self.MONGO_URI else None,
                'name': self.LF_DB_NAME,
            },
            'cors': {
                'origins': self.CORS_ORIGINS,
            },
            'messaging': {
                'worker_threads': self.WORKER_THREADS,
                'history_limit': self.HISTORY_LIMIT,
            },
            'logging': {
                'level': self.LOG_LEVEL,
            },
        }


# Singleton config instance
config = Config()


# =============================================================================
# Convenience exports
# =============================================================================

def get_env() -> str:
    return config.ENV
