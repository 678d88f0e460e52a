import json
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import dotenv_values

from tunebridge.domain.entities import Service


class ConfigError(Exception):
    """Configuration error."""
    pass


SPOTIFY_SCOPES = ('playlist-modify-public',)
TIDAL_SCOPES = ('user.read', 'collection.read', 'playlists.write', 'collection.write', 'playlists.read')
YOUTUBE_SCOPES = ('https://www.googleapis.com/auth/youtube',)

SCOPES: Mapping[Service, tuple] = {
    Service.SPOTIFY: SPOTIFY_SCOPES,
    Service.TIDAL: TIDAL_SCOPES,
    Service.YOUTUBE: YOUTUBE_SCOPES,
}

_REQUIRED_KEYS: Mapping[Service, tuple] = {
    Service.SPOTIFY: ('SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET'),
    Service.TIDAL: ('TIDAL_CLIENT_ID', 'TIDAL_CLIENT_SECRET'),
    Service.YOUTUBE: ('YOUTUBE_API_KEY',),
}

_DEFAULTS = {
    'TIDAL_COUNTRY_CODE': 'US',
    'TUNEBRIDGE_PAGE_DELAY_MS': '200',
    'TUNEBRIDGE_MAX_WORKERS': '4',
    'TUNEBRIDGE_SEARCH_LIMIT': '10',
    'TUNEBRIDGE_HTTP_TIMEOUT': '10',
}


@dataclass(frozen=True)
class OAuthToken:
    """Canonical stored form of a provider's OAuth token."""

    service: str
    user_id: int
    access_token: str
    refresh_token: Optional[str]
    expires_at: Optional[datetime]
    token_type: str = 'Bearer'

    @property
    def refreshable(self) -> bool:
        return bool(self.refresh_token)

    @classmethod
    def from_provider_token(cls, service: Service, user_id: int,
                            token: Mapping[str, Any],
                            now: Optional[datetime] = None) -> 'OAuthToken':
        """Convert a provider token payload into the stored form.

        A payload without a refresh token is valid but not refreshable; only
        a missing access token is an error.
        """
        access_token = token.get('access_token')
        if not access_token:
            raise ConfigError(f"{service.value} token has no access_token")

        now = now or datetime.now(timezone.utc)
        expires_at = None
        if token.get('expires_at') is not None:
            expires_at = datetime.fromtimestamp(float(token['expires_at']), tz=timezone.utc)
        elif token.get('expires_in') is not None:
            expires_at = now + timedelta(seconds=float(token['expires_in']))

        return cls(
            service=service.value,
            user_id=user_id,
            access_token=access_token,
            refresh_token=token.get('refresh_token') or None,
            expires_at=expires_at,
            token_type=token.get('token_type') or 'Bearer',
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            'service': self.service,
            'user_id': self.user_id,
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'token_type': self.token_type,
        }


class SecretManager:
    """Manages application secrets and configuration."""

    def __init__(self, config_dir: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        """Initialize secret manager."""
        self.config_dir = Path(config_dir) if config_dir else Path.home() / '.tunebridge'
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.tokens_file = self.config_dir / 'tokens.json'
        self.env_file = self.config_dir / '.env'
        self._environ = environ if environ is not None else os.environ

    def get_scopes(self, service: Service) -> List[str]:
        """Get required OAuth scopes for a service."""
        return list(SCOPES[service])

    def get_scope_string(self, service: Service) -> str:
        """Get scopes as space-separated string."""
        return ' '.join(self.get_scopes(service))

    def load_env_vars(self) -> Dict[str, str]:
        """Load variables from the config directory's .env file."""
        if not self.env_file.exists():
            return {}
        try:
            values = dotenv_values(self.env_file)
        except OSError as e:
            raise ConfigError(f"Failed to load .env file {self.env_file}: {e}")
        return {k: v for k, v in values.items() if v is not None}

    def save_env_vars(self, env_vars: Dict[str, str]) -> None:
        """Save environment variables to .env file."""
        try:
            with open(self.env_file, 'w') as f:
                for key, value in env_vars.items():
                    f.write(f"{key}={value}\n")
        except IOError as e:
            raise ConfigError(f"Failed to save .env file {self.env_file}: {e}")

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Process environment first, then the config .env, then built-in defaults."""
        value = self._environ.get(key)
        if value is None or not str(value).strip():
            value = self.load_env_vars().get(key)
        if value is None or not str(value).strip():
            value = _DEFAULTS.get(key, default)
        return value

    def get_int(self, key: str) -> int:
        value = self.get(key)
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{key} must be an integer, got {value!r}")

    def get_float(self, key: str) -> float:
        value = self.get(key)
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{key} must be a number, got {value!r}")

    def get_service_config(self, service: Service) -> Dict[str, str]:
        """Get the credentials a catalog adapter needs."""
        config = {}
        for key in _REQUIRED_KEYS[service]:
            value = self.get(key)
            if not value:
                raise ConfigError(f"{key} not found in environment")
            config[key.split('_', 1)[1].lower()] = value
        if service == Service.TIDAL:
            config['country_code'] = self.get('TIDAL_COUNTRY_CODE')
        return config

    def enabled_services(self) -> List[Service]:
        """Services whose credentials are all present."""
        return [s for s, ok in self.validate_configuration().items() if ok]

    def validate_configuration(self) -> Dict[Service, bool]:
        """Validate which catalogs have complete credentials."""
        return {
            service: all(self.get(key) for key in keys)
            for service, keys in _REQUIRED_KEYS.items()
        }

    def load_tokens(self) -> Dict[str, Any]:
        """Load tokens from tokens.json file."""
        if not self.tokens_file.exists():
            return {}

        try:
            with open(self.tokens_file, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load tokens from {self.tokens_file}: {e}")

    def save_token(self, token: OAuthToken) -> None:
        """Store one user's token for a service in tokens.json."""
        tokens = self.load_tokens()
        tokens.setdefault(token.service, {})[str(token.user_id)] = token.to_json()
        try:
            with open(self.tokens_file, 'w') as f:
                json.dump(tokens, f, indent=2, ensure_ascii=False)
        except IOError as e:
            raise ConfigError(f"Failed to save tokens to {self.tokens_file}: {e}")

    def get_token(self, service: Service, user_id: int) -> Optional[OAuthToken]:
        data = self.load_tokens().get(service.value, {}).get(str(user_id))
        if not data:
            return None
        expires_at = data.get('expires_at')
        return OAuthToken(
            service=data['service'],
            user_id=int(data['user_id']),
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            token_type=data.get('token_type', 'Bearer'),
        )

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        validation = self.validate_configuration()

        return {
            'config_dir': str(self.config_dir),
            'tokens_file': str(self.tokens_file),
            'env_file': str(self.env_file),
            'services': {service.value: ok for service, ok in validation.items()},
            'page_delay_ms': self.get('TUNEBRIDGE_PAGE_DELAY_MS'),
            'max_workers': self.get('TUNEBRIDGE_MAX_WORKERS'),
            'search_limit': self.get('TUNEBRIDGE_SEARCH_LIMIT'),
        }


# Global instance, created lazily so importing never touches the home directory
secret_manager: Optional[SecretManager] = None


def get_secret_manager() -> SecretManager:
    """Get global secret manager instance."""
    global secret_manager
    if secret_manager is None:
        secret_manager = SecretManager()
    return secret_manager


def setup_config(config_dir: Optional[str] = None) -> SecretManager:
    """Setup configuration with custom directory."""
    global secret_manager
    secret_manager = SecretManager(config_dir)
    return secret_manager
