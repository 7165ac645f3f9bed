import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from tsupdate.models import ConfigError
from tsupdate.utils import is_valid_site_url

PASSWORD_ENV_VAR = 'TSUPDATE_PASSWORD'
REQUIRED_KEYS = ('website', 'user', 'password', 'master_file', 'tag_file')


class Credentials:
    """Site location, login and local file names read from the credentials file."""
    def __init__(
        self,
        website: str,
        user: str,
        password: str,
        master_file: str,
        tag_file: str,
        realm: Optional[str] = None
    ):
        self.website = website
        self.user = user
        self.password = password
        self.master_file = master_file
        self.tag_file = tag_file
        self.realm = realm

    @property
    def auth(self):
        return (self.user, self.password)

    def __repr__(self) -> str:
        return f"Credentials(website={self.website!r}, user={self.user!r}, password='***')"


def _require_str(data: Dict[str, Any], key: str, path: Path) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Missing or invalid '{key}' in credentials file {path}")
    return value


def load_credentials(path: Union[str, Path]) -> Credentials:
    """Load the credentials YAML file.

    The password can be overridden with the TSUPDATE_PASSWORD
    environment variable, in which case the file may omit it.

    Raises:
        ConfigError: if the file can't be read or is missing a field
    """
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding='utf-8'))
    except OSError as e:
        raise ConfigError(f"Cannot read credentials file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in credentials file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Credentials file must contain a mapping: {path}")

    env_password = os.environ.get(PASSWORD_ENV_VAR)
    if env_password:
        data = dict(data, password=env_password)

    values = {key: _require_str(data, key, path) for key in REQUIRED_KEYS}

    if not is_valid_site_url(values['website']):
        raise ConfigError(f"Malformed website URL in {path}: {values['website']!r}")

    realm = data.get('realm')
    return Credentials(realm=str(realm) if realm is not None else None, **values)
