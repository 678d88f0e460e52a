import os
import sys

import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()


CREDENTIAL_KEYS = [
    'SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET',
    'TIDAL_CLIENT_ID', 'TIDAL_CLIENT_SECRET', 'TIDAL_COUNTRY_CODE',
    'YOUTUBE_API_KEY',
    'TUNEBRIDGE_PAGE_DELAY_MS', 'TUNEBRIDGE_MAX_WORKERS',
    'TUNEBRIDGE_SEARCH_LIMIT', 'TUNEBRIDGE_HTTP_TIMEOUT',
]


@pytest.fixture(autouse=True)
def _clear_credentials_env():
    """Ensure catalog credentials do not leak across tests.
    A developer .env may set these variables; clear before each test
    and restore afterwards so tests explicitly setting them remain deterministic.
    """
    backup = {k: os.environ.get(k) for k in CREDENTIAL_KEYS}
    for k in CREDENTIAL_KEYS:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
