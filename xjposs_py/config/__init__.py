from typing import Any, Optional
from types import SimpleNamespace
import os

import toml  # type: ignore

from xjposs_py.common.constant import OneM


def _to_buildin(obj: Any) -> Any:
    if isinstance(obj, SimpleNamespace):
        data = {}
        for field in getattr(obj, "__annotations__", {}):
            data[field] = getattr(obj, field)
        data.update(obj.__dict__)
        return {k: _to_buildin(v) for k, v in data.items()}
    elif isinstance(obj, list):
        return [_to_buildin(item) for item in obj]
    elif isinstance(obj, dict):
        return {k: _to_buildin(v) for k, v in obj.items()}
    else:
        return obj


class Server(SimpleNamespace):
    """Backend Configuration"""

    base_url: str = "https://oss.xiaojinpro.com"


class Auth(SimpleNamespace):
    """Credential Configuration"""

    # The credential is refreshed this many seconds before it expires
    refresh_skew_seconds: int = 60


class Upload(SimpleNamespace):
    """Upload Configuration"""

    part_concurrency: int = 4
    # Advisory only. The backend decides the upload mode.
    multipart_threshold: int = 100 * OneM
    request_timeout: float = 30


class AppConfig(SimpleNamespace):
    """App Configuration

    `XJPOSS_API_URL` overrides `server.base_url`.
    """

    server: Server
    auth: Auth
    upload: Upload

    def __init__(self, server: Optional[Server] = None, auth: Optional[Auth] = None, upload: Optional[Upload] = None):
        # Every config owns its sections
        super().__init__(server=server or Server(), auth=auth or Auth(), upload=upload or Upload())

    @classmethod
    def load(cls, path: str) -> "AppConfig":
        if os.path.exists(path):
            data = toml.load(path)
        else:
            data = {}

        config = cls(
            server=Server(**data.get("server", {})),
            auth=Auth(**data.get("auth", {})),
            upload=Upload(**data.get("upload", {})),
        )

        base_url = os.getenv("XJPOSS_API_URL")
        if base_url:
            config.server.base_url = base_url
        return config

    def dumps(self) -> str:
        return toml.dumps(_to_buildin(self))

    def dump(self, path: str):
        with open(path, "w") as f:
            toml.dump(_to_buildin(self), f)
