from xjposs_py.config import AppConfig
from xjposs_py.oss import XjpOssApi, Session
from xjposs_py.commands.env import CONFIG_PATH


def load_config() -> AppConfig:
    return AppConfig.load(str(CONFIG_PATH))


def init_config(app_config: AppConfig):
    if not CONFIG_PATH.exists():
        save_config(app_config)


def save_config(app_config: AppConfig):
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    app_config.dump(str(CONFIG_PATH))


def make_api(app_config: AppConfig) -> XjpOssApi:
    """Make the api whose session and requests follow `app_config`"""

    session = Session(refresh_skew_seconds=app_config.auth.refresh_skew_seconds)
    return XjpOssApi(
        base_url=app_config.server.base_url,
        session=session,
        request_timeout=app_config.upload.request_timeout,
        multipart_threshold=app_config.upload.multipart_threshold,
        part_concurrency=app_config.upload.part_concurrency,
    )
