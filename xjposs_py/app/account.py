from typing import Optional
from dataclasses import dataclass
from pathlib import Path
import pickle
import logging

from xjposs_py.oss import XjpOssApi, XjpOssBaseError
from xjposs_py.oss.inner import Credential, OssUser
from xjposs_py.common.path import PathType

logger = logging.getLogger(__name__)


@dataclass
class AuthData:
    """The auth data kept between runs"""

    credential: Optional[Credential] = None
    user: Optional[OssUser] = None


class AuthState:
    """Authentication state of the app

    It keeps the logged in user, mirrors the session of `api` and saves both
    to `data_path`. When the session ends (logout or a credential which can
    not be renewed), the user is dropped and the saved data is cleared.
    """

    def __init__(self, api: XjpOssApi, data_path: Optional[PathType] = None):
        self._api = api
        self._data_path = Path(data_path).expanduser() if data_path else None

        self.user: Optional[OssUser] = None
        self.error: Optional[str] = None

        api.session.add_logout_listener(self._on_logout)

    @staticmethod
    def load(api: XjpOssApi, data_path: PathType) -> "AuthState":
        """Restore the auth state saved at `data_path`"""

        state = AuthState(api, data_path=data_path)
        path = Path(data_path).expanduser()
        if not path.exists():
            return state

        try:
            with path.open("rb") as fd:
                data = pickle.load(fd)
        except Exception as err:
            logger.warning("AuthState.load: can not load %s: %s", path, err)
            return state

        if isinstance(data, AuthData) and data.credential is not None:
            api.session.init(data.credential)
            state.user = data.user
        return state

    @property
    def is_authenticated(self) -> bool:
        return self._api.is_authenticated and self.user is not None

    def save(self, data_path: Optional[PathType] = None):
        data_path = data_path or self._data_path
        if not data_path:
            return

        path = Path(data_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        data = AuthData(credential=self._api.credential, user=self.user)
        with path.open("wb") as fd:
            pickle.dump(data, fd)

    def login(self, username: str, password: str) -> OssUser:
        self.error = None
        try:
            self._api.login(username, password)
            user = self._api.current_user()
        except XjpOssBaseError as err:
            self.user = None
            self.error = err.message or "Login failed"
            raise

        self.user = user
        self.save()
        return user

    def logout(self):
        self._api.logout()
        self.user = None
        self.error = None
        self.save()

    def check_auth(self) -> bool:
        """Verify the restored credential with backend

        The session is ended if it is not accepted.
        """

        if not self._api.is_authenticated:
            self.user = None
            return False

        try:
            self.user = self._api.current_user()
        except XjpOssBaseError as err:
            logger.debug("AuthState.check_auth: fails: %s", err)
            self._api.logout()
            return False

        self.save()
        return True

    def clear_error(self):
        self.error = None

    def _on_logout(self):
        self.user = None
        self.save()
