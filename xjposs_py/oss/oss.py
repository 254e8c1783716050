from typing import Optional, Dict, List, Union, Any, Callable, IO
from enum import Enum
import os
import logging

import requests  # type: ignore
from requests_toolbelt import MultipartEncoderMonitor

from xjposs_py.common.net import make_http_session
from xjposs_py.common.io import SliceIO
from xjposs_py.oss.errors import (
    AuthFailure,
    RequestFailure,
    handle_error,
    make_request_failure,
    parse_response,
)
from xjposs_py.oss.inner import Credential
from xjposs_py.oss.session import Session

logger = logging.getLogger(__name__)

XJPOSS_API_URL = os.getenv("XJPOSS_API_URL", "https://oss.xiaojinpro.com")

DEFAULT_REQUEST_TIMEOUT = 30

OSS_UA = "xjposs-py"
OSS_HEADERS = {"User-Agent": OSS_UA, "Accept": "application/json"}


class Method(Enum):
    Head = "HEAD"
    Get = "GET"
    Post = "POST"
    Put = "PUT"
    Delete = "DELETE"


class OssNode(Enum):
    """XJP OSS backend nodes which are relative to the base url"""

    Login = "auth/login"
    Refresh = "auth/refresh"
    Me = "auth/me"

    Files = "files/"
    File = "files/{file_id}"
    DownloadUrl = "files/{file_id}/download"
    PresignDownload = "files/presign/download"

    SmartUpload = "files/smart-upload"
    SmartUploadComplete = "files/smart-upload/complete"
    MultipartComplete = "files/multipart/{upload_id}/complete"
    MultipartProgress = "files/multipart/{upload_id}/progress"
    MultipartAbort = "files/multipart/{upload_id}/abort"

    Health = "health"

    def url(self, base_url: str, **kwargs: Any) -> str:
        return f"{base_url.rstrip('/')}/{self.value.format(**kwargs)}"


class XjpOss:
    """XJP Object Storage Service Raw API

    The core class is used to interact with the XJP OSS backend and the object store.
    It provides the basic operations of the service and handles the raw requests and responses.

    Every authorized request goes through `XjpOss._request`, which attaches the
    credential of `session` and, when the backend rejects it with 401, renews it
    and replays the request once.

    A `RequestFailure` error will be raised if the backend returns a non-2xx status,
    an `AuthFailure` error if the credential can not be renewed.

    Args:
        base_url (str): The backend base url.
        session (Session, optional): The credential context. A new one is made if not given.
        request_timeout (float): The timeout of every request in seconds. Default is 30.
        max_keepalive_connections (int): The max keepalive connections. Default is 50.
        max_connections (int): The max number of connections in the pool. Default is 50.
    """

    def __init__(
        self,
        base_url: str = XJPOSS_API_URL,
        session: Optional[Session] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_keepalive_connections: int = 50,
        max_connections: int = 50,
    ):
        self._base_url = base_url
        self._request_timeout = request_timeout

        self._session = make_http_session(
            max_keepalive_connections=max_keepalive_connections,
            max_connections=max_connections,
        )
        # The object store is another host and the presigned urls carry their own credentials
        self._upload_session = make_http_session(
            max_keepalive_connections=max_keepalive_connections,
            max_connections=max_connections,
        )

        self._auth = session or Session()
        self._auth.set_refresher(self.refresh)

        self._api_key: Optional[str] = None

    def __str__(self) -> str:
        return f"""XjpOss

    base_url: {self._base_url}
    credential: {self._auth.credential!r}
    api_key: {'set' if self._api_key else 'unset'}
    """

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def session(self) -> Session:
        return self._auth

    def set_api_key(self, api_key: str):
        """Use the api key when no credential is present"""

        self._api_key = api_key

    def clear_api_key(self):
        self._api_key = None

    def _url(self, node: OssNode, **kwargs: Any) -> str:
        return node.url(self._base_url, **kwargs)

    def _authorization(self, credential: Optional[Credential]) -> Optional[str]:
        if credential is not None:
            return credential.authorization()
        if self._api_key:
            return f"ApiKey {self._api_key}"
        return None

    def _send(
        self,
        http: requests.Session,
        method: Method,
        url: str,
        headers: Dict[str, str],
        **kwargs,
    ) -> requests.Response:
        kwargs.setdefault("timeout", self._request_timeout)
        try:
            return http.request(method.value, url, headers=headers, **kwargs)
        except Exception as err:
            raise RequestFailure(f"XjpOss._request: {method.value} {url}: {err}", error=err) from err

    def _request(
        self,
        method: Method,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        data: Union[str, bytes, Dict[str, str], Any] = None,
        json: Any = None,
        authorize: bool = True,
        **kwargs,
    ) -> requests.Response:
        """Send a request to the backend

        With `authorize`, the current credential is attached and a 401 response
        leads to one refresh and one replay. A second 401 ends the session.
        """

        base_headers = dict(OSS_HEADERS)
        if headers:
            base_headers.update(headers)

        if json is not None:
            base_headers["Content-Type"] = "application/json"

        retried = False
        while True:
            req_headers = dict(base_headers)

            credential = self._auth.credential
            if authorize and "Authorization" not in req_headers:
                authorization = self._authorization(credential)
                if authorization:
                    req_headers["Authorization"] = authorization

            resp = self._send(
                self._session, method, url, req_headers, params=params, data=data, json=json, **kwargs
            )

            if not authorize or resp.status_code != 401:
                return resp

            if retried:
                logger.warning("XjpOss._request: %s %s is rejected after refreshing", method.value, url)
                self._auth.teardown()
                raise AuthFailure(f"{method.value} {url} is rejected after refreshing the credential")

            if credential is None:
                # Nothing to refresh. Api key or anonymous requests are not replayed.
                raise AuthFailure(f"{method.value} {url} requires authentication")

            logger.debug("XjpOss._request: %s %s gets 401, refresh and replay", method.value, url)
            self._auth.ensure_fresh_token(stale_token=credential.token)
            retried = True

    # Auth
    # {{{
    def login(self, username: str, password: str) -> Credential:
        """Login with username and password, then start the session"""

        url = self._url(OssNode.Login)
        resp = self._request(Method.Post, url, json=dict(username=username, password=password), authorize=False)
        if resp.status_code >= 400:
            err = make_request_failure(resp)
            if resp.status_code == 401:
                raise AuthFailure(err.detail or "Login failed", error=err)
            raise err

        credential = Credential.from_(parse_response(resp), self._auth.now())
        self._auth.init(credential)
        return credential

    def refresh(self, credential: Credential) -> Credential:
        """Exchange the credential for a new one

        It is called by the refresh coordinator only. Call `Session.refresh_now`
        to refresh out of band.
        """

        url = self._url(OssNode.Refresh)
        headers = {"Authorization": credential.authorization()}
        resp = self._request(Method.Post, url, headers=headers, authorize=False)
        if resp.status_code == 401:
            raise AuthFailure("The refresh is rejected")

        info = parse_response(resp)
        info.setdefault("token_type", credential.token_type)
        return Credential.from_(info, self._auth.now())

    def logout(self):
        self._auth.teardown()

    @handle_error
    def me(self):
        url = self._url(OssNode.Me)
        return self._request(Method.Get, url)

    def verify_token(self, token: str) -> bool:
        """Check whether the token is accepted by the backend

        It does not touch the session.
        """

        url = self._url(OssNode.Me)
        try:
            resp = self._request(Method.Get, url, headers={"Authorization": f"Bearer {token}"}, authorize=False)
        except RequestFailure:
            return False
        return resp.status_code < 400

    # }}}

    # Files
    # {{{
    @handle_error
    def list_files(self, skip: int = 0, limit: int = 100):
        url = self._url(OssNode.Files)
        return self._request(Method.Get, url, params=dict(skip=skip, limit=limit))

    @handle_error
    def get_file(self, file_id: int):
        url = self._url(OssNode.File, file_id=file_id)
        return self._request(Method.Get, url)

    @handle_error
    def update_file(
        self,
        file_id: int,
        filename: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[str] = None,
    ):
        url = self._url(OssNode.File, file_id=file_id)
        data = dict(filename=filename, description=description, tags=tags)
        data = {k: v for k, v in data.items() if v is not None}
        return self._request(Method.Put, url, json=data)

    @handle_error
    def delete_file(self, file_id: int):
        url = self._url(OssNode.File, file_id=file_id)
        return self._request(Method.Delete, url)

    @handle_error
    def download_url(self, file_id: int, redirect: bool = False):
        url = self._url(OssNode.DownloadUrl, file_id=file_id)
        return self._request(Method.Get, url, params=dict(redirect=str(redirect).lower()))

    @handle_error
    def presign_download(self, oss_key: str):
        url = self._url(OssNode.PresignDownload)
        return self._request(Method.Post, url, json=dict(oss_key=oss_key))

    @handle_error
    def health(self):
        url = self._url(OssNode.Health)
        return self._request(Method.Get, url, authorize=False)

    # }}}

    # Upload
    # {{{
    @handle_error
    def smart_upload(self, file_meta: Dict[str, Any]):
        """Ask the backend for an upload plan

        file_meta (dict):
            filename, content_type, file_size and optional description, tags.
            The backend decides `mode` (single or multipart) by `file_size`.
        """

        url = self._url(OssNode.SmartUpload)
        return self._request(Method.Post, url, json=file_meta)

    @handle_error
    def smart_upload_complete(self, file_meta: Dict[str, Any], oss_key: Optional[str] = None, file_id: Optional[int] = None):
        """Register the object uploaded by a single presigned PUT as a file record

        It only carries metadata. The content is already in the object store.
        """

        url = self._url(OssNode.SmartUploadComplete)
        data = dict(file_meta)
        if oss_key:
            data["oss_key"] = oss_key
        if file_id is not None:
            data["file_id"] = file_id
        return self._request(Method.Post, url, json=data)

    @handle_error
    def multipart_complete(self, upload_id: str, parts: List[Dict[str, Any]]):
        """Tell the backend that all parts are uploaded

        parts (list):
            [{"part_number": int, "etag": str}] ascending by part_number.
        """

        url = self._url(OssNode.MultipartComplete, upload_id=upload_id)
        return self._request(Method.Post, url, json=dict(parts=parts))

    @handle_error
    def multipart_progress(self, upload_id: str):
        url = self._url(OssNode.MultipartProgress, upload_id=upload_id)
        return self._request(Method.Get, url)

    @handle_error
    def multipart_abort(self, upload_id: str):
        url = self._url(OssNode.MultipartAbort, upload_id=upload_id)
        return self._request(Method.Put, url)

    def upload_slice(
        self,
        io: Union[SliceIO, IO],
        url: str,
        callback_for_monitor: Optional[Callable[[int], Any]] = None,
        content_type: Optional[str] = None,
    ) -> str:
        """Upload the content of io to the presigned url

        Return the integrity tag (ETag) returned from the object store, "" if there is none.
        """

        data: Any = io
        if callback_for_monitor is not None:
            data = MultipartEncoderMonitor(io, callback=lambda monitor: callback_for_monitor(monitor.bytes_read))

        headers = {"User-Agent": OSS_UA}
        if content_type:
            headers["Content-Type"] = content_type

        resp = self._send(self._upload_session, Method.Put, url, headers, data=data)
        if resp.status_code >= 400:
            raise make_request_failure(resp)

        return (resp.headers.get("ETag") or "").strip()

    # }}}
