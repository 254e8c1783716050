from typing import Optional, Any
from functools import wraps
import logging

import requests

from xjposs_py.common.path import PathType

logger = logging.getLogger(__name__)


class XjpOssBaseError(Exception):
    """Base exception for all errors.

    Args:
        message (Optional[object]): The message object stringified as 'message' attribute
        keyword error (Exception): The original exception if any
    """

    def __init__(self, message: Optional[object], *args: Any, **kwargs: Any) -> None:
        self.inner_exception: Optional[BaseException] = kwargs.get("error")

        self.message = str(message)
        super().__init__(self.message, *args)


class RequestFailure(XjpOssBaseError):
    """The request failed at the transport level or the backend returned a non-2xx status.

    `status_code` is None when no response was received.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None, **kwargs: Any):
        self.status_code = status_code
        self.detail = detail
        super().__init__(message, **kwargs)


class AuthFailure(XjpOssBaseError):
    """The credential can not be renewed.

    The session has been cleared when this error is raised.
    """


class PlanningError(XjpOssBaseError):
    """The upload plan returned from backend misses required fields for its mode."""

    def __init__(self, message: str, plan: Any = None):
        self.plan = plan
        super().__init__(message)


class UploadError(XjpOssBaseError):
    """An error occurred while uploading a file."""

    def __init__(self, message: str, localpath: PathType, **kwargs: Any):
        self.localpath = localpath
        super().__init__(message, **kwargs)


class PartUploadError(UploadError):
    """A part of a multipart upload failed or returned no integrity tag."""

    def __init__(self, message: str, localpath: PathType, part_number: int, **kwargs: Any):
        self.part_number = part_number
        super().__init__(message, localpath, **kwargs)


def _detail_of(resp: requests.Response) -> Any:
    try:
        info = resp.json()
    except ValueError:
        return resp.text or None

    if isinstance(info, dict) and "detail" in info:
        return info["detail"]
    return info


def make_request_failure(resp: requests.Response) -> RequestFailure:
    detail = _detail_of(resp)
    msg = f"HTTP {resp.status_code}: {detail}" if detail else f"HTTP {resp.status_code}"
    return RequestFailure(msg, status_code=resp.status_code, detail=detail)


def parse_response(resp: requests.Response) -> Any:
    """Return the json content of a successful response, or raise `RequestFailure`"""

    if resp.status_code >= 400:
        raise make_request_failure(resp)

    if resp.status_code == 204 or not resp.content:
        return None

    try:
        return resp.json()
    except ValueError as err:
        raise RequestFailure(
            f"Invalid json response: {resp.text[:200]!r}", status_code=resp.status_code, error=err
        ) from err


def handle_error(func):
    """Handle error when calling XjpOss API.

    The wrapped method returns a `requests.Response`; the wrapper returns its
    json content and raises `RequestFailure` for non-2xx statuses.
    """

    @wraps(func)
    def check(*args, **kwargs):
        resp = func(*args, **kwargs)
        try:
            return parse_response(resp)
        except RequestFailure as err:
            logger.debug("`%s` fails: %s", func.__name__, err)
            raise

    return check
