from .oss import XjpOss
from .api import XjpOssApi
from .session import Session, CredentialStore, RefreshCoordinator
from .errors import XjpOssBaseError, AuthFailure, PlanningError, PartUploadError, RequestFailure, UploadError

from .inner import *


__all__ = [
    "XjpOss",
    "XjpOssApi",
    "Session",
    "CredentialStore",
    "RefreshCoordinator",
    "XjpOssBaseError",
    "AuthFailure",
    "PlanningError",
    "PartUploadError",
    "RequestFailure",
    "UploadError",
]
