from typing import Optional, List, Callable, Any, Union, IO
import logging

from xjposs_py.common.constant import OneM
from xjposs_py.common.io import SliceIO
from xjposs_py.oss.oss import XjpOss, XJPOSS_API_URL, DEFAULT_REQUEST_TIMEOUT
from xjposs_py.oss.session import Session
from xjposs_py.oss.inner import (
    Credential,
    FileMeta,
    MultipartProgress,
    OssDownloadUrl,
    OssFile,
    OssUser,
    PartResult,
    UploadMode,
    UploadPlan,
)

logger = logging.getLogger(__name__)

# Advisory only. The backend decides the upload mode.
DEFAULT_MULTIPART_THRESHOLD = 100 * OneM

# Balance between the overhead of every part request and the connection limits
# of backend and object store
DEFAULT_PART_CONCURRENCY = 4


class XjpOssApi:
    """XJP Object Storage Service API

    This is the wrapper of `XjpOss` class. It parses the raw content of response of
    XjpOss request into the inner data structions.

    Args:
        base_url (str): The backend base url.
        session (Session, optional): The credential context shared with other clients.
        request_timeout (float): The timeout of every request in seconds. Default is 30.
        multipart_threshold (int): The file size from which a multipart upload is expected.
            It is only used to log when the backend decides otherwise.
        part_concurrency (int): The default max number of concurrent part uploads. Default is 4.
        max_keepalive_connections (int): The max keepalive connections. Default is 50.
        max_connections (int): The max number of connections in the pool. Default is 50.
    """

    def __init__(
        self,
        base_url: str = XJPOSS_API_URL,
        session: Optional[Session] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        multipart_threshold: int = DEFAULT_MULTIPART_THRESHOLD,
        part_concurrency: int = DEFAULT_PART_CONCURRENCY,
        max_keepalive_connections: int = 50,
        max_connections: int = 50,
    ):
        self._xjposs = XjpOss(
            base_url=base_url,
            session=session,
            request_timeout=request_timeout,
            max_keepalive_connections=max_keepalive_connections,
            max_connections=max_connections,
        )
        self._multipart_threshold = multipart_threshold
        self._part_concurrency = part_concurrency

    @property
    def part_concurrency(self) -> int:
        return self._part_concurrency

    @property
    def session(self) -> Session:
        return self._xjposs.session

    @property
    def credential(self) -> Optional[Credential]:
        return self._xjposs.session.credential

    @property
    def is_authenticated(self) -> bool:
        return self._xjposs.session.is_authenticated

    def set_api_key(self, api_key: str):
        self._xjposs.set_api_key(api_key)

    def clear_api_key(self):
        self._xjposs.clear_api_key()

    # Auth
    def login(self, username: str, password: str) -> Credential:
        return self._xjposs.login(username, password)

    def logout(self):
        self._xjposs.logout()

    def current_user(self) -> OssUser:
        info = self._xjposs.me()
        return OssUser.from_(info)

    def verify_token(self, token: str) -> bool:
        return self._xjposs.verify_token(token)

    def refresh_now(self) -> Credential:
        return self._xjposs.session.refresh_now()

    # Files
    def list_files(self, skip: int = 0, limit: int = 100) -> List[OssFile]:
        info = self._xjposs.list_files(skip=skip, limit=limit) or []
        return [OssFile.from_(v) for v in info]

    def list_files_all(self, limit: int = 100) -> List[OssFile]:
        """List all file records page by page"""

        oss_files: List[OssFile] = []
        skip = 0
        while True:
            page = self.list_files(skip=skip, limit=limit)
            oss_files.extend(page)
            if len(page) < limit:
                break
            skip += limit
        return oss_files

    def get_file(self, file_id: int) -> OssFile:
        info = self._xjposs.get_file(file_id)
        return OssFile.from_(info)

    def update_file(
        self,
        file_id: int,
        filename: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[str] = None,
    ) -> OssFile:
        info = self._xjposs.update_file(file_id, filename=filename, description=description, tags=tags)
        return OssFile.from_(info)

    def delete_file(self, file_id: int) -> None:
        self._xjposs.delete_file(file_id)

    def download_url(self, file_id: int, redirect: bool = False) -> OssDownloadUrl:
        info = self._xjposs.download_url(file_id, redirect=redirect)
        return OssDownloadUrl.from_(info)

    def presign_download(self, oss_key: str) -> OssDownloadUrl:
        info = self._xjposs.presign_download(oss_key)
        return OssDownloadUrl.from_(info)

    def health(self) -> bool:
        info = self._xjposs.health() or {}
        return info.get("status") in ("ok", "healthy")

    # Upload
    def expected_mode(self, file_size: int) -> UploadMode:
        if file_size >= self._multipart_threshold:
            return UploadMode.Multipart
        return UploadMode.Single

    def plan_upload(self, file_meta: FileMeta) -> UploadPlan:
        """Get the upload plan of the file from backend

        The mode returned from backend is followed even if it differs from
        `expected_mode`. Raise `PlanningError` if the plan is malformed.
        """

        info = self._xjposs.smart_upload(file_meta.to_dict())
        plan = UploadPlan.from_(info, file_meta.file_size)

        expected = self.expected_mode(file_meta.file_size)
        if plan.mode != expected:
            logger.info(
                "`plan_upload`: backend chooses %s for %s (%s bytes), expected %s",
                plan.mode.value,
                file_meta.filename,
                file_meta.file_size,
                expected.value,
            )
        logger.debug(
            "`plan_upload`: mode: %s, total_parts: %s, part_size: %s", plan.mode.value, plan.total_parts, plan.part_size
        )
        return plan

    def upload_slice(
        self,
        io: Union[SliceIO, IO],
        url: str,
        callback_for_monitor: Optional[Callable[[int], Any]] = None,
        content_type: Optional[str] = None,
    ) -> str:
        return self._xjposs.upload_slice(io, url, callback_for_monitor=callback_for_monitor, content_type=content_type)

    def register_upload(self, file_meta: FileMeta, plan: UploadPlan) -> OssFile:
        """Create the file record for a single-mode upload"""

        info = self._xjposs.smart_upload_complete(file_meta.to_dict(), oss_key=plan.oss_key, file_id=plan.file_id)
        return OssFile.from_(info)

    def complete_multipart(self, upload_id: str, part_results: List[PartResult]) -> OssFile:
        """Finalize the multipart upload

        The parts are sent ascending by part number, whatever the order of `part_results`.
        """

        parts = [r.to_dict() for r in sorted(part_results, key=lambda r: r.part_number)]
        info = self._xjposs.multipart_complete(upload_id, parts)
        return OssFile.from_(info)

    def multipart_progress(self, upload_id: str) -> MultipartProgress:
        info = self._xjposs.multipart_progress(upload_id)
        progress = MultipartProgress.from_(info)
        if not progress.upload_id:
            progress.upload_id = upload_id
        return progress

    def abort_multipart(self, upload_id: str) -> None:
        self._xjposs.multipart_abort(upload_id)
