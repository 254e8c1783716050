from typing import Optional, List, Tuple, Sequence, Dict, Iterator
from pathlib import Path
from concurrent.futures import ThreadPoolExecutor, as_completed
import queue
import threading

from rich.progress import TaskID

from xjposs_py.oss import XjpOssApi
from xjposs_py.oss.errors import XjpOssBaseError, PartUploadError, UploadError
from xjposs_py.oss.inner import (
    FileMeta,
    MultipartProgress,
    OssFile,
    PartDescriptor,
    PartResult,
    UploadMode,
    UploadPlan,
    UploadProgress,
)
from xjposs_py.common.concurrent import Executor
from xjposs_py.common.io import SliceIO
from xjposs_py.common.path import PathType, exists
from xjposs_py.common.progress_bar import (
    add_upload_task,
    advance_upload_task,
    finish_upload_task,
    stop_upload_progress,
)
from xjposs_py.commands.log import get_logger

logger = get_logger(__name__)


def part_range(part_number: int, part_size: int, file_size: int) -> Tuple[int, int]:
    """The byte range `[start, end)` of the part `part_number` (1-based)"""

    assert part_number >= 1 and part_size > 0

    start = (part_number - 1) * part_size
    end = min(part_number * part_size, file_size)
    assert start < end or file_size == 0, f"Part {part_number} is out of the file of {file_size} bytes"
    return start, end


def part_ranges(file_size: int, part_size: int) -> List[Tuple[int, int]]:
    """All parts' byte ranges of a file of `file_size` bytes"""

    total_parts = -(-file_size // part_size)
    return [part_range(k, part_size, file_size) for k in range(1, total_parts + 1)]


class ProgressStream:
    """A stream of `UploadProgress` events of one upload attempt

    It is finite: iteration ends when the upload ends. It can not be restarted.
    `cancel` stops delivering events, the upload itself goes on.

    Examples:

        ```python
        >>> stream = ProgressStream()
        >>> task = prepare_upload(api, "/local/file", progress_stream=stream)
        >>> threading.Thread(target=task.run).start()
        >>> for progress in stream:
        >>>     print(f"{progress.percent:.1f}%")
        ```
    """

    _END = object()

    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._cancelled = threading.Event()
        self._iterated = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def put(self, progress: UploadProgress):
        with self._lock:
            if self._closed:
                return
            self._queue.put(progress)

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(self._END)

    def cancel(self):
        self._cancelled.set()
        self.close()

    def __iter__(self) -> Iterator[UploadProgress]:
        with self._lock:
            if self._iterated:
                raise RuntimeError("A ProgressStream can not be restarted")
            self._iterated = True
        return self._events()

    def _events(self) -> Iterator[UploadProgress]:
        while True:
            item = self._queue.get()
            if item is self._END or self._cancelled.is_set():
                return
            yield item


class UploadTask:
    """Run an `UploadPlan` to the end

    Single mode: one PUT of the whole file to the presigned url, then the
    registration of the file record.

    Multipart mode: the parts are PUT concurrently, at most `max_workers` at a
    time. A part without integrity tag fails the whole upload and no more
    parts are dispatched. When all parts succeed, the upload is completed with
    the parts ascending by part number.

    Args:
        api (XjpOssApi): XjpOssApi instance.
        localpath (PathType): The local file.
        file_meta (FileMeta): The metadata sent to backend when planning.
        plan (UploadPlan): The plan returned from backend.
        max_workers (Optional[int]): The max number of concurrent part uploads.
            Defaults to `api.part_concurrency`.
        progress_stream (Optional[ProgressStream]): Receives progress events. It is closed when the task ends.
        show_progress (bool): Show a rich progress bar.
    """

    def __init__(
        self,
        api: XjpOssApi,
        localpath: PathType,
        file_meta: FileMeta,
        plan: UploadPlan,
        max_workers: Optional[int] = None,
        progress_stream: Optional[ProgressStream] = None,
        show_progress: bool = False,
    ):
        self._api = api
        self._localpath = localpath
        self._file_meta = file_meta
        self._plan = plan
        self._max_workers = max_workers or api.part_concurrency
        self._progress_stream = progress_stream

        self._lock = threading.Lock()
        self._report_lock = threading.Lock()
        self._stop = threading.Event()
        self._aborted = False
        self._completing = False

        self._part_results: Dict[int, PartResult] = {}
        self._completed_bytes = 0
        self._failure: Optional[PartUploadError] = None

        total = plan.total_parts if plan.mode == UploadMode.Multipart else plan.file_size
        self._progress = UploadProgress(completed=0, total=total, mode=plan.mode)

        self._task_id: Optional[TaskID] = None
        if show_progress:
            self._task_id = add_upload_task(str(localpath), plan.file_size)

    @property
    def plan(self) -> UploadPlan:
        return self._plan

    @property
    def upload_id(self) -> Optional[str]:
        return self._plan.upload_id

    @property
    def progress(self) -> UploadProgress:
        return self._progress

    @property
    def part_results(self) -> List[PartResult]:
        """The succeeded parts, ascending by part number"""

        with self._lock:
            return [self._part_results[k] for k in sorted(self._part_results)]

    @property
    def aborted(self) -> bool:
        return self._aborted

    def run(self) -> OssFile:
        logger.debug(
            "`UploadTask.run`: %s, mode: %s, total_parts: %s",
            self._localpath,
            self._plan.mode.value,
            self._plan.total_parts,
        )
        try:
            if self._plan.mode == UploadMode.Single:
                return self._upload_single()
            else:
                return self._upload_multipart()
        finally:
            finish_upload_task(self._task_id)
            if self._progress_stream is not None:
                self._progress_stream.close()

    def abort(self):
        """Stop dispatching parts and release the upload at backend

        Parts in flight finish or fail by themselves.
        Raise `UploadError` if the upload is being completed.
        """

        with self._lock:
            if self._completing:
                raise UploadError("The upload is being completed and can not be aborted", self._localpath)
            self._aborted = True
            self._stop.set()

        logger.debug("`UploadTask.abort`: %s, upload_id: %s", self._localpath, self.upload_id)
        if self._plan.mode == UploadMode.Multipart:
            assert self.upload_id
            self._api.abort_multipart(self.upload_id)

    def _report(self, completed: int, completed_bytes: int):
        # Events leave in the order they pass the check
        with self._report_lock:
            if completed < self._progress.completed:
                return
            progress = UploadProgress(completed=completed, total=self._progress.total, mode=self._plan.mode)
            self._progress = progress

            advance_upload_task(self._task_id, completed_bytes)
            if self._progress_stream is not None:
                self._progress_stream.put(progress)

    def _begin_completing(self):
        with self._lock:
            if self._aborted:
                raise UploadError(f"Upload of {self._localpath} is aborted", self._localpath)
            self._completing = True

    def _upload_single(self) -> OssFile:
        assert self._plan.single_upload_url

        def callback_for_monitor(offset: int):
            self._report(offset, offset)

        io = SliceIO(self._localpath, 0, self._plan.file_size)
        try:
            self._api.upload_slice(
                io,
                self._plan.single_upload_url,
                callback_for_monitor=callback_for_monitor,
                content_type=self._file_meta.content_type,
            )
        finally:
            io.close()

        self._report(self._plan.file_size, self._plan.file_size)

        self._begin_completing()
        oss_file = self._api.register_upload(self._file_meta, self._plan)
        logger.debug("`_upload_single`: %s is registered as %s", self._localpath, oss_file.id)
        return oss_file

    def _upload_multipart(self) -> OssFile:
        assert self.upload_id

        with Executor(max_workers=self._max_workers) as executor:
            for part in self._plan.parts:
                executor.acquire()
                if self._stop.is_set():
                    executor.release()
                    break
                executor.submit_acquired(self._run_part, part)

        if self._failure is not None:
            logger.warning("`_upload_multipart`: %s fails at part %s", self._localpath, self._failure.part_number)
            raise self._failure

        self._begin_completing()

        part_results = self.part_results
        if len(part_results) != self._plan.total_parts:
            raise UploadError(
                f"Only {len(part_results)} of {self._plan.total_parts} parts are uploaded", self._localpath
            )

        oss_file = self._api.complete_multipart(self.upload_id, part_results)
        logger.debug("`_upload_multipart`: %s is completed as %s", self._localpath, oss_file.id)
        return oss_file

    def _run_part(self, part: PartDescriptor):
        # Record the outcome before the slot is released, so that no part is
        # dispatched after a failure
        try:
            result = self._upload_part(part)
        except PartUploadError as err:
            with self._lock:
                if self._failure is None:
                    self._failure = err
                self._stop.set()
            return

        with self._lock:
            self._part_results[part.part_number] = result
            self._completed_bytes += part.byte_range_size
            completed = len(self._part_results)
            completed_bytes = self._completed_bytes
        self._report(completed, completed_bytes)

    def _upload_part(self, part: PartDescriptor) -> PartResult:
        assert self._plan.part_size

        part_number = part.part_number
        start, end = part_range(part_number, self._plan.part_size, self._plan.file_size)
        io = SliceIO(self._localpath, start, end)
        try:
            integrity_tag = self._api.upload_slice(io, part.upload_url)
        except Exception as origin_err:
            msg = f'Part {part_number} of "{self._localpath}" fails. error: {origin_err}'
            logger.debug(msg)
            raise PartUploadError(msg, self._localpath, part_number, error=origin_err) from origin_err
        finally:
            io.close()

        if not integrity_tag:
            msg = f'Part {part_number} of "{self._localpath}" returns no integrity tag'
            logger.debug(msg)
            raise PartUploadError(msg, self._localpath, part_number)

        return PartResult(part_number=part_number, integrity_tag=integrity_tag)


def prepare_upload(
    api: XjpOssApi,
    localpath: PathType,
    description: Optional[str] = None,
    tags: Optional[str] = None,
    max_workers: Optional[int] = None,
    progress_stream: Optional[ProgressStream] = None,
    show_progress: bool = False,
) -> UploadTask:
    """Plan the upload of `localpath` and return the task to run it

    Raise `PlanningError` if the plan returned from backend is malformed.
    Nothing is transferred before `UploadTask.run`.
    """

    assert exists(localpath), f"`{localpath}` does not exist"

    file_meta = FileMeta.from_path(localpath, description=description, tags=tags)
    try:
        plan = api.plan_upload(file_meta)
    except BaseException:
        if progress_stream is not None:
            progress_stream.close()
        raise

    return UploadTask(
        api,
        localpath,
        file_meta,
        plan,
        max_workers=max_workers,
        progress_stream=progress_stream,
        show_progress=show_progress,
    )


def upload_file(
    api: XjpOssApi,
    localpath: PathType,
    description: Optional[str] = None,
    tags: Optional[str] = None,
    max_workers: Optional[int] = None,
    progress_stream: Optional[ProgressStream] = None,
    show_progress: bool = False,
) -> OssFile:
    """Upload a local file and return its file record

    The backend decides the upload mode (single or multipart).

    Raise exception if any error occurs:
        `PlanningError`: the plan is malformed, nothing is transferred.
        `PartUploadError`: a part fails. The uploaded parts stay in the object store
            until `abort` is called or backend reclaims them.
        `AuthFailure`: the credential can not be renewed.
        `RequestFailure`: the backend rejects a request.

    Examples:
    - Upload one file

        ```python
        >>> from xjposs_py.oss import XjpOssApi
        >>> from xjposs_py.commands.upload import upload_file
        >>> api = XjpOssApi(...)
        >>> api.login("username", "password")
        >>> oss_file = upload_file(api, "/local/file", description="demo")
        ```
    """

    task = prepare_upload(
        api,
        localpath,
        description=description,
        tags=tags,
        max_workers=max_workers,
        progress_stream=progress_stream,
        show_progress=show_progress,
    )
    try:
        return task.run()
    except XjpOssBaseError:
        raise
    except OSError as origin_err:
        msg = f'Upload "{localpath}" failed. error: {origin_err}'
        logger.debug(msg)
        raise UploadError(msg, localpath, error=origin_err) from origin_err


def upload(
    api: XjpOssApi,
    localpaths: Sequence[PathType],
    description: Optional[str] = None,
    tags: Optional[str] = None,
    max_workers: int = 1,
    part_concurrency: Optional[int] = None,
    show_progress: bool = False,
) -> List[OssFile]:
    """Upload the files in `localpaths`

    Use a `ThreadPoolExecutor` to upload `max_workers` files concurrently.
    Directories are skipped. Raise the first exception if any error occurs.
    """

    paths = [Path(p) for p in localpaths if Path(p).is_file()]
    logger.debug("======== Uploading start ========\n-> Size of localpaths: %s", len(paths))

    futures = []
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        for path in paths:
            fut = executor.submit(
                upload_file,
                api,
                path,
                description=description,
                tags=tags,
                max_workers=part_concurrency,
                show_progress=show_progress,
            )
            futures.append(fut)

    if show_progress:
        stop_upload_progress()

    for fut in as_completed(futures):
        # Raise the exception if the result of the future is an exception
        fut.result()

    return [fut.result() for fut in futures]


def get_progress(api: XjpOssApi, upload_id: str) -> MultipartProgress:
    """Get the server-tracked progress of a multipart upload, e.g. after a restart

    It is advisory only.
    """

    return api.multipart_progress(upload_id)


def abort(api: XjpOssApi, upload_id: str) -> None:
    """Release an unfinished multipart upload at backend"""

    api.abort_multipart(upload_id)
