from typing import Optional

from rich.progress import (
    Progress,
    TextColumn,
    BarColumn,
    DownloadColumn,
    TransferSpeedColumn,
    TimeRemainingColumn,
    TaskID,
)

# One bar per uploading file, shared by all upload threads
_upload_progress = Progress(
    TextColumn("[bold blue]{task.fields[filename]}", justify="right"),
    BarColumn(bar_width=40),
    "[progress.percentage]{task.percentage:>3.1f}%",
    "•",
    DownloadColumn(binary_units=True),
    "•",
    TransferSpeedColumn(),
    "•",
    TimeRemainingColumn(),
)


def start_upload_progress():
    if not _upload_progress.live.is_started:
        _upload_progress.start()


def stop_upload_progress():
    if _upload_progress.live.is_started:
        _upload_progress.stop()


def add_upload_task(filename: str, file_size: int) -> TaskID:
    start_upload_progress()
    return _upload_progress.add_task("upload", total=file_size, filename=filename)


def advance_upload_task(task_id: Optional[TaskID], uploaded_bytes: int):
    if task_id is not None and task_id in _upload_progress.task_ids:
        _upload_progress.update(task_id, completed=uploaded_bytes)


def finish_upload_task(task_id: Optional[TaskID]):
    if task_id is not None and task_id in _upload_progress.task_ids:
        _upload_progress.remove_task(task_id)
