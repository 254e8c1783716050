from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.box import SIMPLE

from xjposs_py.oss.inner import Credential, OssFile, OssUser, MultipartProgress
from xjposs_py.utils import format_date, human_size


def display_files(
    oss_files: List[OssFile],
    show_size: bool = True,
    show_date: bool = False,
    show_file_id: bool = False,
    show_url: bool = False,
):
    if not oss_files:
        return

    table = Table(box=SIMPLE, padding=0, show_edge=False)
    table.add_column("Filename", overflow="fold")
    if show_size:
        table.add_column("Size", justify="right")
    if show_date:
        table.add_column("Updated Time", justify="center")
    if show_file_id:
        table.add_column("File ID", justify="right")
    table.add_column("Description", overflow="fold")
    if show_url:
        table.add_column("URL", overflow="fold")

    for oss_file in oss_files:
        row = [oss_file.original_filename or oss_file.filename]
        if show_size:
            row.append(human_size(oss_file.file_size or 0))
        if show_date:
            row.append(format_date(oss_file.updated_at) if oss_file.updated_at else "")
        if show_file_id:
            row.append(str(oss_file.id))
        row.append(oss_file.description or "")
        if show_url:
            row.append(oss_file.oss_url)
        table.add_row(*row)

    console = Console()
    console.print(table)


def display_user_info(user_info: OssUser, credential: Optional[Credential] = None):
    created_at = format_date(user_info.created_at) if user_info.created_at else ""

    _tempt = (
        f"user id: {user_info.id}\n"
        f"user name: {user_info.username}\n"
        f"full name: {user_info.full_name or ''}\n"
        f"email: {user_info.email or ''}\n"
        f"active: {user_info.is_active}\n"
        f"created at: {created_at}\n"
    )
    if credential is not None:
        _tempt += f"\ntoken type: {credential.token_type}\nexpire time: {format_date(credential.expires_at)}\n"

    console = Console()
    console.print(_tempt, highlight=True)


def display_multipart_progress(progress: MultipartProgress):
    console = Console()
    console.print(
        f"upload id: {progress.upload_id}\n"
        f"status: {progress.status or ''}\n"
        f"parts: {len(progress.completed_parts)}/{progress.total_parts} ({progress.percent:.1f}%)",
        highlight=True,
    )
