from xjposs_py.oss import XjpOssApi
from xjposs_py.commands.display import display_files
from xjposs_py.commands.log import get_logger

logger = get_logger(__name__)


def list_files(
    api: XjpOssApi,
    skip: int = 0,
    limit: int = 100,
    all: bool = False,
    show_size: bool = True,
    show_date: bool = False,
    show_file_id: bool = False,
    show_url: bool = False,
):
    if all:
        oss_files = api.list_files_all(limit=limit)
    else:
        oss_files = api.list_files(skip=skip, limit=limit)

    logger.debug("`list_files`: %s files", len(oss_files))
    display_files(
        oss_files,
        show_size=show_size,
        show_date=show_date,
        show_file_id=show_file_id,
        show_url=show_url,
    )
