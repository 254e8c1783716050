from typing import Union
from pathlib import Path
from os import PathLike
import mimetypes

PathType = Union["str", PathLike, Path]


def exists(localpath: PathType) -> bool:
    localpath = Path(localpath)
    return localpath.exists()


def guess_content_type(localpath: PathType) -> str:
    content_type, _ = mimetypes.guess_type(str(localpath))
    return content_type or "application/octet-stream"
