from typing import Optional, IO
import os

from xjposs_py.common.path import PathType


class SliceIO:
    """A read-only view of the byte range `[start, end)` of a local file

    The file is opened lazily at the first `read` and closed when the range is
    exhausted or `close` is called, so many slices of one large file can be
    prepared without holding file descriptors or the whole content in memory.

    `len` is the attribute read by `requests` and `requests_toolbelt` to get
    the length of the body.
    """

    def __init__(self, localpath: PathType, start: int, end: int):
        assert 0 <= start <= end, f"Invalid range: [{start}, {end})"

        self._localpath = localpath
        self._start = start
        self._end = end
        self._offset = 0
        self._fd: Optional[IO[bytes]] = None

    @property
    def len(self) -> int:
        """The remaining length"""

        return self._end - self._start - self._offset

    def __len__(self) -> int:
        return self._end - self._start

    def tell(self) -> int:
        return self._offset

    def read(self, size: int = -1) -> bytes:
        remain = self.len
        if remain <= 0:
            self.close()
            return b""

        if size is None or size < 0 or size > remain:
            size = remain

        if self._fd is None:
            self._fd = open(self._localpath, "rb")
            self._fd.seek(self._start + self._offset)

        data = self._fd.read(size)
        self._offset += len(data)
        if self.len <= 0:
            self.close()
        return data

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence == os.SEEK_SET:
            pos = offset
        elif whence == os.SEEK_CUR:
            pos = self._offset + offset
        else:
            pos = len(self) + offset

        self._offset = max(0, min(pos, len(self)))
        if self._fd is not None:
            self._fd.seek(self._start + self._offset)
        return self._offset

    def close(self):
        if self._fd is not None:
            self._fd.close()
            self._fd = None
