import time

_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


def human_size(size: int) -> str:
    """e.g. 1536 -> '1.5KB'"""

    s = float(size)
    idx = 0
    while s >= 1024 and idx < len(_UNITS) - 1:
        s /= 1024
        idx += 1
    if idx == 0:
        return f"{int(s)}B"
    return f"{s:.1f}{_UNITS[idx]}"


def format_date(timestamp: int) -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(timestamp))
