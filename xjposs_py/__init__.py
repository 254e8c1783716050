from xjposs_py.oss import XjpOss, XjpOssApi, Session

__version__ = "0.1.0"

__all__ = ["XjpOss", "XjpOssApi", "Session"]
