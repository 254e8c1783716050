import requests
import requests.adapters


def make_http_session(
    max_keepalive_connections: int = 50,
    max_connections: int = 50,
    max_retries: int = 0,
) -> requests.Session:
    """Make a http session with keepalive connections and maximum connections

    `max_retries` is for connection errors only. It is 0 by default: a request
    is never resent by the transport itself.
    """

    session = requests.Session()
    adapter = requests.adapters.HTTPAdapter(
        pool_connections=max_keepalive_connections,
        pool_maxsize=max_connections,
        max_retries=max_retries,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session
