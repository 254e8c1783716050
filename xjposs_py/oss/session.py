"""Credential lifecycle

`CredentialStore` holds the live credential and its refresh alarm.
`RefreshCoordinator` renews it with at most one refresh call in flight.
`Session` owns both for one login, from `init` to `teardown`.
"""

from typing import Optional, Callable, List, Any
from concurrent.futures import Future
import threading
import time
import logging

from xjposs_py.oss.errors import AuthFailure
from xjposs_py.oss.inner import Credential

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SKEW_SECONDS = 60

Clock = Callable[[], float]
TimerFactory = Callable[[float, Callable[[], Any]], Any]
Refresher = Callable[[Credential], Credential]


class CredentialStore:
    """Holder of the current `Credential`

    Args:
        refresh_skew_seconds (int): The alarm fires this many seconds before the credential expires.
        clock (Clock): Returns the current epoch seconds.
        timer_factory (TimerFactory): Makes a started-on-`start()` timer, e.g. `threading.Timer`.
    """

    def __init__(
        self,
        refresh_skew_seconds: int = DEFAULT_REFRESH_SKEW_SECONDS,
        clock: Clock = time.time,
        timer_factory: TimerFactory = threading.Timer,
    ):
        self._refresh_skew_seconds = refresh_skew_seconds
        self._clock = clock
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._credential: Optional[Credential] = None
        self._alarm: Any = None

        self._on_alarm: Optional[Callable[[], Any]] = None
        self._logout_listeners: List[Callable[[], Any]] = []

    def on_alarm(self, callback: Callable[[], Any]):
        """Set the callback run when the refresh alarm fires"""

        self._on_alarm = callback

    def add_logout_listener(self, callback: Callable[[], Any]):
        """Add a callback run after the credential is cleared"""

        self._logout_listeners.append(callback)

    def get(self) -> Optional[Credential]:
        return self._credential

    def set(self, credential: Credential):
        with self._lock:
            self._cancel_alarm()
            self._credential = credential

            delay = credential.expires_at - self._refresh_skew_seconds - self._clock()
            if delay <= 0:
                # The next rejected request will refresh it
                logger.debug("CredentialStore.set: no alarm, delay: %s", delay)
                return

            timer = self._timer_factory(delay, self._fire_alarm)
            if hasattr(timer, "daemon"):
                timer.daemon = True
            timer.start()
            self._alarm = timer
            logger.debug("CredentialStore.set: refresh alarm in %.1fs", delay)

    def clear(self):
        """Cancel the alarm and drop the credential, then notify logout listeners"""

        with self._lock:
            self._cancel_alarm()
            self._credential = None

        for listener in list(self._logout_listeners):
            try:
                listener()
            except Exception:
                logger.exception("CredentialStore.clear: logout listener %r fails", listener)

    def _cancel_alarm(self):
        if self._alarm is not None:
            self._alarm.cancel()
            self._alarm = None

    def _fire_alarm(self):
        with self._lock:
            self._alarm = None

        if self._on_alarm is not None:
            self._on_alarm()


class RefreshCoordinator:
    """Serialize credential refreshes

    Only one refresh network call is in flight at any time. Callers arriving
    while it is in flight wait for it and share its outcome.

    Args:
        store (CredentialStore): The store updated by refreshes.
        refresher (Refresher): Does the refresh network call authorized by the given credential
            and returns the new credential. It raises on failure.
    """

    def __init__(self, store: CredentialStore, refresher: Refresher):
        self._store = store
        self._refresher = refresher

        self._lock = threading.Lock()
        self._in_flight: Optional[Future] = None
        self._waiters = 0

        self.refresh_count = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    @property
    def pending_waiters(self) -> int:
        return self._waiters

    def ensure_fresh_token(self, stale_token: Optional[str] = None) -> Credential:
        """Return a credential renewed by the current or a new refresh

        Args:
            stale_token (Optional[str]): The token a request was rejected with.
                If the store already holds another token, it is returned with no refresh.

        Raise `AuthFailure` if the refresh fails. The store is cleared in that case.
        """

        with self._lock:
            flight = self._in_flight
            if flight is None:
                current = self._store.get()
                if current is None:
                    raise AuthFailure("No credential to refresh")
                if stale_token is not None and current.token != stale_token:
                    return current

                flight = Future()
                self._in_flight = flight
                leader = True
            else:
                self._waiters += 1
                leader = False

        if not leader:
            try:
                return flight.result()
            finally:
                with self._lock:
                    self._waiters -= 1

        try:
            credential = self._refresh(current)
            # A failing `set` (e.g. the alarm can not be started) fails the flight too
            self._store.set(credential)
        except BaseException as err:
            failure = err if isinstance(err, AuthFailure) else AuthFailure("Refreshing credential fails", error=err)
            logger.warning("RefreshCoordinator: refresh fails: %s", err)
            self._store.clear()
            flight.set_exception(failure)
            if failure is err:
                raise
            raise failure from err
        else:
            flight.set_result(credential)
            return credential
        finally:
            if not flight.done():
                flight.set_exception(AuthFailure("Refreshing credential is interrupted"))
            with self._lock:
                self._in_flight = None

    def refresh_now(self) -> Credential:
        """Refresh through the single-flight gate, even if the credential is not stale"""

        return self.ensure_fresh_token()

    def _refresh(self, current: Credential) -> Credential:
        self.refresh_count += 1
        logger.debug("RefreshCoordinator: refresh starts, count: %s", self.refresh_count)
        return self._refresher(current)


class Session:
    """The credential context of one login

    It is created once and passed to the classes which send authorized requests.
    `init` starts a login session and `teardown` ends it.

    Args:
        refresher (Refresher): See `RefreshCoordinator`.
        refresh_skew_seconds (int): See `CredentialStore`.
        clock (Clock): See `CredentialStore`.
        timer_factory (TimerFactory): See `CredentialStore`.
    """

    def __init__(
        self,
        refresher: Optional[Refresher] = None,
        refresh_skew_seconds: int = DEFAULT_REFRESH_SKEW_SECONDS,
        clock: Clock = time.time,
        timer_factory: TimerFactory = threading.Timer,
    ):
        self._clock = clock
        self.store = CredentialStore(
            refresh_skew_seconds=refresh_skew_seconds,
            clock=clock,
            timer_factory=timer_factory,
        )
        self.coordinator = RefreshCoordinator(self.store, self._do_refresh)
        self._refresher = refresher

        self.store.on_alarm(self._refresh_on_alarm)

    def set_refresher(self, refresher: Refresher):
        self._refresher = refresher

    def now(self) -> int:
        return int(self._clock())

    @property
    def credential(self) -> Optional[Credential]:
        return self.store.get()

    @property
    def is_authenticated(self) -> bool:
        return self.store.get() is not None

    def init(self, credential: Credential):
        """Start the session with the credential gotten from login"""

        self.store.set(credential)

    def teardown(self):
        """End the session"""

        self.store.clear()

    def ensure_fresh_token(self, stale_token: Optional[str] = None) -> Credential:
        return self.coordinator.ensure_fresh_token(stale_token=stale_token)

    def refresh_now(self) -> Credential:
        return self.coordinator.refresh_now()

    def add_logout_listener(self, callback: Callable[[], Any]):
        self.store.add_logout_listener(callback)

    def _do_refresh(self, credential: Credential) -> Credential:
        if self._refresher is None:
            raise AuthFailure("No refresher is set")
        return self._refresher(credential)

    def _refresh_on_alarm(self):
        try:
            self.coordinator.ensure_fresh_token()
        except AuthFailure as err:
            # The session is cleared already
            logger.warning("Session: scheduled refresh fails: %s", err)
