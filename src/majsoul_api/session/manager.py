"""Authenticated session against the game service.

The manager is the only owner of the login state. Other components wait on
:meth:`SessionManager.await_ready` and issue requests through
:meth:`SessionManager.call`. At most one login handshake is in flight at a
time, since the service accepts one handshake per connection.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Callable, Dict, Mapping, Optional, Union

from majsoul_api.errors import LoginError, SessionNotReadyError
from majsoul_api.session.state import SessionStates, can_transition
from majsoul_api.utils.logger_util import get_logger

logger = get_logger(__name__)

LOGIN_METHOD = "oauth2Login"
LOGOUT_NOTIFICATION = "NotifyAccountLogout"

LoginParams = Union[Mapping[str, Any], Callable[[], Mapping[str, Any]]]


def _terminate(code: int) -> None:
    sys.exit(code)


class SessionManager:
    """Login state machine with a broadcast ready gate.

    ``login_params`` is either the handshake parameters or a callable
    producing fresh ones for every attempt. ``fatal`` is invoked with exit
    code 1 when a handshake fails; the default exits the process.
    """

    def __init__(self, transport, login_params: LoginParams, fatal: Optional[Callable[[int], Any]] = None):
        self.transport = transport
        self._login_params = login_params
        self._fatal = fatal or _terminate
        self.state = SessionStates.LOGGED_OUT
        self._ready = asyncio.Event()
        self._login_task: Optional[asyncio.Future] = None
        self._logged_in_once = False
        self.handshakes = 0

    @property
    def is_ready(self) -> bool:
        return self.state is SessionStates.LOGGED_IN

    @property
    def login_in_flight(self) -> bool:
        return self._login_task is not None

    def _transition(self, to_state: SessionStates) -> None:
        if not can_transition(self.state, to_state):
            raise RuntimeError(f"invalid session transition {self.state.value} -> {to_state.value}")
        logger.debug("session %s -> %s", self.state.value, to_state.value)
        self.state = to_state

    async def start(self) -> None:
        """Subscribe to forced logouts and open the transport with login as its ready hook."""
        self.transport.on(LOGOUT_NOTIFICATION, self.on_forced_logout)
        await self.transport.open(self.login)

    async def close(self) -> None:
        await self.transport.close()

    async def login(self) -> None:
        if self.state is SessionStates.LOGGED_IN:
            logger.debug("login requested while logged in; nothing to do")
            return
        await self._ensure_login()

    def _ensure_login(self) -> asyncio.Future:
        if self._login_task is None:
            self._login_task = asyncio.ensure_future(self._handshake())
        return self._login_task

    def _params(self) -> Dict[str, Any]:
        params = self._login_params() if callable(self._login_params) else self._login_params
        return dict(params)

    async def _handshake(self) -> None:
        # the task slot is released on every exit so a later logout can log in again
        try:
            self._transition(SessionStates.LOGGING_IN)
            self._ready.clear()
            self.handshakes += 1
            try:
                await self.transport.send_async(LOGIN_METHOD, self._params())
            except Exception as exc:
                logger.critical("login failed, terminating: %s", exc, exc_info=True)
                self._transition(SessionStates.LOGGED_OUT)
                self._fatal(1)
                raise LoginError(f"login failed: {exc}") from exc
            self._transition(SessionStates.LOGGED_IN)
            self._logged_in_once = True
            logger.info("logged in (handshake #%d)", self.handshakes)
            self._ready.set()
        finally:
            self._login_task = None

    async def await_ready(self) -> None:
        """Suspend until logged in; returns at once when already logged in."""
        while self.state is not SessionStates.LOGGED_IN:
            await self._ready.wait()

    def on_forced_logout(self, notification: Any = None) -> None:
        """Handle the service ending the session: reset and log in again."""
        if self._login_task is not None:
            logger.info("forced logout while a login is in flight; not starting another")
            return
        logger.warning("forced logout by the service, logging in again")
        if self.state is not SessionStates.LOGGED_OUT:
            self._transition(SessionStates.LOGGED_OUT)
        self._ready.clear()
        self._ensure_login()

    async def call(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        if not self._logged_in_once:
            logger.error("%s called before the first successful login", method)
            raise SessionNotReadyError(f"{method} called before the first successful login")
        return await self.transport.send_async(method, dict(params or {}))
