# src/fraudwatch_client/pipeline.py

"""
Authenticated request pipeline.

Every outgoing call goes through AuthenticatedPipeline.request(), which
attaches the current bearer token and recovers from an expired access token:

    Idle --first 401--> Refreshing --refresh settles--> Idle

Only one refresh call is outstanding at a time. Requests that hit a 401 while
a refresh is in flight wait on a future and are re-sent, in the order they
queued, once it settles. A request is retried at most once; if the refresh
is impossible or fails, the session is cleared and AuthExpired is raised.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError as PydanticValidationError

from .errors import (
    DEFAULT_ERROR_MESSAGE,
    ApiError,
    AuthExpired,
    NetworkError,
    ServerError,
    ValidationError,
    extract_error_message,
    extract_field_errors,
)
from .session import SessionManager
from .session_data import RefreshResponse

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Session expired. Please log in again."


@dataclass
class ApiRequest:
    method: str
    path: str
    body: Any = None  # sent as JSON
    form: Optional[Dict[str, str]] = None  # sent as application/x-www-form-urlencoded
    params: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    retried: bool = False
    token_used: Optional[str] = field(default=None, repr=False)


@dataclass
class ApiResult:
    data: Any
    status_code: int


SendFn = Callable[[ApiRequest, Dict[str, str]], Awaitable[httpx.Response]]
UnauthorizedCallback = Callable[[ApiError], Any]


class HttpxSender:
    """Default send primitive: one shared httpx.AsyncClient bound to the API base URL."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def __call__(self, request: ApiRequest, headers: Dict[str, str]) -> httpx.Response:
        return await self.client.request(
            request.method,
            request.path,
            json=request.body if request.form is None else None,
            data=request.form,
            params=request.params,
            headers=headers,
        )


def decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def raise_for_response(response: httpx.Response) -> Any:
    """Returns the decoded body of a 2xx response, otherwise raises the matching ApiError."""
    payload = decode_body(response)
    if response.is_success:
        return payload

    status_code = response.status_code
    message = extract_error_message(payload, default=response.reason_phrase or DEFAULT_ERROR_MESSAGE)
    if status_code == 401:
        raise AuthExpired(message, status_code=status_code, payload=payload)

    field_errors = extract_field_errors(payload)
    if status_code == 422 or (status_code == 400 and field_errors):
        raise ValidationError(message, status_code=status_code, payload=payload, field_errors=field_errors)
    raise ServerError(message, status_code=status_code, payload=payload)


class AuthenticatedPipeline:
    def __init__(
        self,
        session: SessionManager,
        send: SendFn,
        refresh_path: str = "/auth/refresh",
        rotate_refresh_token: bool = True,
        on_unauthorized: Optional[UnauthorizedCallback] = None,
    ) -> None:
        self.session = session
        self._send = send
        self.refresh_path = refresh_path
        self.rotate_refresh_token = rotate_refresh_token
        self.on_unauthorized = on_unauthorized

        self._refresh_task: Optional[asyncio.Task] = None
        self._pending: List[asyncio.Future] = []
        # (access token the failed episode started from, the error it settled with)
        self._failed_episode: Optional[Tuple[str, ApiError]] = None

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def request(self, call: ApiRequest) -> ApiResult:
        response = await self._dispatch(call, self.session.access_token)
        if response.status_code == 401 and not call.retried:
            response = await self._recover(call, response)
        elif response.status_code == 401:
            logger.info("%s %s was rejected again after a retry; giving up.", call.method, call.path)
        return ApiResult(data=raise_for_response(response), status_code=response.status_code)

    async def refresh(self) -> str:
        """Runs a refresh episode (or joins the one in flight) and returns the new access token."""
        if self.session.refresh_token is None:
            raise self._fail_without_refresh_token()
        return await self._await_refresh()

    async def revoke_refresh_token(self, logout_path: str) -> Any:
        """Asks the backend to revoke the current refresh token. Does not touch the local session."""
        call = ApiRequest("POST", logout_path, body={"refresh_token": self.session.refresh_token})
        return (await self.request(call)).data

    async def _dispatch(self, call: ApiRequest, token: Optional[str]) -> httpx.Response:
        headers = dict(call.headers)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        call.token_used = token
        try:
            return await self._send(call, headers)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {call.path} timed out.") from e
        except httpx.RequestError as e:
            raise NetworkError(f"Could not connect to server: {e}") from e

    async def _recover(self, call: ApiRequest, response: httpx.Response) -> httpx.Response:
        failed = self._failed_episode
        if failed is not None and call.token_used == failed[0] and self.session.access_token is None:
            # Sent before a refresh that has since failed; that episode already logged out.
            logger.debug("%s %s was sent before a failed refresh; reusing its error.", call.method, call.path)
            raise failed[1]

        if self.session.refresh_token is None:
            raise self._fail_without_refresh_token(decode_body(response))

        current = self.session.access_token
        if current is not None and current != call.token_used and not self.refresh_in_flight:
            # A refresh settled while this request was on the wire.
            logger.debug("%s %s used a stale token; retrying with the current one.", call.method, call.path)
            token = current
        else:
            token = await self._await_refresh()

        call.retried = True
        return await self._dispatch(call, token)

    async def _await_refresh(self) -> str:
        # Every caller, the initiator included, waits on its own future in FIFO
        # order. The refresh task belongs to the pipeline, so cancelling a caller
        # only drops that caller's future.
        waiter = asyncio.get_running_loop().create_future()
        self._pending.append(waiter)
        if self._refresh_task is None:
            logger.info("Access token rejected; refreshing.")
            self._refresh_task = asyncio.ensure_future(
                self._run_refresh(self.session.refresh_token, self.session.access_token)
            )
        else:
            logger.debug("Refresh in flight; %d request(s) waiting.", len(self._pending))
        return await waiter

    async def _run_refresh(self, refresh_token: str, rejected_token: Optional[str]) -> None:
        try:
            token = await self._call_refresh(refresh_token)
        except Exception as e:
            message = e.message if isinstance(e, ApiError) else str(e)
            logger.warning("Token refresh failed: %s", message)
            # A timed-out or unreachable refresh stays a NetworkError; everything else means the session is gone.
            if isinstance(e, NetworkError):
                failure: ApiError = e
            else:
                failure = AuthExpired(
                    f"{SESSION_EXPIRED_MESSAGE} ({message})" if message else SESSION_EXPIRED_MESSAGE,
                    status_code=401,
                    payload=getattr(e, "payload", None),
                )
                failure.__cause__ = e
            if rejected_token is not None:
                self._failed_episode = (rejected_token, failure)
            self._settle(error=failure)
            self.session.logout()
            self._notify_unauthorized(failure)
        else:
            logger.info("Token refreshed; releasing %d waiting request(s).", len(self._pending))
            self._failed_episode = None
            self._settle(token=token)
        finally:
            self._refresh_task = None
            # Only reachable with waiters left if the refresh task itself was cancelled.
            for waiter in self._pending:
                waiter.cancel()
            self._pending = []

    async def _call_refresh(self, refresh_token: str) -> str:
        call = ApiRequest("POST", self.refresh_path, body={"refresh_token": refresh_token})
        response = await self._dispatch(call, None)
        data = raise_for_response(response)
        try:
            refreshed = RefreshResponse.model_validate(data)
        except PydanticValidationError as e:
            raise ServerError(
                "Refresh response did not contain an access token.",
                status_code=response.status_code,
                payload=data,
            ) from e

        self.session.set_token(refreshed.access_token)
        if self.rotate_refresh_token and refreshed.refresh_token:
            self.session.set_refresh_token(refreshed.refresh_token)
        return refreshed.access_token

    def _settle(self, token: Optional[str] = None, error: Optional[BaseException] = None) -> None:
        pending, self._pending = self._pending, []
        for waiter in pending:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(token)

    def _fail_without_refresh_token(self, payload: Any = None) -> AuthExpired:
        logger.info("Access token rejected and no refresh token available; logging out.")
        message = extract_error_message(payload, default=SESSION_EXPIRED_MESSAGE)
        failure = AuthExpired(message, status_code=401, payload=payload)
        self.session.logout()
        self._notify_unauthorized(failure)
        return failure

    def _notify_unauthorized(self, failure: ApiError) -> None:
        if self.on_unauthorized is None:
            return
        try:
            self.on_unauthorized(failure)
        except Exception:
            logger.exception("on_unauthorized callback failed")
