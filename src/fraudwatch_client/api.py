# src/fraudwatch_client/api.py

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from .config import Settings, get_settings
from .errors import ApiError, ServerError
from .persistence import SessionPersistence, build_persistence
from .pipeline import ApiRequest, AuthenticatedPipeline, HttpxSender, UnauthorizedCallback
from .session import SessionManager
from .session_data import LoginResponse, UserRecord

logger = logging.getLogger(__name__)


class ApiClient:
    """Verb helpers over the pipeline; each returns the decoded JSON body."""

    def __init__(self, pipeline: AuthenticatedPipeline) -> None:
        self.pipeline = pipeline

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        form: Optional[Dict[str, str]] = None,
    ) -> Any:
        call = ApiRequest(method.upper(), path, body=body, form=form, params=params, headers=dict(headers or {}))
        result = await self.pipeline.request(call)
        return result.data

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs: Any) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, body: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", path, body=body, **kwargs)

    async def put(self, path: str, body: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", path, body=body, **kwargs)

    async def patch(self, path: str, body: Any = None, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, body=body, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)


class AuthService:
    def __init__(self, api: ApiClient, session: SessionManager, settings: Settings) -> None:
        self.api = api
        self.session = session
        self.settings = settings

    async def login(self, username: str, password: str) -> LoginResponse:
        """
        Posts the credentials OAuth2-password style (form encoded) and starts
        the session from the response.
        """
        data = await self.api.post(
            self.settings.LOGIN_PATH,
            form={"username": username, "password": password},
        )
        try:
            login = LoginResponse.model_validate(data)
        except PydanticValidationError as e:
            raise ServerError("Login response did not contain an access token.", payload=data) from e
        self.session.start_session(login)
        return login

    async def logout(self) -> None:
        """Best-effort revocation on the backend; the local session is always cleared."""
        if self.session.check_auth() or self.session.has_refresh_token:
            try:
                await self.api.pipeline.revoke_refresh_token(self.settings.LOGOUT_PATH)
            except ApiError as e:
                logger.warning("Backend logout failed, clearing local session anyway: %s", e.message)
        self.session.logout()

    async def get_profile(self) -> UserRecord:
        data = await self.api.get(self.settings.PROFILE_PATH)
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        try:
            user = UserRecord.model_validate(data)
        except PydanticValidationError as e:
            raise ServerError("Profile response was not a user record.", payload=data) from e
        self.session.set_user(user)
        return user

    async def refresh(self) -> str:
        return await self.api.pipeline.refresh()


class FraudWatchClient:
    """
    Composition root: one session, one transport, one pipeline per process.

        async with FraudWatchClient(on_unauthorized=go_to_login) as client:
            await client.auth.login("demo@sha.go.ke", "password")
            claims = await client.api.get("/claims")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        persistence: Optional[SessionPersistence] = None,
        on_unauthorized: Optional[UnauthorizedCallback] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_settings()
        if persistence is None:
            persistence = build_persistence(self.settings.SESSION_STORAGE_PATH, self.settings.SESSION_STORAGE_KEY)
        self.session = SessionManager(persistence)
        self.http = httpx.AsyncClient(
            base_url=self.settings.BASE_URL,
            timeout=self.settings.API_TIMEOUT,
            transport=transport,
        )
        self.pipeline = AuthenticatedPipeline(
            self.session,
            HttpxSender(self.http),
            refresh_path=self.settings.REFRESH_PATH,
            rotate_refresh_token=self.settings.ROTATE_REFRESH_TOKEN,
            on_unauthorized=on_unauthorized,
        )
        self.api = ApiClient(self.pipeline)
        self.auth = AuthService(self.api, self.session, self.settings)

    async def __aenter__(self) -> "FraudWatchClient":
        self.session.hydrate()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()
