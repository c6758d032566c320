# src/fraudwatch_client/mock_backend.py

"""
Stand-in for the fraud back-office auth API.

Implements the backend half of the login / refresh / logout contract the
client relies on, plus a couple of protected resources. Access tokens are
short HS256 JWTs; refresh tokens are opaque and revocable.
"""

import logging
import secrets
import time
import uuid
from typing import Dict, Optional, Set

from fastapi import APIRouter, Depends, FastAPI, Form, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ALLOWED_EMAIL_DOMAIN = "@sha.go.ke"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

MOCK_USER = {
    "id": "user_001",
    "email": "investigator@sha.go.ke",
    "first_name": "Jane",
    "last_name": "Wanjiru",
    "role": "investigator",
    "status": "active",
    "phone_number": "+254712345678",
    "created_at": "2023-01-15T00:00:00Z",
    "updated_at": "2024-02-13T00:00:00Z",
    "profile_picture_url": None,
}

MOCK_CLAIMS = [
    {"id": "CLM-2024-0001", "provider_id": "PRV-104", "amount": 185000, "risk_level": "high", "status": "flagged"},
    {"id": "CLM-2024-0002", "provider_id": "PRV-221", "amount": 12500, "risk_level": "low", "status": "approved"},
    {"id": "CLM-2024-0003", "provider_id": "PRV-104", "amount": 96000, "risk_level": "critical", "status": "under_investigation"},
]


class TokenData(BaseModel):
    sub: str
    gen: int
    exp: int


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class MockAuthBackend:
    """
    Holds the backend state: issued refresh tokens and the current token
    generation. Bumping the generation (expire_access_tokens) makes every
    previously issued access token fail with 401.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        access_token_ttl: int = 900,
        rotate_refresh_tokens: bool = False,
        issue_refresh_tokens: bool = True,
    ) -> None:
        self.secret_key = secret_key or secrets.token_urlsafe(32)
        self.access_token_ttl = access_token_ttl
        self.rotate_refresh_tokens = rotate_refresh_tokens
        self.issue_refresh_tokens = issue_refresh_tokens
        self.generation = 0
        self.refresh_tokens: Dict[str, str] = {}  # refresh token -> user email
        self.revoked: Set[str] = set()
        self.refresh_calls = 0

    def issue_access_token(self, email: str) -> str:
        payload = {
            "sub": email,
            "gen": self.generation,
            "exp": int(time.time()) + self.access_token_ttl,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self.secret_key, algorithm=ALGORITHM)

    def issue_refresh_token(self, email: str) -> str:
        token = f"rt_{secrets.token_urlsafe(24)}"
        self.refresh_tokens[token] = email
        return token

    def expire_access_tokens(self) -> None:
        self.generation += 1

    def revoke(self, refresh_token: str) -> None:
        if self.refresh_tokens.pop(refresh_token, None) is not None:
            self.revoked.add(refresh_token)

    def validate_access_token(self, token: str) -> TokenData:
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM])
            token_data = TokenData(**payload)
        except ExpiredSignatureError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e
        except (JWTError, ValueError) as e:
            logger.debug("JWT validation error: %s", e)
            raise credentials_exception from e

        if token_data.gen != self.generation:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return token_data


def create_app(backend: Optional[MockAuthBackend] = None, prefix: str = "") -> FastAPI:
    backend = backend or MockAuthBackend()

    app = FastAPI(
        title="FraudWatch Mock Backend",
        description="In-process stand-in for the back-office auth and claims API.",
        version="0.1.0",
    )
    app.state.backend = backend
    router = APIRouter(prefix=prefix)

    async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> dict:
        if token is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )
        token_data = backend.validate_access_token(token)
        return {**MOCK_USER, "email": token_data.sub}

    @router.post("/auth/login")
    async def login(username: str = Form(...), password: str = Form(...)):
        if not password or not username.endswith(ALLOWED_EMAIL_DOMAIN):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email or password")

        response = {
            "access_token": backend.issue_access_token(username),
            "token_type": "bearer",
            "user": {**MOCK_USER, "email": username},
        }
        if backend.issue_refresh_tokens:
            response["refresh_token"] = backend.issue_refresh_token(username)
        logger.info("Mock backend: %s logged in", username)
        return response

    @router.post("/auth/refresh")
    async def refresh(body: RefreshRequest):
        backend.refresh_calls += 1
        email = backend.refresh_tokens.get(body.refresh_token)
        if email is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or revoked refresh token",
            )
        response = {"access_token": backend.issue_access_token(email), "token_type": "bearer"}
        if backend.rotate_refresh_tokens:
            backend.revoke(body.refresh_token)
            response["refresh_token"] = backend.issue_refresh_token(email)
        return response

    @router.post("/auth/logout")
    async def logout(body: Optional[LogoutRequest] = None):
        if body is not None and body.refresh_token:
            backend.revoke(body.refresh_token)
        return {"message": "Logged out successfully"}

    @router.get("/auth/profile")
    async def profile(user: dict = Depends(get_current_user)):
        return {"data": user, "success": True}

    @router.get("/claims")
    async def list_claims(risk_level: Optional[str] = None, user: dict = Depends(get_current_user)):
        claims = [c for c in MOCK_CLAIMS if risk_level is None or c["risk_level"] == risk_level]
        return {"data": claims, "pagination": {"page": 1, "per_page": 25, "total": len(claims), "total_pages": 1}}

    @router.get("/claims/{claim_id}")
    async def get_claim(claim_id: str, user: dict = Depends(get_current_user)):
        for claim in MOCK_CLAIMS:
            if claim["id"] == claim_id:
                return {"data": claim, "success": True}
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"error": {"message": f"Claim {claim_id} not found"}})

    app.include_router(router)
    return app


def serve(host: str = "127.0.0.1", port: int = 3000, prefix: str = "/api/v1") -> None:
    import uvicorn

    from .logging_setup import configure_logging

    configure_logging()
    uvicorn.run(create_app(prefix=prefix), host=host, port=port)


if __name__ == "__main__":
    serve()
