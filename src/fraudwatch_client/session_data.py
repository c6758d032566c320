# src/fraudwatch_client/session_data.py

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class UserRecord(BaseModel):
    """
    Identity/profile snapshot returned by the backend at login.
    The pipeline never looks inside it; unknown backend fields are kept.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Union[str, int]
    email: str
    first_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("first_name", "firstName"))
    last_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("last_name", "lastName"))
    role: Optional[str] = None  # admin | investigator | analyst | viewer
    status: Optional[str] = None  # active | inactive | suspended
    phone_number: Optional[str] = Field(default=None, validation_alias=AliasChoices("phone_number", "phone"))
    department: Optional[str] = None
    profile_picture_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("profile_picture_url", "avatar")
    )
    created_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("created_at", "createdAt"))
    updated_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("updated_at", "updatedAt"))

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else self.email


class PersistedSession(BaseModel):
    """
    The subset of the session written to durable storage.
    Runtime-only flags (hydration) never end up here.
    """
    user: Optional[UserRecord] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = Field(default=None, repr=False)

    @property
    def is_empty(self) -> bool:
        return self.user is None and self.access_token is None and self.refresh_token is None


def _flatten_token_envelope(data: Any) -> Any:
    # {"user": ..., "tokens": {...}} and {"data": {...}} both carry the tokens one level down
    if not isinstance(data, dict):
        return data
    for envelope in ("tokens", "data"):
        nested = data.get(envelope)
        if isinstance(nested, dict):
            merged = {k: v for k, v in data.items() if k != envelope}
            merged.update(nested)
            return merged
    return data


class LoginResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(validation_alias=AliasChoices("access_token", "accessToken", "token"))
    refresh_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("refresh_token", "refreshToken"), repr=False
    )
    token_type: Optional[str] = None
    user: Optional[UserRecord] = None

    @model_validator(mode="before")
    @classmethod
    def unwrap_tokens(cls, data: Any) -> Any:
        return _flatten_token_envelope(data)


class RefreshResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(validation_alias=AliasChoices("access_token", "accessToken", "token"))
    refresh_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("refresh_token", "refreshToken"), repr=False
    )

    @model_validator(mode="before")
    @classmethod
    def unwrap_tokens(cls, data: Any) -> Any:
        return _flatten_token_envelope(data)
