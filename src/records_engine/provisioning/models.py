"""Provisioning input and result models."""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class AccountInput(BaseModel):
    """A new account to provision.

    ``password`` is optional; a temporary password is generated when omitted.
    """

    first_name: str
    middle_name: str | None = None
    last_name: str
    suffix: str | None = None
    email: str
    phone_number: str | None = None
    password: str | None = None

    @field_validator("first_name", "last_name", "email")
    @classmethod
    def _required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("middle_name", "suffix", "phone_number")
    @classmethod
    def _optional(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


class ProvisionResult(BaseModel):
    """Result of provision()."""

    user_id: Any = None
    identifier: str | None = None
    full_name: str = ""
    email: str
    temporary_password: str
    profile_table: str | None = None


class SkippedAccount(BaseModel):
    """An account provision_many() did not create, and why."""

    email: str
    reason: str


class BatchProvisionResult(BaseModel):
    """Result of provision_many()."""

    created: list[ProvisionResult] = Field(default_factory=list)
    skipped: list[SkippedAccount] = Field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)
