"""Internal account models."""

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ClientInfo(BaseModel):
    """Profile fields a partner sends about one of its clients."""

    first_name: str = Field(..., min_length=1, max_length=200)
    last_name: str = Field(..., min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    bio_blurb: str | None = Field(default=None, max_length=2000)

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("email")
    @classmethod
    def _blank_email_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class AccountProfile(BaseModel):
    """An internal account (exposed to partners as ``outfit_user_id``).

    Accounts are what partner agents and clients link to. The directory
    fields here are the ones the confidence scorer compares against.
    """

    account_id: UUID = Field(default_factory=uuid4)
    first_name: str
    last_name: str
    email: str | None = None
    bio_blurb: str | None = None
    last_search_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(frozen=True)

    @property
    def full_name(self) -> str:
        """First and last name joined by a space."""
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_client_info(cls, info: ClientInfo) -> "AccountProfile":
        """Build a new account from partner-supplied client info."""
        return cls(
            first_name=info.first_name,
            last_name=info.last_name,
            email=info.email,
            bio_blurb=info.bio_blurb,
        )
