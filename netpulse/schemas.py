from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

# JSON numbers only: no numeric strings, booleans, NaN or infinities
Measurement = Annotated[float, Field(strict=True, allow_inf_nan=False)]


class TestResultBase(BaseModel):
    __test__ = False

    ip: str | None = None
    download: Measurement | None = None
    upload: Measurement | None = None
    ping: Measurement | None = None
    jitter: Measurement | None = None


class TestResultCreate(TestResultBase):
    # Required; everything else may be omitted and is stored as NULL
    timestamp: str
    # Must name one of the authenticated session's own addresses
    email: str | None = None


class TestResult(TestResultBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    timestamp: str | None = None
    user_email: str | None = None


class ResultCreated(BaseModel):
    success: bool = True
    id: int


class UserProfile(BaseModel):
    """Identity returned by the provider, kept verbatim in the session."""

    id: str
    display_name: str | None = None
    emails: list[str] = []
    photos: list[str] = []

    @property
    def primary_email(self) -> str | None:
        return self.emails[0] if self.emails else None


class UserResponse(BaseModel):
    user: UserProfile | None = None


class ErrorResponse(BaseModel):
    error: str
