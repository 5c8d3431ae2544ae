"""Authentication schemas."""

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from trustbridge.schemas.base import CamelModel
from trustbridge.schemas.users import Role, UserResponse

# Either a 6 digit TOTP code or an 8 character backup code
SECOND_FACTOR_PATTERN = r"^(\d{6}|[A-Za-z0-9]{8})$"
TOTP_CODE_PATTERN = r"^\d{6}$"


class RegisterRequest(CamelModel):
    """Self-service registration request."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    name: str = Field(..., min_length=1, max_length=100)
    role: Role = Role.PATIENT

    @field_validator("role")
    @classmethod
    def role_is_self_selectable(cls, value: Role) -> Role:
        """Only patients and providers may register themselves."""
        if value not in (Role.PATIENT, Role.PROVIDER):
            raise ValueError("Role must be PATIENT or PROVIDER")
        return value

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        """Reject whitespace-only names."""
        value = value.strip()
        if not value:
            raise ValueError("Name is required")
        return value


class LoginRequest(CamelModel):
    """Login step one: password, optionally with a second factor."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=1024)
    totp_code: str | None = Field(
        None,
        pattern=SECOND_FACTOR_PATTERN,
        description="6 digit TOTP code or 8 character backup code",
    )


class SecondFactorRequest(CamelModel):
    """A TOTP code or backup code."""

    totp_code: str = Field(..., pattern=SECOND_FACTOR_PATTERN)


class EnrollmentConfirmRequest(CamelModel):
    """First TOTP code from a freshly provisioned authenticator."""

    totp_code: str = Field(..., pattern=TOTP_CODE_PATTERN)


class SessionClaims(BaseModel):
    """Claims embedded in a signed session token."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sub: str
    email: str
    name: str
    role: Role
    two_factor_enabled: bool
    two_factor_verified: bool
    iat: int
    exp: int

    @property
    def is_partial(self) -> bool:
        """Password accepted but the second factor is still outstanding."""
        return self.two_factor_enabled and not self.two_factor_verified


class LoginResponse(CamelModel):
    """Login outcome: a full session, or a partial one awaiting 2FA."""

    token: str
    requires_two_factor: bool = False
    user: UserResponse | None = None


class TwoFactorEnrollResponse(CamelModel):
    """Provisioning material for an authenticator app."""

    secret: str
    otpauth_uri: str
    qr_image: str


class TwoFactorEnabledResponse(CamelModel):
    """Backup codes, shown exactly once, and a refreshed session token."""

    success: bool = True
    message: str
    backup_codes: list[str]
    token: str


class MessageResponse(CamelModel):
    """Generic acknowledgement."""

    success: bool = True
    message: str
