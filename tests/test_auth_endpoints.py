"""Tests for authentication endpoints."""

import pyotp
import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from trustbridge.core.redis_client import RateLimiter
from trustbridge.core.security import decode_session_token
from trustbridge.dependencies import get_audit_logger
from trustbridge.main import app
from trustbridge.models.accounts import accounts
from trustbridge.models.audit_logs import audit_logs
from trustbridge.services.audit_service import AuditLogger

API = "/api/v1"


async def _count(db: AsyncSession, action: str, subject_id=None) -> int:
    query = select(func.count()).select_from(audit_logs).where(audit_logs.c.action == action)
    if subject_id is not None:
        query = query.where(audit_logs.c.subject_user_id == subject_id)
    return (await db.execute(query)).scalar_one()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _other_code(secret: str) -> str:
    return f"{(int(pyotp.TOTP(secret).now()) + 500000) % 1000000:06d}"


async def _enable_2fa(client: AsyncClient, headers: dict[str, str]) -> tuple[str, list[str]]:
    """Enroll and confirm 2FA through the API; returns the secret and backup codes."""
    enroll = await client.post(f"{API}/auth/totp/enroll", headers=headers)
    assert enroll.status_code == 200
    secret = enroll.json()["secret"]

    confirm = await client.post(
        f"{API}/auth/totp/verify",
        json={"totpCode": pyotp.TOTP(secret).now()},
        headers=headers,
    )
    assert confirm.status_code == 200
    return secret, confirm.json()["backupCodes"]


@pytest.mark.asyncio
class TestRegister:
    """Tests for self-service registration."""

    async def test_register_patient(self, client: AsyncClient, db_session: AsyncSession):
        """Test registration creates a patient and starts a session."""
        response = await client.post(
            f"{API}/auth/register",
            json={"email": "New.User@Example.com", "password": "s3cure-passw0rd", "name": "New User"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["requiresTwoFactor"] is False
        assert data["user"]["email"].lower() == "new.user@example.com"
        assert data["user"]["role"] == "PATIENT"
        assert data["user"]["twoFactorEnabled"] is False
        assert "passwordHash" not in data["user"]

        claims = decode_session_token(data["token"])
        assert claims is not None
        assert claims.role.value == "PATIENT"
        assert claims.is_partial is False

        cookie = response.headers["set-cookie"]
        assert cookie.startswith("token=")
        assert "HttpOnly" in cookie

        assert await _count(db_session, "ACCOUNT_CREATED") == 1

    async def test_register_provider(self, client: AsyncClient):
        """Test providers may register themselves."""
        response = await client.post(
            f"{API}/auth/register",
            json={
                "email": "dr.who@example.com",
                "password": "s3cure-passw0rd",
                "name": "Dr. Who",
                "role": "PROVIDER",
            },
        )

        assert response.status_code == 201
        assert response.json()["user"]["role"] == "PROVIDER"

    async def test_register_admin_is_rejected(self, client: AsyncClient, db_session: AsyncSession):
        """Test ADMIN cannot be self-selected."""
        response = await client.post(
            f"{API}/auth/register",
            json={
                "email": "sneaky@example.com",
                "password": "s3cure-passw0rd",
                "name": "Sneaky",
                "role": "ADMIN",
            },
        )

        assert response.status_code == 400
        data = response.json()
        assert "error" in data
        assert data["details"][0]["field"] == "role"
        count = (await db_session.execute(select(func.count()).select_from(accounts))).scalar_one()
        assert count == 0

    async def test_register_duplicate_email(self, client: AsyncClient, patient: dict):
        """Test emails are unique regardless of case."""
        response = await client.post(
            f"{API}/auth/register",
            json={"email": "PATIENT@example.com", "password": "s3cure-passw0rd", "name": "Dup"},
        )

        assert response.status_code == 409
        assert response.json() == {"error": "User with this email already exists"}

    async def test_register_short_password(self, client: AsyncClient):
        """Test passwords under eight characters are rejected."""
        response = await client.post(
            f"{API}/auth/register",
            json={"email": "short@example.com", "password": "short", "name": "Short"},
        )

        assert response.status_code == 400
        assert response.json()["details"][0]["field"] == "password"

    async def test_register_invalid_email(self, client: AsyncClient):
        """Test malformed emails are rejected."""
        response = await client.post(
            f"{API}/auth/register",
            json={"email": "not-an-email", "password": "s3cure-passw0rd", "name": "Nobody"},
        )

        assert response.status_code == 400


@pytest.mark.asyncio
class TestLogin:
    """Tests for password login and lockout."""

    async def test_login_success(
        self, client: AsyncClient, db_session: AsyncSession, patient: dict, password: str
    ):
        """Test valid credentials return a full session and one success record."""
        response = await client.post(
            f"{API}/auth/login",
            json={"email": "Patient@Example.com", "password": password},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["requiresTwoFactor"] is False
        assert data["user"]["id"] == str(patient["id"])
        assert decode_session_token(data["token"]).is_partial is False

        assert await _count(db_session, "LOGIN_SUCCESS", patient["id"]) == 1
        assert await _count(db_session, "LOGIN_FAILED", patient["id"]) == 0

        stored = (
            await db_session.execute(select(accounts).where(accounts.c.id == patient["id"]))
        ).mappings().one()
        assert stored["last_login_at"] is not None

    async def test_login_wrong_password(
        self, client: AsyncClient, db_session: AsyncSession, patient: dict
    ):
        """Test a wrong password is rejected and counted."""
        response = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": "wrong password"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid email or password"}
        assert await _count(db_session, "LOGIN_FAILED", patient["id"]) == 1
        assert await _count(db_session, "LOGIN_SUCCESS") == 0

        stored = (
            await db_session.execute(select(accounts).where(accounts.c.id == patient["id"]))
        ).mappings().one()
        assert stored["login_attempts"] == 1

    async def test_login_unknown_email(self, client: AsyncClient, db_session: AsyncSession):
        """Test an unknown email gets the same answer as a wrong password."""
        response = await client.post(
            f"{API}/auth/login",
            json={"email": "nobody@example.com", "password": "whatever"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid email or password"}

        row = (
            await db_session.execute(select(audit_logs).where(audit_logs.c.action == "LOGIN_FAILED"))
        ).mappings().one()
        assert row["actor_id"] is None
        assert row["subject_user_id"] is None

    async def test_lockout_after_five_failures(
        self, client: AsyncClient, db_session: AsyncSession, patient: dict, password: str
    ):
        """Test the sixth attempt is refused as locked even with the right password."""
        for _ in range(5):
            response = await client.post(
                f"{API}/auth/login",
                json={"email": patient["email"], "password": "wrong password"},
            )
            assert response.status_code == 401

        response = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password},
        )

        assert response.status_code == 423
        data = response.json()
        assert data["details"] == {"minutesRemaining": 15}
        assert "15 minutes" in data["error"]

        assert await _count(db_session, "ACCOUNT_LOCKED", patient["id"]) == 1
        assert await _count(db_session, "LOGIN_FAILED", patient["id"]) == 6
        assert await _count(db_session, "LOGIN_SUCCESS", patient["id"]) == 0

    async def test_success_resets_failure_count(
        self, client: AsyncClient, db_session: AsyncSession, patient: dict, password: str
    ):
        """Test a successful login forgets earlier failures."""
        for _ in range(4):
            await client.post(
                f"{API}/auth/login",
                json={"email": patient["email"], "password": "wrong password"},
            )
        ok = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password},
        )
        assert ok.status_code == 200

        response = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": "wrong password"},
        )
        assert response.status_code == 401

        stored = (
            await db_session.execute(select(accounts).where(accounts.c.id == patient["id"]))
        ).mappings().one()
        assert stored["login_attempts"] == 1

    async def test_login_rate_limited_by_ip(
        self, client: AsyncClient, rate_limiter: RateLimiter, patient: dict, password: str
    ):
        """Test an address over its login budget gets 429."""
        for _ in range(30):
            rate_limiter.check_rate_limit("rl:login:203.0.113.9", 30, 900)

        response = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password},
            headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        )

        assert response.status_code == 429
        assert response.json() == {"error": "Too many login attempts. Please try again later."}

    async def test_login_survives_audit_outage(
        self, client: AsyncClient, patient: dict, password: str, tmp_path
    ):
        """Test login still succeeds when audit records cannot be written."""
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'no_tables.db'}", poolclass=NullPool)
        broken = AuditLogger(async_sessionmaker(engine, class_=AsyncSession))
        app.dependency_overrides[get_audit_logger] = lambda: broken

        response = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password},
        )

        assert response.status_code == 200
        assert decode_session_token(response.json()["token"]) is not None
        await engine.dispose()


@pytest.mark.asyncio
class TestTwoFactorLogin:
    """Tests for the two-step login of 2FA accounts."""

    async def test_enrollment_returns_backup_codes_and_fresh_token(
        self, client: AsyncClient, patient_headers: dict
    ):
        """Test confirming enrollment returns ten codes and a verified session."""
        enroll = await client.post(f"{API}/auth/totp/enroll", headers=patient_headers)
        assert enroll.status_code == 200
        enrolled = enroll.json()
        assert enrolled["otpauthUri"].startswith("otpauth://totp/")
        assert enrolled["qrImage"].startswith("data:image/png;base64,")

        confirm = await client.post(
            f"{API}/auth/totp/verify",
            json={"totpCode": pyotp.TOTP(enrolled["secret"]).now()},
            headers=patient_headers,
        )

        assert confirm.status_code == 200
        data = confirm.json()
        assert len(data["backupCodes"]) == 10
        claims = decode_session_token(data["token"])
        assert claims.two_factor_enabled is True
        assert claims.two_factor_verified is True

    async def test_enrollment_wrong_code(self, client: AsyncClient, patient_headers: dict):
        """Test a wrong confirmation code is rejected."""
        enroll = await client.post(f"{API}/auth/totp/enroll", headers=patient_headers)
        secret = enroll.json()["secret"]

        response = await client.post(
            f"{API}/auth/totp/verify",
            json={"totpCode": _other_code(secret)},
            headers=patient_headers,
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid TOTP code"}

    async def test_enroll_twice_is_refused(self, client: AsyncClient, patient_headers: dict):
        """Test enrollment is refused once 2FA is on."""
        await _enable_2fa(client, patient_headers)

        response = await client.post(f"{API}/auth/totp/enroll", headers=patient_headers)

        assert response.status_code == 400

    async def test_password_step_returns_partial_session(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        patient: dict,
        patient_headers: dict,
        password: str,
    ):
        """Test the password step alone yields a partial token and no login record."""
        await _enable_2fa(client, patient_headers)

        response = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["requiresTwoFactor"] is True
        assert data["user"] is None
        assert decode_session_token(data["token"]).is_partial is True
        assert await _count(db_session, "LOGIN_SUCCESS", patient["id"]) == 0
        assert await _count(db_session, "LOGIN_FAILED", patient["id"]) == 0

    async def test_partial_session_is_limited_to_verification(
        self, client: AsyncClient, patient: dict, patient_headers: dict, password: str
    ):
        """Test a partial token is refused everywhere except the 2FA step."""
        await _enable_2fa(client, patient_headers)
        login = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password},
        )
        partial = _bearer(login.json()["token"])

        me = await client.get(f"{API}/users/me", headers=partial)
        assert me.status_code == 403
        assert me.json()["details"] == {"requiresTwoFactor": True}

        files = await client.get(f"{API}/files", headers=partial)
        assert files.status_code == 403

        enroll = await client.post(f"{API}/auth/totp/enroll", headers=partial)
        assert enroll.status_code == 403

    async def test_verify_second_factor(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        patient: dict,
        patient_headers: dict,
        password: str,
    ):
        """Test the second step upgrades the session and records one success."""
        secret, _ = await _enable_2fa(client, patient_headers)
        login = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password},
        )

        response = await client.post(
            f"{API}/auth/login/verify-2fa",
            json={"totpCode": pyotp.TOTP(secret).now()},
            headers=_bearer(login.json()["token"]),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["requiresTwoFactor"] is False
        assert data["user"]["twoFactorEnabled"] is True
        full = data["token"]
        assert decode_session_token(full).is_partial is False

        me = await client.get(f"{API}/users/me", headers=_bearer(full))
        assert me.status_code == 200
        assert me.json()["twoFactorVerified"] is True

        assert await _count(db_session, "LOGIN_SUCCESS", patient["id"]) == 1
        assert await _count(db_session, "LOGIN_FAILED", patient["id"]) == 0

    async def test_verify_wrong_code(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        patient: dict,
        patient_headers: dict,
        password: str,
    ):
        """Test a wrong second factor is rejected and counted toward lockout."""
        secret, _ = await _enable_2fa(client, patient_headers)
        login = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password},
        )

        response = await client.post(
            f"{API}/auth/login/verify-2fa",
            json={"totpCode": _other_code(secret)},
            headers=_bearer(login.json()["token"]),
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid 2FA code"}
        assert await _count(db_session, "LOGIN_FAILED", patient["id"]) == 1
        assert await _count(db_session, "LOGIN_SUCCESS", patient["id"]) == 0

        stored = (
            await db_session.execute(select(accounts).where(accounts.c.id == patient["id"]))
        ).mappings().one()
        assert stored["login_attempts"] == 1

    async def test_login_with_code_in_one_step(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        patient: dict,
        patient_headers: dict,
        password: str,
    ):
        """Test supplying the code with the password skips the partial session."""
        secret, _ = await _enable_2fa(client, patient_headers)

        response = await client.post(
            f"{API}/auth/login",
            json={
                "email": patient["email"],
                "password": password,
                "totpCode": pyotp.TOTP(secret).now(),
            },
        )

        assert response.status_code == 200
        assert response.json()["requiresTwoFactor"] is False
        assert await _count(db_session, "LOGIN_SUCCESS", patient["id"]) == 1

    async def test_backup_code_works_once(
        self, client: AsyncClient, patient: dict, patient_headers: dict, password: str
    ):
        """Test a backup code completes login once and is then spent."""
        _, codes = await _enable_2fa(client, patient_headers)

        first = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password, "totpCode": codes[0]},
        )
        assert first.status_code == 200

        second = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password, "totpCode": codes[0]},
        )
        assert second.status_code == 401

    async def test_verify_without_2fa(self, client: AsyncClient, patient_headers: dict):
        """Test the second step is meaningless for an account without 2FA."""
        response = await client.post(
            f"{API}/auth/login/verify-2fa",
            json={"totpCode": "123456"},
            headers=patient_headers,
        )

        assert response.status_code == 400
        assert response.json() == {"error": "2FA not enabled"}

    async def test_verify_rate_limited_per_account(
        self,
        client: AsyncClient,
        rate_limiter: RateLimiter,
        patient: dict,
        patient_headers: dict,
        password: str,
    ):
        """Test an account over its 2FA budget gets 429."""
        secret, _ = await _enable_2fa(client, patient_headers)
        login = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password},
        )
        for _ in range(10):
            rate_limiter.check_rate_limit(f"rl:2fa:{patient['id']}", 10, 300)

        response = await client.post(
            f"{API}/auth/login/verify-2fa",
            json={"totpCode": pyotp.TOTP(secret).now()},
            headers=_bearer(login.json()["token"]),
        )

        assert response.status_code == 429
        assert response.json() == {"error": "Too many 2FA attempts. Please try again later."}

    async def test_disable_2fa(
        self, client: AsyncClient, patient: dict, patient_headers: dict, password: str
    ):
        """Test disabling 2FA returns login to a single step."""
        secret, _ = await _enable_2fa(client, patient_headers)

        response = await client.post(
            f"{API}/auth/totp/disable",
            json={"totpCode": pyotp.TOTP(secret).now()},
            headers=patient_headers,
        )
        assert response.status_code == 200
        assert response.json()["success"] is True

        login = await client.post(
            f"{API}/auth/login",
            json={"email": patient["email"], "password": password},
        )
        assert login.json()["requiresTwoFactor"] is False

    async def test_disable_wrong_code(self, client: AsyncClient, patient_headers: dict):
        """Test disabling requires a valid code."""
        secret, _ = await _enable_2fa(client, patient_headers)

        response = await client.post(
            f"{API}/auth/totp/disable",
            json={"totpCode": _other_code(secret)},
            headers=patient_headers,
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid TOTP code or backup code"}


@pytest.mark.asyncio
class TestSessionTransport:
    """Tests for how the session token reaches the server."""

    async def test_missing_token(self, client: AsyncClient):
        """Test a protected route without a token is 401."""
        response = await client.get(f"{API}/users/me")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    async def test_invalid_token(self, client: AsyncClient):
        """Test a garbage bearer token is 401."""
        response = await client.get(f"{API}/users/me", headers=_bearer("garbage"))

        assert response.status_code == 401

    async def test_cookie_session(self, client: AsyncClient, patient: dict, patient_headers: dict):
        """Test the session cookie authenticates on its own."""
        token = patient_headers["Authorization"].removeprefix("Bearer ")

        response = await client.get(f"{API}/users/me", headers={"Cookie": f"token={token}"})

        assert response.status_code == 200
        assert response.json()["id"] == str(patient["id"])

    async def test_cookie_takes_precedence(
        self, client: AsyncClient, patient: dict, patient_headers: dict
    ):
        """Test the cookie wins over a bearer header."""
        token = patient_headers["Authorization"].removeprefix("Bearer ")

        response = await client.get(
            f"{API}/users/me",
            headers={"Cookie": f"token={token}", "Authorization": "Bearer garbage"},
        )

        assert response.status_code == 200

    async def test_logout_clears_cookie(self, client: AsyncClient):
        """Test logout expires the session cookie."""
        response = await client.post(f"{API}/auth/logout")

        assert response.status_code == 200
        cookie = response.headers["set-cookie"]
        assert cookie.startswith("token=")
        assert "Max-Age=0" in cookie
