"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these only own the shape of a row.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass

STUDENT = "student"
FACULTY = "faculty"
ROLES = (STUDENT, FACULTY)

PASSWORD_RESET = "password_reset"


@dataclass
class User:
    """An account in the college information system.

    email is always an institutional address. role is derived once when the
    account is created and nothing in this package updates it afterwards.

    password_hash is None for OAuth-only users (they have no local password
    until they run the OTP reset flow). oauth_provider / oauth_id hold the
    most recent identity the account logged in with.
    """

    email: str
    role: str  # "student" or "faculty"
    id: int | None = None
    password_hash: str | None = None  # None = OAuth-only user
    oauth_provider: str | None = None  # "google"
    oauth_id: str | None = None  # provider's stable subject ID
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class StudentProfile:
    """Student row owned 1:1 by a User. roll_no is the email local part."""

    roll_no: str
    student_name: str | None = None
    status: str = "Active"
    user_id: int | None = None
    id: int | None = None


@dataclass
class FacultyProfile:
    """Faculty row owned 1:1 by a User."""

    faculty_name: str | None = None
    user_id: int | None = None
    id: int | None = None


@dataclass
class OtpToken:
    """A one-time password reset code.

    Lifecycle: inserted on request with is_used=False, flipped to is_used=True
    by the password reset that consumes it. Past expires_at it never matches
    again, used or not. Several rows may be outstanding for one email.
    """

    email: str
    otp_code: str  # 6 decimal digits, left-padded
    expires_at: str  # UTC ISO-8601
    purpose: str = PASSWORD_RESET
    is_used: bool = False
    id: int | None = None
    created_at: str | None = None
