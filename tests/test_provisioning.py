"""Unit tests for auth/provisioning.py and auth/oauth.py identity extraction.

Covers:
- derive_role(): all-digit local part -> student, anything else -> faculty
- is_institutional_email() domain gate
- provision(): new student / new faculty / existing user re-link
- provision(): outside domain writes nothing
- provision(): a lost creation race falls back to linking
- get_oauth_identity(): verified email required, display-name fallback
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from conftest import DOMAIN, seed_user
from sqlalchemy.exc import IntegrityError

from auth.models import FACULTY, STUDENT, User
from auth.oauth import get_oauth_identity
from auth.provisioning import DomainNotAllowed, OAuthIdentity, OAuthProvisioner, derive_role, is_institutional_email


@pytest.fixture
def provisioner(store) -> OAuthProvisioner:
    return OAuthProvisioner(store, DOMAIN)


# ---------------------------------------------------------------------------
# Pure policy functions
# ---------------------------------------------------------------------------


class TestDeriveRole:
    @pytest.mark.parametrize("local", ["12345", "0", "2023001", "00042"])
    def test_digits_are_students(self, local: str) -> None:
        assert derive_role(f"{local}@{DOMAIN}") == STUDENT

    @pytest.mark.parametrize("local", ["jdoe", "12345a", "a12345", "123.45", "12 345", "١٢٣"])
    def test_everything_else_is_faculty(self, local: str) -> None:
        assert derive_role(f"{local}@{DOMAIN}") == FACULTY


class TestInstitutionalEmail:
    @pytest.mark.parametrize("email", [f"12345@{DOMAIN}", f"Jane.Doe@{DOMAIN.upper()}"])
    def test_accepts_domain(self, email: str) -> None:
        assert is_institutional_email(email, DOMAIN)

    @pytest.mark.parametrize(
        "email",
        [
            "12345@gmail.com",
            f"12345@mail.{DOMAIN}",
            f"12345@{DOMAIN}.evil.com",
            f"12345@not{DOMAIN}",
            f"@{DOMAIN}",
        ],
    )
    def test_rejects_others(self, email: str) -> None:
        assert not is_institutional_email(email, DOMAIN)


# ---------------------------------------------------------------------------
# Provisioning flow
# ---------------------------------------------------------------------------


class TestProvision:
    def test_new_student(self, store, provisioner: OAuthProvisioner) -> None:
        user = provisioner.provision(OAuthIdentity(email=f"67890@{DOMAIN}", display_name="Ravi Kumar", subject="g-1"))
        assert user.role == STUDENT
        assert user.oauth_provider == "google"
        assert user.oauth_id == "g-1"
        assert user.is_active is True
        assert user.password_hash is None
        profile = store.get_student_profile(user.id)
        assert profile.roll_no == "67890"
        assert profile.student_name == "Ravi Kumar"
        assert profile.status == "Active"

    def test_new_faculty(self, store, provisioner: OAuthProvisioner) -> None:
        user = provisioner.provision(OAuthIdentity(email=f"mary@{DOMAIN}", display_name="Mary J", subject="g-2"))
        assert user.role == FACULTY
        assert store.get_faculty_profile(user.id).faculty_name == "Mary J"
        assert store.get_student_profile(user.id) is None

    def test_email_is_normalized(self, provisioner: OAuthProvisioner) -> None:
        user = provisioner.provision(OAuthIdentity(email=f" Mary@{DOMAIN.upper()} ", display_name="M", subject="g"))
        assert user.email == f"mary@{DOMAIN}"

    def test_existing_user_is_relinked(self, store, provisioner: OAuthProvisioner) -> None:
        existing = seed_user(store, f"13579@{DOMAIN}", STUDENT, name="Original Name")
        user = provisioner.provision(OAuthIdentity(email=f"13579@{DOMAIN}", display_name="New Name", subject="g-new"))
        assert user.id == existing.id
        assert user.oauth_id == "g-new"
        assert user.role == STUDENT
        assert user.password_hash == existing.password_hash
        assert store.get_student_profile(user.id).student_name == "Original Name"

    def test_existing_role_never_rederived(self, store, provisioner: OAuthProvisioner) -> None:
        """An account created as faculty stays faculty even if its email looks like a roll number."""
        store.create_user(User(email=f"24680@{DOMAIN}", role=FACULTY))
        user = provisioner.provision(OAuthIdentity(email=f"24680@{DOMAIN}", display_name="X", subject="g"))
        assert user.role == FACULTY
        assert store.get_student_profile(user.id) is None

    @pytest.mark.parametrize("email", ["67890@gmail.com", f"67890@sub.{DOMAIN}", "jdoe@example.org"])
    def test_outside_domain_creates_nothing(self, store, provisioner: OAuthProvisioner, email: str) -> None:
        with pytest.raises(DomainNotAllowed):
            provisioner.provision(OAuthIdentity(email=email, display_name="Outsider", subject="g-x"))
        assert store.get_by_email(email) is None
        assert store.get_by_email(email.lower()) is None

    def test_lost_race_links_existing_row(self) -> None:
        """IntegrityError from a concurrent first login is treated as 'user exists'."""
        winner = User(id=9, email=f"11223@{DOMAIN}", role=STUDENT)
        fake_store = MagicMock()
        fake_store.get_by_email.side_effect = [None, winner]
        fake_store.provision_user.side_effect = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        fake_store.get_by_id.return_value = winner

        user = OAuthProvisioner(fake_store, DOMAIN).provision(
            OAuthIdentity(email=f"11223@{DOMAIN}", display_name="Late", subject="g-late")
        )

        assert user is winner
        fake_store.link_oauth.assert_called_once_with(9, "google", "g-late")


# ---------------------------------------------------------------------------
# Identity extraction
# ---------------------------------------------------------------------------


class TestOAuthIdentity:
    def test_verified_userinfo(self) -> None:
        identity = get_oauth_identity(
            {"userinfo": {"email": f"67890@{DOMAIN}", "email_verified": True, "sub": "abc", "name": "Ravi"}}
        )
        assert identity == OAuthIdentity(email=f"67890@{DOMAIN}", display_name="Ravi", subject="abc")

    def test_display_name_falls_back_to_local_part(self) -> None:
        identity = get_oauth_identity({"userinfo": {"email": f"67890@{DOMAIN}", "email_verified": True, "sub": "1"}})
        assert identity.display_name == "67890"

    @pytest.mark.parametrize(
        "token",
        [
            {},
            {"userinfo": {}},
            {"userinfo": {"email": f"a@{DOMAIN}", "sub": "1"}},
            {"userinfo": {"email": f"a@{DOMAIN}", "email_verified": False, "sub": "1"}},
            {"userinfo": {"email_verified": True, "sub": "1"}},
            {"userinfo": {"email": f"a@{DOMAIN}", "email_verified": True}},
        ],
    )
    def test_rejects_unverified_or_incomplete(self, token: dict) -> None:
        with pytest.raises(ValueError):
            get_oauth_identity(token)
