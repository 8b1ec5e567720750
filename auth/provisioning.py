"""
auth/provisioning.py -- Turn a verified Google identity into a local account.

Flow for provision(identity):
  1. Reject any email outside the institutional domain (DomainNotAllowed).
     Nothing is written.
  2. derive_role(): an all-digit local part is a student roll number,
     everything else is faculty.
  3. Unknown email -> create User + role profile in one transaction.
     Known email  -> re-link oauth_provider / oauth_id only.
  4. Return the current User row.

Role derivation is a naming convention, not a verified attribute. It lives in
derive_role() alone so the policy can be replaced without touching the flow.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from auth.models import FACULTY, STUDENT, FacultyProfile, StudentProfile, User
from auth.store import UserStore

logger = logging.getLogger("sjcauth.auth.provisioning")


class DomainNotAllowed(ValueError):
    """The asserted email does not belong to the institutional domain."""


@dataclass(frozen=True)
class OAuthIdentity:
    """What the provider asserted about the person logging in."""

    email: str
    display_name: str
    subject: str
    provider: str = "google"


def local_part(email: str) -> str:
    return email.rsplit("@", 1)[0]


def is_institutional_email(email: str, domain: str) -> bool:
    """True if email is `<something>@<domain>` (case-insensitive)."""
    suffix = f"@{domain}".lower()
    normalized = email.lower()
    return normalized.endswith(suffix) and len(normalized) > len(suffix)


def derive_role(email: str) -> str:
    """Return "student" for an all-digit local part, otherwise "faculty"."""
    name = local_part(email)
    if name.isascii() and name.isdigit():
        return STUDENT
    return FACULTY


class OAuthProvisioner:
    """Creates or re-links the local account behind an OAuth login.

    Usage:
        provisioner = OAuthProvisioner(store, "josephscollege.ac.in")
        user = provisioner.provision(OAuthIdentity(email, name, sub))
    """

    def __init__(self, store: UserStore, domain: str) -> None:
        self._store = store
        self._domain = domain

    def provision(self, identity: OAuthIdentity) -> User:
        """Return the local User for identity, creating it on first login.

        Raises DomainNotAllowed for outside emails. Persistence errors other
        than a lost creation race propagate to the caller.
        """
        email = identity.email.strip().lower()
        if not is_institutional_email(email, self._domain):
            logger.warning("OAuth login rejected for non-institutional domain")
            raise DomainNotAllowed(f"Only @{self._domain} emails are allowed")

        user = self._store.get_by_email(email)
        if user is None:
            user = self._create(email, identity)
            if user is not None:
                return user
            # Lost a race with a concurrent first login; the row exists now.
            user = self._store.get_by_email(email)
            if user is None:
                raise RuntimeError(f"user vanished after duplicate insert: {email!r}")

        self._store.link_oauth(user.id, identity.provider, identity.subject)
        return self._store.get_by_id(user.id)

    def _create(self, email: str, identity: OAuthIdentity) -> User | None:
        role = derive_role(email)
        user = User(
            email=email,
            role=role,
            oauth_provider=identity.provider,
            oauth_id=identity.subject,
            is_active=True,
        )
        if role == STUDENT:
            profile = StudentProfile(roll_no=local_part(email), student_name=identity.display_name)
        else:
            profile = FacultyProfile(faculty_name=identity.display_name)
        try:
            user_id = self._store.provision_user(user, profile)
        except IntegrityError:
            logger.info("Concurrent first login detected; linking existing account")
            return None
        logger.info("Provisioned new %s account (user_id=%d)", role, user_id)
        return self._store.get_by_id(user_id)
