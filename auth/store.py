"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; the _row_to_* functions are the mappers.
Route, provisioning and OTP code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Transactions:
  Most methods are a single statement on their own connection. The two
  multi-row writes are single transactions:
    provision_user()               -- User insert + profile insert
    consume_otp_and_set_password() -- OTP consume + password update
  so a crash between the steps cannot leave a User without a profile, or a
  consumed OTP without the new password (and vice versa).

Table and column names (users, students, faculty, otp_tokens) are shared with
the rest of the information system and must not be renamed.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import PASSWORD_RESET, FacultyProfile, OtpToken, StudentProfile, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("role", String(20), nullable=False),
    Column("password_hash", Text),  # NULL for OAuth-only users
    Column("oauth_provider", String(30)),
    Column("oauth_id", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_students = Table(
    "students",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("roll_no", String(50), nullable=False, unique=True),
    Column("student_name", String(255)),
    Column("status", String(20), nullable=False, server_default="Active"),
)

_faculty = Table(
    "faculty",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("faculty_name", String(255)),
)

_otp_tokens = Table(
    "otp_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, index=True),
    Column("otp_code", String(6), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("purpose", String(30), nullable=False, server_default=PASSWORD_RESET),
    Column("is_used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    """Format an aware datetime as a fixed-width UTC ISO-8601 string.

    Fixed microsecond precision keeps string comparison chronological, which
    the expiry queries rely on.
    """
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, their role profiles and OTP tokens.

    Usage:
        store = UserStore("sqlite:///sjcauth.db")
        user = store.get_by_email("12345@josephscollege.ac.in")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a user without a profile and return its database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.connect() as conn:
            user_id = self._insert_user(conn, user)
            conn.commit()
        return user_id

    def provision_user(self, user: User, profile: StudentProfile | FacultyProfile) -> int:
        """Insert a user and its role profile in one transaction.

        Either both rows are written or neither is. Raises IntegrityError if
        a concurrent request already created the email; the caller treats
        that as "user exists".
        """
        with self.engine.begin() as conn:
            user_id = self._insert_user(conn, user)
            if isinstance(profile, StudentProfile):
                conn.execute(
                    _students.insert().values(
                        user_id=user_id,
                        roll_no=profile.roll_no,
                        student_name=profile.student_name,
                        status=profile.status,
                    )
                )
            else:
                conn.execute(_faculty.insert().values(user_id=user_id, faculty_name=profile.faculty_name))
        return user_id

    def _insert_user(self, conn, user: User) -> int:
        now = _now_iso()
        result = conn.execute(
            _users.insert().values(
                email=user.email,
                role=user.role,
                password_hash=user.password_hash,
                oauth_provider=user.oauth_provider,
                oauth_id=user.oauth_id,
                is_active=1 if user.is_active else 0,
                created_at=now,
                updated_at=now,
            )
        )
        return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email_and_role(self, email: str, role: str) -> User | None:
        """Look up a user by email, matching only if the stored role agrees."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.email == email) & (_users.c.role == role))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def link_oauth(self, user_id: int, provider: str, subject: str) -> None:
        """Point an existing user at the identity it just logged in with.

        Role and profile rows are deliberately left alone.
        """
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(oauth_provider=provider, oauth_id=subject, updated_at=_now_iso())
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_student_profile(self, user_id: int) -> StudentProfile | None:
        with self.engine.connect() as conn:
            row = conn.execute(_students.select().where(_students.c.user_id == user_id)).fetchone()
        if row is None:
            return None
        return StudentProfile(
            id=row.id,
            user_id=row.user_id,
            roll_no=row.roll_no,
            student_name=row.student_name,
            status=row.status,
        )

    def get_faculty_profile(self, user_id: int) -> FacultyProfile | None:
        with self.engine.connect() as conn:
            row = conn.execute(_faculty.select().where(_faculty.c.user_id == user_id)).fetchone()
        if row is None:
            return None
        return FacultyProfile(id=row.id, user_id=row.user_id, faculty_name=row.faculty_name)

    # ------------------------------------------------------------------
    # OTP tokens
    # ------------------------------------------------------------------

    def create_otp(self, otp: OtpToken) -> int:
        """Insert a new, unused OTP row and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _otp_tokens.insert().values(
                    email=otp.email,
                    otp_code=otp.otp_code,
                    expires_at=otp.expires_at,
                    purpose=otp.purpose,
                    is_used=0,
                    created_at=otp.created_at or _now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_active_otp(self, email: str, code: str, purpose: str, now_iso: str) -> OtpToken | None:
        """Return the newest unused, unexpired OTP matching email + code + purpose.

        Wrong code, expired and already-used rows all produce None; callers
        cannot tell the cases apart.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _otp_tokens.select()
                .where(
                    (_otp_tokens.c.email == email)
                    & (_otp_tokens.c.otp_code == code)
                    & (_otp_tokens.c.purpose == purpose)
                    & (_otp_tokens.c.expires_at > now_iso)
                    & (_otp_tokens.c.is_used == 0)
                )
                .order_by(_otp_tokens.c.created_at.desc(), _otp_tokens.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_otp(row) if row is not None else None

    def get_otp(self, otp_id: int) -> OtpToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_otp_tokens.select().where(_otp_tokens.c.id == otp_id)).fetchone()
        return _row_to_otp(row) if row is not None else None

    def consume_otp_and_set_password(self, otp_id: int, email: str, password_hash: str) -> bool:
        """Mark an OTP used and store the new password hash atomically.

        The OTP is consumed only if it is still unused and was issued to
        `email`. Returns False (and changes nothing) when the OTP was already
        consumed, does not exist, or the user row is gone.
        """
        with self.engine.connect() as conn:
            consumed = conn.execute(
                _otp_tokens.update()
                .where(
                    (_otp_tokens.c.id == otp_id)
                    & (_otp_tokens.c.email == email)
                    & (_otp_tokens.c.is_used == 0)
                )
                .values(is_used=1)
            )
            if consumed.rowcount == 0:
                conn.rollback()
                return False
            updated = conn.execute(
                _users.update()
                .where(_users.c.email == email)
                .values(password_hash=password_hash, updated_at=_now_iso())
            )
            if updated.rowcount == 0:
                conn.rollback()
                return False
            conn.commit()
        return True

    def purge_expired_otps(self, before_iso: str) -> int:
        """Delete OTP rows that expired before `before_iso`. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_otp_tokens.delete().where(_otp_tokens.c.expires_at < before_iso))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        role=row.role,
        password_hash=row.password_hash,
        oauth_provider=row.oauth_provider,
        oauth_id=row.oauth_id,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_otp(row) -> OtpToken:
    return OtpToken(
        id=row.id,
        email=row.email,
        otp_code=row.otp_code,
        expires_at=row.expires_at,
        purpose=row.purpose,
        is_used=bool(row.is_used),
        created_at=row.created_at,
    )
