"""
Identity adapter: accounts, password hashing, sessions, local session cache.

Components:
    hash_password / verify_password — salted PBKDF2-SHA256
    AuthService     — sign-up, sign-in, profile and admin operations
    SessionManager  — opaque API tokens → account email
    SessionCache    — per-account JSON-file cache (session user, drafts, prefs)
"""
import hashlib
import hmac
import json
import logging
import os
import threading
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from .docstore import DocumentStore
from .errors import AuthError, NotFoundError, ValidationError
from .schema import User, utc_now

logger = logging.getLogger(__name__)

USERS = "users"
PBKDF2_ITERATIONS = 200_000


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Password hashing
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def hash_password(password: str, salt: Optional[bytes] = None,
                  iterations: int = PBKDF2_ITERATIONS) -> str:
    """Return "pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>"."""
    salt = salt or os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"pbkdf2_sha256${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt_hex, digest_hex = stored.split("$")
    except (AttributeError, ValueError):
        return False
    if scheme != "pbkdf2_sha256":
        return False
    try:
        salt, rounds = bytes.fromhex(salt_hex), int(iterations)
    except ValueError:
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(candidate.hex(), digest_hex)


def _public(user: User) -> User:
    """Copy of a user record without the password hash."""
    return replace(user, password="")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# AuthService
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class AuthService:
    """Account records in the users table, keyed by lower-cased email."""

    def __init__(self, store: DocumentStore, admin_emails: Optional[List[str]] = None):
        self.store = store
        self.admin_emails = {e.lower() for e in (admin_emails or [])}

    def _load(self, email: str) -> Optional[User]:
        doc = self.store.get(USERS, {"email": email.strip().lower()})
        return User.from_dict(doc) if doc else None

    def sign_up(self, email: str, password: str, name: str) -> User:
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required")
        if not password:
            raise ValidationError("Password is required")
        if self._load(email):
            raise AuthError("User already exists with this email")

        user = User(
            email=email,
            user_id=str(uuid.uuid4()),
            name=(name or "").strip() or email.split("@")[0],
            password=hash_password(password),
            is_admin=email in self.admin_emails,
        )
        self.store.put(USERS, user.to_dict(include_password=True))
        logger.info(f"Signed up {email} (admin={user.is_admin})")
        return _public(user)

    def sign_in(self, email: str, password: str) -> User:
        user = self._load(email or "")
        if not user:
            raise AuthError("User not found")
        if not user.is_active:
            raise AuthError("Account is deactivated")
        if not verify_password(password or "", user.password):
            raise AuthError("Invalid password")
        return _public(user)

    def get_user_by_email(self, email: str) -> Optional[User]:
        user = self._load(email)
        return _public(user) if user else None

    def _update(self, email: str, fields: Dict[str, Any]) -> User:
        fields["updated_at"] = utc_now()
        try:
            doc = self.store.update(USERS, {"email": email.strip().lower()}, fields)
        except NotFoundError:
            raise AuthError("User not found")
        return _public(User.from_dict(doc))

    def update_user(self, email: str, name: str) -> User:
        return self._update(email, {"name": name})

    # ── Admin-only ───────────────────────────────────────────────────────────

    def get_all_users(self) -> List[User]:
        return [_public(User.from_dict(d)) for d in self.store.scan(USERS)]

    def update_user_admin(self, email: str, updates: Dict[str, Any]) -> User:
        """Partial update of name / is_active / password; absent keys are untouched."""
        fields: Dict[str, Any] = {}
        if updates.get("name"):
            fields["name"] = updates["name"]
        if updates.get("is_active") is not None:
            fields["is_active"] = bool(updates["is_active"])
        if updates.get("password"):
            fields["password"] = hash_password(updates["password"])
        return self._update(email, fields)

    def delete_user(self, email: str) -> bool:
        return self.store.delete(USERS, {"email": email.strip().lower()})

    def set_admin_status(self, email: str, is_admin: bool = True) -> User:
        return self._update(email, {"is_admin": bool(is_admin)})


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Sessions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SessionManager:
    """In-process table of API session tokens."""

    def __init__(self):
        self._tokens: Dict[str, str] = {}
        self._lock = threading.Lock()

    def issue(self, user: User) -> str:
        token = uuid.uuid4().hex
        with self._lock:
            self._tokens[token] = user.email
        return token

    def resolve(self, token: str) -> Optional[str]:
        with self._lock:
            return self._tokens.get(token or "")

    def tokens_for(self, email: str) -> List[str]:
        with self._lock:
            return [t for t, e in self._tokens.items() if e == email]

    def revoke(self, token: str) -> None:
        with self._lock:
            self._tokens.pop(token or "", None)

    def revoke_all(self, email: str) -> List[str]:
        """Drop every token of an account; returns the revoked tokens."""
        with self._lock:
            revoked = [t for t, e in self._tokens.items() if e == email]
            for token in revoked:
                del self._tokens[token]
        return revoked


class SessionCache:
    """
    Small JSON file holding, per signed-in account, the user record, the
    pending extracted drafts awaiting confirmation and preference flags.

        {"todo-user":      {email: user record},
         "pending-drafts": {email: [draft, ...]},
         "preferences":    {email: {name: value}}}

    Loaded once at startup; a missing or corrupt file starts empty. Every
    write rewrites the whole file under a lock.
    """

    USER_KEY = "todo-user"
    DRAFTS_KEY = "pending-drafts"
    PREFS_KEY = "preferences"

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return data if isinstance(data, dict) else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable session cache {self.path}: {e}")
            return {}

    def _write(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data, indent=2), encoding="utf-8")

    def _section(self, key: str) -> Dict[str, Any]:
        section = self._data.get(key)
        return section if isinstance(section, dict) else {}

    def _get(self, key: str, email: str, default: Any = None) -> Any:
        with self._lock:
            return self._section(key).get(email.lower(), default)

    def _put(self, key: str, email: str, value: Any) -> None:
        with self._lock:
            section = dict(self._section(key))
            section[email.lower()] = value
            self._data[key] = section
            self._write()

    def _drop(self, key: str, email: str) -> None:
        with self._lock:
            section = dict(self._section(key))
            if section.pop(email.lower(), None) is None:
                return
            self._data[key] = section
            self._write()

    # Session users
    def set_user(self, user: User) -> None:
        self._put(self.USER_KEY, user.email, user.to_dict())

    def get_user(self, email: str) -> Optional[User]:
        data = self._get(self.USER_KEY, email)
        return User.from_dict(data) if isinstance(data, dict) else None

    def users(self) -> List[User]:
        with self._lock:
            records = list(self._section(self.USER_KEY).values())
        return [User.from_dict(r) for r in records if isinstance(r, dict) and r.get("email")]

    def clear_user(self, email: str) -> None:
        self._drop(self.USER_KEY, email)

    def is_logged_in(self, email: str) -> bool:
        return self.get_user(email) is not None

    # Pending drafts
    def set_pending_drafts(self, email: str, drafts: List[Dict[str, Any]]) -> None:
        self._put(self.DRAFTS_KEY, email, drafts)

    def get_pending_drafts(self, email: str) -> List[Dict[str, Any]]:
        return list(self._get(self.DRAFTS_KEY, email) or [])

    def clear_pending_drafts(self, email: str) -> None:
        self._drop(self.DRAFTS_KEY, email)

    # Preferences
    def get_preferences(self, email: str) -> Dict[str, Any]:
        return dict(self._get(self.PREFS_KEY, email) or {})

    def get_preference(self, email: str, name: str, default: Any = None) -> Any:
        return self.get_preferences(email).get(name, default)

    def update_preferences(self, email: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            section = dict(self._section(self.PREFS_KEY))
            prefs = dict(section.get(email.lower()) or {})
            prefs.update(updates)
            section[email.lower()] = prefs
            self._data[self.PREFS_KEY] = section
            self._write()
        return dict(prefs)
