"""
Authentication data models.

Data classes for identities, credential records, sessions, rate-limit
windows and security events.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class AccountRole(str, Enum):
    """
    Closed set of account kinds that can sign in.
    """
    USER_MANAGER = "user_manager"   # Back-office manager, signs in by email
    DEVELOPER = "developer"         # Property developer, signs in by developer ID
    SALES_AGENT = "sales_agent"     # Sales agent, signs in by sales agent ID


@dataclass(frozen=True)
class Identity:
    """
    Resolved, authenticated principal.

    Only created after successful credential validation. Frozen: a
    re-authentication or profile refresh produces a new Identity.

    Attributes:
        id: Account identifier (primary record id)
        display_name: Human-readable name
        email: Account email address
        role: Account kind
        identifier: Login handle used to sign in (email or agent/developer ID)
    """
    id: str
    display_name: str
    email: str
    role: AccountRole
    identifier: str

    def to_dict(self) -> Dict[str, str]:
        """Serialize for persisted session storage."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email": self.email,
            "role": self.role.value,
            "identifier": self.identifier,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        """
        Rebuild an Identity from its persisted form.

        Raises:
            ValueError: If a field is missing, not a string, or the role is unknown
        """
        if not isinstance(data, dict):
            raise ValueError("Identity payload must be an object")

        values = {}
        for name in ("id", "display_name", "email", "role", "identifier"):
            value = data.get(name)
            if not isinstance(value, str) or (name in ("id", "role", "identifier") and not value):
                raise ValueError(f"Identity field '{name}' is missing or invalid")
            values[name] = value

        values["role"] = AccountRole(values["role"])
        return cls(**values)


@dataclass
class CredentialRecord:
    """
    Durable account entry looked up during validation.

    Attributes:
        id: Record identifier (UUID)
        identifier: Login handle, unique per role namespace
        secret: Stored secret (bcrypt hash, or legacy plaintext)
        is_active: Deactivated records never validate
        role: Account kind stored with the record
        display_name: Name shown for the account
        email: Account email address
        linked_account_id: Id of the generic account this profile links to
    """
    id: str
    identifier: str
    secret: str
    is_active: bool
    role: str
    display_name: str = ""
    email: str = ""
    linked_account_id: Optional[str] = None


@dataclass(frozen=True)
class Session:
    """
    Live authenticated state.

    Attributes:
        token: Signed session token
        identity: Authenticated principal
        issued_at: Token issue time (UTC)
        expires_at: Token expiry time (UTC)
        token_id: Token id (jti claim), used to delete the server-side session row
    """
    token: str
    identity: Identity
    issued_at: datetime
    expires_at: datetime
    token_id: str


@dataclass
class RateLimitWindow:
    """
    Counter for one rate-limit key.

    Attributes:
        key: Rate-limit key (e.g. "sales_agent_login_S101")
        count: Requests counted in the current window
        window_start: Window start, in limiter clock seconds
    """
    key: str
    count: int
    window_start: float


@dataclass(frozen=True)
class SecurityEvent:
    """
    Append-only security event.

    Attributes:
        action: Event name (e.g. "failed_sales_agent_login")
        detail: Structured detail payload
        timestamp: Event time (UTC)
    """
    action: str
    detail: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True)
class AuthResult:
    """
    Outcome returned to callers of sign-in and validation.

    Never carries the internal failure reason.

    Attributes:
        success: Whether authentication succeeded
        error: User-facing error message on failure
        identity: Authenticated principal on success
        session: Session minted by the session store on sign-in
    """
    success: bool
    error: Optional[str] = None
    identity: Optional[Identity] = None
    session: Optional[Session] = None

    @classmethod
    def ok(cls, identity: Identity, session: Optional[Session] = None) -> "AuthResult":
        return cls(success=True, identity=identity, session=session)

    @classmethod
    def fail(cls, error: str) -> "AuthResult":
        return cls(success=False, error=error)
