"""
Per-role sign-in strategies.

Each account kind declares how its identifier is normalized, where its
credential record lives and which linked account (if any) must exist
before the password is compared. The credential validator dispatches on
AccountRole and never branches on role itself.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from .database import AccountStore
from .errors import ConfigurationError
from .models import AccountRole, CredentialRecord, Identity
from .validation import normalize_email

# Linkage check outcome: (failure reason, record holding the password)
LinkageOutcome = Tuple[Optional[str], Optional[CredentialRecord]]


class RoleStrategy(ABC):
    """
    Sign-in rules for one account kind.

    Attributes:
        role: Account kind handled by this strategy
        label: Human name of the identifier, used in user-facing messages
        event_prefix: Prefix for reasons written to the security event log
        email_login: Whether the identifier is an email address
    """
    role: AccountRole
    label: str
    event_prefix: str
    email_login: bool = False

    def normalize_identifier(self, identifier: str) -> str:
        """Agent and developer codes are trimmed but keep their case."""
        return identifier.strip()

    @abstractmethod
    def lookup(self, store: AccountStore, identifier: str) -> Optional[CredentialRecord]:
        """Fetch the primary credential record for a normalized identifier."""

    def check_linkage(self, store: AccountStore, record: CredentialRecord) -> LinkageOutcome:
        """
        Resolve the record whose secret is compared.

        Returns:
            (None, record) when the linkage holds, else (reason, None)
        """
        return None, record

    def build_identity(self, record: CredentialRecord) -> Identity:
        return Identity(
            id=record.id,
            display_name=record.display_name,
            email=record.email,
            role=self.role,
            identifier=record.identifier,
        )

    @property
    def invalid_credentials_message(self) -> str:
        return f"Invalid {self.label} or password"


class UserManagerStrategy(RoleStrategy):
    """Back-office managers sign in with their email address."""

    role = AccountRole.USER_MANAGER
    label = "email"
    event_prefix = "user"
    email_login = True

    def normalize_identifier(self, identifier: str) -> str:
        return normalize_email(identifier)

    def lookup(self, store: AccountStore, identifier: str) -> Optional[CredentialRecord]:
        return store.find_user_by_email(identifier, user_type=self.role.value)


class DeveloperStrategy(RoleStrategy):
    """Developers sign in with the developer ID stored as their username."""

    role = AccountRole.DEVELOPER
    label = "developer ID"
    event_prefix = "developer"

    def lookup(self, store: AccountStore, identifier: str) -> Optional[CredentialRecord]:
        return store.find_user_by_username(identifier, user_type=self.role.value)


class SalesAgentStrategy(RoleStrategy):
    """
    Sales agents sign in with their agent code.

    The agent profile must link to an active app user of type
    sales_agent, which holds the password.
    """

    role = AccountRole.SALES_AGENT
    label = "Sales Agent ID"
    event_prefix = "agent"

    def lookup(self, store: AccountStore, identifier: str) -> Optional[CredentialRecord]:
        return store.find_sales_agent(identifier)

    def check_linkage(self, store: AccountStore, record: CredentialRecord) -> LinkageOutcome:
        if not record.linked_account_id:
            return "no_user_account", None

        account = store.find_user_by_id(record.linked_account_id)
        if account is None or not account.is_active:
            return "user_account_not_found", None

        if account.role != self.role.value:
            return "invalid_user_type", None

        return None, account


ROLE_STRATEGIES: Dict[AccountRole, RoleStrategy] = {
    AccountRole.USER_MANAGER: UserManagerStrategy(),
    AccountRole.DEVELOPER: DeveloperStrategy(),
    AccountRole.SALES_AGENT: SalesAgentStrategy(),
}


def get_strategy(role) -> RoleStrategy:
    """
    Look up the strategy for a role.

    Args:
        role: AccountRole or its string value

    Raises:
        ConfigurationError: If no strategy is registered for the role
    """
    try:
        return ROLE_STRATEGIES[AccountRole(role)]
    except (ValueError, KeyError):
        raise ConfigurationError(f"No sign-in strategy for role: {role}") from None


def register_strategy(strategy: RoleStrategy) -> None:
    """Install or replace the strategy for strategy.role."""
    ROLE_STRATEGIES[strategy.role] = strategy
