"""Entitlement checks on ERP lookups.

Turns a GatewayResult from a phone or CNPJ lookup into an Entitlement:
who the caller is, which accounts they may retrieve documents for, and
whether they are blocked or lack billing authorization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from faturabot.domain.accounts import Account, Contact
from faturabot.domain.identifiers import phones_match
from faturabot.infra.resilience import GatewayResult

NOT_FOUND_ERRORS = ("not_found", "http_404")


class EntitlementStatus(str, Enum):
    AUTHORIZED = "authorized"
    BLOCKED = "blocked"
    NO_PERMISSION = "no_permission"
    NOT_FOUND = "not_found"
    PHONE_NOT_LINKED = "phone_not_linked"
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Entitlement:
    """Outcome of an entitlement check.

    Attributes:
        status: Overall decision.
        accounts: Accounts the caller may retrieve documents for
            (unblocked with an authorized contact). Empty unless AUTHORIZED.
        contact: Authorized contact that matched the caller's phone.
        blocked_accounts: Linked accounts that were dropped because blocked.
    """

    status: EntitlementStatus
    accounts: tuple[Account, ...] = field(default_factory=tuple)
    contact: Contact | None = None
    blocked_accounts: tuple[Account, ...] = field(default_factory=tuple)

    @property
    def blocked(self) -> bool:
        return self.status is EntitlementStatus.BLOCKED

    @property
    def has_permission(self) -> bool:
        return self.status is EntitlementStatus.AUTHORIZED


def linked_contacts(account: Account, phone: str) -> list[Contact]:
    """Contacts of the account whose phone or mobile matches, in ERP order."""
    return [
        contact
        for contact in account.contacts
        if any(phones_match(candidate, phone) for candidate in contact.phones())
    ]


def authorized_contact(account: Account, phone: str) -> Contact | None:
    """First billing-authorized contact matching the phone.

    Several authorized contacts may share one phone; the first one in the
    ERP's order wins.
    """
    for contact in linked_contacts(account, phone):
        if contact.billing_authorized:
            return contact
    return None


def _failed(result: GatewayResult) -> Entitlement:
    if result.unavailable:
        return Entitlement(EntitlementStatus.UNAVAILABLE)
    if result.error in NOT_FOUND_ERRORS:
        return Entitlement(EntitlementStatus.NOT_FOUND)
    return Entitlement(EntitlementStatus.REJECTED)


def check_phone_lookup(result: GatewayResult, phone: str) -> Entitlement:
    """Evaluate a lookup-by-phone result (0..n accounts).

    Each account is validated on its own; the outcome keeps the ones that
    are unblocked and have an authorized contact for this phone. When none
    qualifies the caller is BLOCKED only if every linked account is blocked.

    Args:
        result: GatewayResult whose data is a list of Account.
        phone: Caller phone (any format). NEVER logged.

    Returns:
        Entitlement for the caller.
    """
    if not result.success:
        return _failed(result)

    accounts: list[Account] = list(result.data or [])
    if not accounts:
        return Entitlement(EntitlementStatus.NOT_FOUND)

    eligible: list[Account] = []
    blocked: list[Account] = []
    contact: Contact | None = None

    for account in accounts:
        if account.blocked:
            blocked.append(account)
            continue
        match = authorized_contact(account, phone)
        if match is None:
            continue
        eligible.append(account)
        if contact is None:
            contact = match

    if eligible:
        return Entitlement(
            EntitlementStatus.AUTHORIZED,
            accounts=tuple(eligible),
            contact=contact,
            blocked_accounts=tuple(blocked),
        )
    if len(blocked) == len(accounts):
        return Entitlement(EntitlementStatus.BLOCKED, blocked_accounts=tuple(blocked))
    return Entitlement(EntitlementStatus.NO_PERMISSION, blocked_accounts=tuple(blocked))


def check_identifier_lookup(result: GatewayResult, phone: str) -> Entitlement:
    """Evaluate a lookup-by-identifier result (exactly one account or not found).

    Distinguishes a phone that is not registered on the account from a
    registered contact without billing authorization.
    """
    if not result.success:
        return _failed(result)

    accounts: list[Account] = list(result.data or [])
    if not accounts:
        return Entitlement(EntitlementStatus.NOT_FOUND)

    account = accounts[0]
    if account.blocked:
        return Entitlement(EntitlementStatus.BLOCKED, blocked_accounts=(account,))

    contacts = linked_contacts(account, phone)
    if not contacts:
        return Entitlement(EntitlementStatus.PHONE_NOT_LINKED)

    match = authorized_contact(account, phone)
    if match is None:
        return Entitlement(EntitlementStatus.NO_PERMISSION)
    return Entitlement(EntitlementStatus.AUTHORIZED, accounts=(account,), contact=match)
