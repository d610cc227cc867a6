"""Account and contact models built from ERP partner records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from faturabot.domain.identifiers import only_digits


@dataclass(frozen=True)
class Contact:
    """Person linked to an account. `billing_authorized` allows document requests."""

    name: str
    phone: str
    mobile: str = ""
    billing_authorized: bool = False

    def phones(self) -> list[str]:
        return [p for p in (self.phone, self.mobile) if p]


@dataclass(frozen=True)
class Account:
    """Billable legal entity (ERP partner)."""

    id: str
    identifier: str
    name: str
    blocked: bool = False
    contacts: tuple[Contact, ...] = field(default_factory=tuple)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "s", "sim")
    return False


def contact_from_erp(raw: dict[str, Any]) -> Contact:
    return Contact(
        name=str(raw.get("nome") or "").strip(),
        phone=only_digits(raw.get("telefone")),
        mobile=only_digits(raw.get("celular")),
        billing_authorized=_as_bool(raw.get("emailFaturamento")),
    )


def account_from_erp(raw: dict[str, Any]) -> Account | None:
    """Build an Account from an ERP partner record.

    Returns:
        Account, or None when the record has no id.
    """
    account_id = raw.get("id")
    if account_id is None or account_id == "":
        return None

    contacts_raw = raw.get("contatos") or []
    contacts = tuple(
        contact_from_erp(c) for c in contacts_raw if isinstance(c, dict)
    )
    name = raw.get("razaoSocial") or raw.get("nome") or raw.get("nomeFantasia") or ""

    return Account(
        id=str(account_id),
        identifier=only_digits(raw.get("cpfCnpj")),
        name=str(name).strip(),
        blocked=_as_bool(raw.get("bloqueado")),
        contacts=contacts,
    )


def accounts_from_erp(payload: Any) -> list[Account]:
    """Extract accounts from an ERP response.

    The ERP wraps lists as {"data": [...]}; a bare list or a single record
    are accepted too.
    """
    records: Any = payload
    if isinstance(payload, dict):
        records = payload.get("data", payload)
    if isinstance(records, dict):
        records = [records]
    if not isinstance(records, list):
        return []

    accounts = []
    for record in records:
        if not isinstance(record, dict):
            continue
        account = account_from_erp(record)
        if account is not None:
            accounts.append(account)
    return accounts
