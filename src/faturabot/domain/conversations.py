"""Conversation state machine: one inbound message in, one Reply out.

Stages: initial -> (awaiting_identifier | menu | blocked | no_permission),
menu -> awaiting_new_identifier -> menu. Exit words end the conversation
from any stage; a timed-out session is discarded and the message is handled
as a fresh initial turn.

Processing is serialized per identity through the session repository lock.
Security: NEVER log text, phone or CNPJ. Only hashes, stages and counts.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Iterable, Protocol

from faturabot.domain.accounts import Account
from faturabot.domain.documents import Document, DocumentKind, format_brl
from faturabot.domain.entitlement import (
    Entitlement,
    EntitlementStatus,
    check_identifier_lookup,
    check_phone_lookup,
)
from faturabot.domain.identifiers import format_cnpj, is_valid_cnpj
from faturabot.domain.intents import Handoff, Intent, ResolvedIntent
from faturabot.domain.parsing import (
    extract_identifier,
    looks_like_identifier_attempt,
    resolve_intent,
)
from faturabot.domain.replies import DocumentBlock, Reply
from faturabot.domain.sessions import Session, SessionRepository, Stage
from faturabot.infra.hashing import hash_identifier
from faturabot.infra.resilience import GatewayResult
from faturabot.infra.time import utc_now
from faturabot.infra.transcripts import TranscriptRecorder
from faturabot.observability.logging import get_logger
from faturabot.observability.redaction import safe_log_context
from faturabot.whatsapp.models import InboundMessage
from faturabot.whatsapp.templates import MENU_OPTIONS, render

if TYPE_CHECKING:
    from faturabot.whatsapp.channels import Channel

logger = get_logger(__name__)

_AWAITING_STAGES = (Stage.AWAITING_IDENTIFIER, Stage.AWAITING_NEW_IDENTIFIER)


class DocumentGateway(Protocol):
    """ERP operations the engine depends on (see infra.erp_client.ErpClient)."""

    def lookup_by_phone(self, phone: str) -> GatewayResult: ...

    def lookup_by_identifier(self, identifier: str) -> GatewayResult: ...

    def list_open_bills(self, account_id: str) -> GatewayResult: ...

    def fetch_bill_pdf(self, bill_id: str) -> GatewayResult: ...

    def list_invoices(self, account_id: str) -> GatewayResult: ...

    def fetch_invoice_xml(self, invoice_id: str) -> GatewayResult: ...


class ConversationEngine:
    """Drives the per-identity dialogue.

    Args:
        sessions: Session repository (owns timeout and per-identity locks).
        gateway: ERP entitlement and document gateway.
        recorder: Transcript recorder; failures are logged only.
        support_phone: Phone shown in the support handoff message.
        clock: Returns the current time (injectable for tests).
        aliases: Optional override for the intent alias table.
    """

    def __init__(
        self,
        sessions: SessionRepository,
        gateway: DocumentGateway,
        recorder: TranscriptRecorder,
        *,
        support_phone: str = "",
        clock: Callable[[], datetime] = utc_now,
        aliases: dict[str, ResolvedIntent] | None = None,
    ) -> None:
        self._sessions = sessions
        self._gateway = gateway
        self._recorder = recorder
        self._support_phone = support_phone
        self._clock = clock
        self._aliases = aliases

    # Entry points

    def handle(self, message: InboundMessage) -> Reply:
        """Process one message under the identity lock and return its Reply."""
        with self._sessions.lock(message.identity):
            return self._handle_locked(message)

    def handle_safe(self, message: InboundMessage) -> Reply:
        """Like handle(), but an unexpected error yields the generic error reply."""
        with self._sessions.lock(message.identity):
            return self._handle_guarded(message)

    def handle_and_deliver(self, message: InboundMessage, channel: Channel) -> dict[str, Any]:
        """Process one message and deliver its reply under the same identity lock.

        A second message from the same identity waits until every block of
        this reply (paced notices and attachments included) was dispatched.
        Delivery errors propagate to the caller.
        """
        with self._sessions.lock(message.identity):
            reply = self._handle_guarded(message)
            return channel.deliver(reply)

    def process_batch(self, messages: Iterable[InboundMessage]) -> list[Reply]:
        """One Reply per message, in order. A failing message never aborts the batch."""
        return [self.handle_safe(message) for message in messages]

    # Turn

    def _handle_guarded(self, message: InboundMessage) -> Reply:
        try:
            return self._handle_locked(message)
        except Exception:
            logger.exception(
                "conversation turn failed",
                extra={
                    "extra_fields": safe_log_context(
                        identity_hash=hash_identifier(message.identity),
                        message_id=message.message_id,
                        provider=message.provider,
                    )
                },
            )
            return Reply(message.identity, message.message_id).text(render("error_generic"))

    def _handle_locked(self, message: InboundMessage) -> Reply:
        identity = message.identity
        reply = Reply(identity, message.message_id)

        if self._sessions.is_expired(identity):
            self._sessions.delete(identity)
            reply.text(render("session_expired"))
            logger.info(
                "session expired",
                extra={"extra_fields": safe_log_context(identity_hash=hash_identifier(identity))},
            )

        session = self._sessions.get(identity)
        if session is not None and session.stage is Stage.BLOCKED:
            # blocked is terminal: the next message starts over
            self._sessions.delete(identity)
            session = None
        if session is None:
            session = Session()

        stage_before = session.stage
        resolved = resolve_intent(message.text, session.stage, aliases=self._aliases)

        if resolved.is_exit():
            reply.text(render("goodbye"))
            keep = False
        elif session.stage is Stage.INITIAL:
            keep = self._on_initial(session, message, resolved, reply)
        elif session.stage in _AWAITING_STAGES:
            keep = self._on_awaiting(session, message, resolved, reply)
        elif session.stage is Stage.MENU:
            keep = self._on_menu(session, message, resolved, reply)
        else:
            keep = self._on_no_permission(resolved, reply)

        if keep:
            session.last_interaction = self._clock()
            self._sessions.put(identity, session)
        else:
            self._sessions.delete(identity)

        logger.info(
            "conversation turn",
            extra={
                "extra_fields": safe_log_context(
                    identity_hash=hash_identifier(identity),
                    message_id=message.message_id,
                    intent=resolved.intent.value,
                    stage_from=stage_before.value,
                    stage_to=session.stage.value if keep else "ended",
                    blocks=len(reply.blocks),
                    documents=len(reply.documents()),
                )
            },
        )

        self._record(message, session, reply)
        return reply

    # Stages

    def _on_initial(
        self,
        session: Session,
        message: InboundMessage,
        resolved: ResolvedIntent,
        reply: Reply,
    ) -> bool:
        session.initial_text = message.text
        result = self._gateway.lookup_by_phone(message.identity)
        entitlement = check_phone_lookup(result, message.identity)

        if entitlement.status is EntitlementStatus.AUTHORIZED:
            return self._identified(session, entitlement, resolved, message.identity, reply)

        if entitlement.status is EntitlementStatus.BLOCKED:
            reply.text(render("blocked"))
            session.stage = Stage.BLOCKED
            return True

        if entitlement.status is EntitlementStatus.NO_PERMISSION:
            reply.text(render("no_permission"))
            session.stage = Stage.NO_PERMISSION
            return True

        if entitlement.status is EntitlementStatus.NOT_FOUND:
            session.stage = Stage.AWAITING_IDENTIFIER
            identifier = extract_identifier(message.text)
            if identifier:
                return self._submit_identifier(session, identifier, message.identity, reply)
            reply.text(render("identifier_request"))
            return True

        reply.text(render("error_connection"))
        return False

    def _on_awaiting(
        self,
        session: Session,
        message: InboundMessage,
        resolved: ResolvedIntent,
        reply: Reply,
    ) -> bool:
        if resolved.intent is Intent.IDENTIFIER_SUBMITTED:
            return self._submit_identifier(session, resolved.identifier, message.identity, reply)

        if (
            resolved.intent is Intent.MENU_NOOP
            and session.stage is Stage.AWAITING_NEW_IDENTIFIER
            and session.accounts
        ):
            session.stage = Stage.MENU
            self._menu(reply)
            return True

        if resolved.intent is Intent.REQUEST_HUMAN:
            return self._handoff(resolved.handoff, reply)

        if looks_like_identifier_attempt(message.text):
            reply.text(render("identifier_invalid"))
        elif session.stage is Stage.AWAITING_NEW_IDENTIFIER:
            reply.text(render("new_identifier_request"))
        else:
            reply.text(render("identifier_request"))
        return True

    def _on_menu(
        self,
        session: Session,
        message: InboundMessage,
        resolved: ResolvedIntent,
        reply: Reply,
    ) -> bool:
        if resolved.intent is Intent.REQUEST_DOCUMENTS:
            return self._retrieve(session, resolved.document_kind, message.identity, reply)

        if resolved.intent is Intent.CHANGE_IDENTIFIER:
            reply.text(render("new_identifier_request"))
            session.stage = Stage.AWAITING_NEW_IDENTIFIER
            return True

        if resolved.intent is Intent.REQUEST_HUMAN:
            return self._handoff(resolved.handoff, reply)

        if resolved.intent is not Intent.MENU_NOOP:
            reply.text(render("menu_invalid_option"))
        self._menu(reply)
        return True

    def _on_no_permission(self, resolved: ResolvedIntent, reply: Reply) -> bool:
        if resolved.intent is Intent.REQUEST_HUMAN:
            return self._handoff(resolved.handoff or Handoff.AGENT, reply)
        reply.text(render("no_permission"))
        return True

    # Identification

    def _submit_identifier(
        self,
        session: Session,
        identifier: str | None,
        identity: str,
        reply: Reply,
    ) -> bool:
        if not identifier or not is_valid_cnpj(identifier):
            reply.text(render("identifier_invalid"))
            return True

        session.pending_identifier = identifier
        result = self._gateway.lookup_by_identifier(identifier)
        entitlement = check_identifier_lookup(result, identity)
        status = entitlement.status

        if status is EntitlementStatus.AUTHORIZED:
            initial_intent = None
            if session.stage is Stage.AWAITING_IDENTIFIER and session.initial_text:
                initial_intent = resolve_intent(
                    session.initial_text, Stage.MENU, aliases=self._aliases
                )
            return self._identified(session, entitlement, initial_intent, identity, reply)

        if status is EntitlementStatus.NOT_FOUND:
            reply.text(render("identifier_not_found"))
        elif status is EntitlementStatus.PHONE_NOT_LINKED:
            reply.text(render("phone_not_linked", {"identifier": format_cnpj(identifier)}))
        elif status is EntitlementStatus.BLOCKED:
            reply.text(render("blocked"))
            session.stage = Stage.BLOCKED
        elif status is EntitlementStatus.NO_PERMISSION:
            reply.text(render("no_permission"))
            session.stage = Stage.NO_PERMISSION
        else:
            reply.text(render("error_connection"))
        return True

    def _identified(
        self,
        session: Session,
        entitlement: Entitlement,
        initial_intent: ResolvedIntent | None,
        identity: str,
        reply: Reply,
    ) -> bool:
        session.accounts = list(entitlement.accounts)
        session.contact = entitlement.contact
        session.pending_identifier = None
        session.initial_text = None
        session.stage = Stage.MENU

        contact_name = entitlement.contact.name if entitlement.contact else ""
        contact_name = contact_name or "cliente"
        if len(session.accounts) == 1:
            account = session.accounts[0]
            reply.text(
                render(
                    "welcome",
                    {
                        "contact_name": contact_name,
                        "account_name": account.name,
                        "identifier": format_cnpj(account.identifier),
                    },
                )
            )
        else:
            reply.text(
                render(
                    "welcome_multiple",
                    {"contact_name": contact_name, "count": len(session.accounts)},
                )
            )

        if initial_intent is not None and initial_intent.wants_documents():
            return self._retrieve(session, initial_intent.document_kind, identity, reply)
        if initial_intent is not None and initial_intent.intent is Intent.REQUEST_HUMAN:
            return self._handoff(initial_intent.handoff, reply)

        self._menu(reply)
        return True

    # Documents

    def _revalidate(self, session: Session, identity: str) -> tuple[list[Account], bool] | None:
        """Re-check every session account before retrieval.

        Returns:
            (still eligible accounts, whether any was found blocked), or None
            when the gateway could not answer.
        """
        eligible: list[Account] = []
        any_blocked = False
        for account in session.accounts:
            result = self._gateway.lookup_by_identifier(account.identifier)
            entitlement = check_identifier_lookup(result, identity)
            if entitlement.status in (EntitlementStatus.UNAVAILABLE, EntitlementStatus.REJECTED):
                return None
            if entitlement.status is EntitlementStatus.AUTHORIZED:
                eligible.extend(entitlement.accounts)
            elif entitlement.blocked:
                any_blocked = True
        return eligible, any_blocked

    def _retrieve(
        self,
        session: Session,
        kind: DocumentKind | None,
        identity: str,
        reply: Reply,
    ) -> bool:
        checked = self._revalidate(session, identity)
        if checked is None:
            reply.text(render("error_connection"))
            return True

        accounts, any_blocked = checked
        if not accounts:
            if any_blocked:
                reply.text(render("blocked_during_session"))
                session.stage = Stage.BLOCKED
            else:
                reply.text(render("no_permission"))
                session.stage = Stage.NO_PERMISSION
            session.accounts = []
            return True

        session.accounts = accounts
        session.stage = Stage.MENU
        several = len(accounts) > 1

        # Accounts are processed one after the other, in ERP order
        for account in accounts:
            if several:
                reply.text(
                    render(
                        "account_header",
                        {
                            "account_name": account.name,
                            "identifier": format_cnpj(account.identifier),
                        },
                    )
                )
            if kind is DocumentKind.INVOICE:
                self._add_invoices(account, reply)
            else:
                self._add_bills(account, reply)

        reply.text(render("anything_else"))
        return True

    def _add_bills(self, account: Account, reply: Reply) -> None:
        result = self._gateway.list_open_bills(account.id)
        if not result.success:
            reply.text(render("error_connection"))
            return
        bills: list[Document] = list(result.data or [])
        if not bills:
            reply.text(render("bills_none"))
            return

        reply.text(render("bills_found", {"count": len(bills)}))
        for bill in bills:
            lines = [
                render(
                    "bill_item",
                    {
                        "number": bill.number,
                        "due_date": bill.date or "-",
                        "amount": format_brl(bill.amount),
                    },
                )
            ]
            if bill.digitable_line:
                lines.append(render("bill_digitable_line", {"digitable_line": bill.digitable_line}))
            reply.text("\n\n".join(lines))

            file_result = self._gateway.fetch_bill_pdf(bill.id)
            if file_result.success:
                reply.document(file_result.data)
            else:
                reply.text(render("bill_file_unavailable"))

    def _add_invoices(self, account: Account, reply: Reply) -> None:
        result = self._gateway.list_invoices(account.id)
        if not result.success:
            reply.text(render("error_connection"))
            return
        invoices: list[Document] = list(result.data or [])
        if not invoices:
            reply.text(render("invoices_none"))
            return

        reply.text(render("invoices_found", {"count": len(invoices)}))
        for invoice in invoices:
            lines = [
                render(
                    "invoice_item",
                    {
                        "number": invoice.number,
                        "issue_date": invoice.date or "-",
                        "amount": format_brl(invoice.amount),
                    },
                )
            ]
            if invoice.verification_code:
                lines.append(
                    render(
                        "invoice_verification_code",
                        {"verification_code": invoice.verification_code},
                    )
                )
            if invoice.access_key:
                lines.append(render("invoice_access_key", {"access_key": invoice.access_key}))
            reply.text("\n".join(lines))

            file_result = self._gateway.fetch_invoice_xml(invoice.id)
            if file_result.success:
                reply.document(file_result.data)
            else:
                reply.text(render("invoice_file_unavailable"))

    # Terminal replies

    def _menu(self, reply: Reply) -> None:
        reply.menu(render("menu"), MENU_OPTIONS)

    def _handoff(self, handoff: Handoff | None, reply: Reply) -> bool:
        if handoff is Handoff.SUPPORT:
            if self._support_phone:
                text = render("handoff_support", {"support_phone": self._support_phone})
            else:
                text = render("handoff_support_no_phone")
            reply.handoff(Handoff.SUPPORT, text)
        else:
            reply.handoff(Handoff.AGENT, render("handoff_agent"))
        return False

    # Transcript

    def _record(self, message: InboundMessage, session: Session, reply: Reply) -> None:
        at = self._clock().isoformat()
        entries: list[dict[str, Any]] = [{"role": "customer", "at": at, "text": message.text}]
        for block in reply.blocks:
            if isinstance(block, DocumentBlock):
                entries.append({"role": "bot", "at": at, "document": block.file.filename})
            else:
                entries.append({"role": "bot", "at": at, "text": block.text})

        account = session.primary_account()
        result = self._recorder.record(
            message_id=message.message_id,
            account_id=account.id if account else None,
            identifier=account.identifier if account else session.pending_identifier,
            entries=entries,
        )
        if not result.success:
            logger.warning(
                "transcript not recorded",
                extra={
                    "extra_fields": safe_log_context(
                        message_id=message.message_id,
                        error=result.error,
                    )
                },
            )
