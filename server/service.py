"""Contract lifecycle service for inkwell.

Orchestrates chain resolution, validation, state transitions and
persistence for the party intents (confirm, update, sign, reject) and the
brand-side counterparts. Every intent:

1. checks whatever it can without state (field formats, signature image),
2. re-fetches and resolves the effective contract,
3. applies the transition to a copy,
4. saves with a version check, re-running from fresh state if it lost a race.

Errors are returned, never raised, so callers can invoke intents
speculatively.
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import lifecycle
from contract import (
    ContractDocument, SignatureImage, build_contract,
    sanitize_influencer_fields, validate_influencer_fields,
    validate_signature_image,
)
from lifecycle import FlagPolicy, DEFAULT_POLICY, with_flags
from protocol import (
    DEFAULT_PAGE_LIMIT, MAX_ATTEMPTS, PAGE_LIMIT_MAX,
    LifecycleError, NotFound, NotPermitted, ValidationFailed,
)
from resolver import Resolution, resolve_effective
from server.store import ContractStore

logger = logging.getLogger(__name__)


# --- PDF rendering collaborator ---

class PdfRenderer(ABC):
    """Produces the contract PDF elsewhere. The lifecycle only asks for a fresh one."""

    @abstractmethod
    def request_render(self, doc: ContractDocument) -> None:
        ...


class LoggingRenderer(PdfRenderer):
    def request_render(self, doc: ContractDocument) -> None:
        logger.info("render requested for %s (status=%s, version=%d)",
                    doc.contract_id, doc.status.value, doc.version)


# --- Results ---

@dataclass
class Outcome:
    """A successfully applied intent.

    contract_id is the id actually mutated; it differs from requested_id
    when the request named a superseded contract.
    """
    document: ContractDocument
    requested_id: str

    @property
    def contract_id(self) -> str:
        return self.document.contract_id

    @property
    def redirected(self) -> bool:
        return self.contract_id != self.requested_id

    def to_dict(self) -> dict:
        return {
            "requestedId": self.requested_id,
            "contractId": self.contract_id,
            "redirected": self.redirected,
            "status": self.document.status.value,
            "contract": self.document.to_dict(),
        }


class ContractLifecycleService:
    """Applies party intents to the effective contract."""

    def __init__(self, store: ContractStore | None = None,
                 policy: FlagPolicy | None = None,
                 renderer: PdfRenderer | None = None,
                 clock=time.time,
                 max_attempts: int = MAX_ATTEMPTS):
        self.store = store or ContractStore()
        self.policy = policy or DEFAULT_POLICY
        self.renderer = renderer or LoggingRenderer()
        self.clock = clock
        self.max_attempts = max(1, max_attempts)

    # --- Reads ---

    def resolve_effective(self, contract_id: str,
                          scope: tuple[str, str, str] | None = None) -> Resolution | NotFound:
        """Effective contract for contract_id, with freshly computed flags.

        With an explicit (brand, influencer, campaign) scope an unknown id
        yields a degraded Resolution rather than an error. Without a scope
        the id itself must exist so its scope can be looked up.
        """
        if scope is None:
            anchor = self.store.get(contract_id)
            if anchor is None:
                return NotFound("Contract not found", contract_id)
            scope = anchor.scope
        resolution = resolve_effective(contract_id, self.store.load_by_scope(*scope))
        if resolution.document is not None:
            with_flags(resolution.document, self.policy)
        return resolution

    def list_scope(self, brand_id: str, influencer_id: str, campaign_id: str) -> list[ContractDocument]:
        return [with_flags(d, self.policy) for d in self.store.load_by_scope(brand_id, influencer_id, campaign_id)]

    def list_rejected(self, influencer_id: str, page: int = 1, limit: int = DEFAULT_PAGE_LIMIT) -> dict:
        page = max(1, page)
        limit = min(max(1, limit), PAGE_LIMIT_MAX)
        docs, total = self.store.list_rejected_by_influencer(influencer_id, page, limit)
        return {
            "contracts": [with_flags(d, self.policy).to_dict() for d in docs],
            "meta": {
                "total": total,
                "page": page,
                "limit": limit,
                "totalPages": max(1, math.ceil(total / limit)),
            },
        }

    # --- Brand authoring handoff ---

    def issue(self, brand_id: str, influencer_id: str, campaign_id: str,
              influencer_fields: dict | None = None, send: bool = True) -> Outcome:
        """Persist a contract produced by the brand authoring flow."""
        doc = build_contract(brand_id, influencer_id, campaign_id,
                             influencer_fields=influencer_fields, send=send, now=self.clock())
        self.store.create(doc)
        logger.info("issued %s for campaign %s (status=%s)", doc.contract_id, campaign_id, doc.status.value)
        return Outcome(with_flags(doc, self.policy), doc.contract_id)

    # --- Influencer intents ---

    def confirm(self, contract_id: str, influencer_fields: dict) -> Outcome | LifecycleError:
        cleaned = sanitize_influencer_fields(influencer_fields)
        violations = validate_influencer_fields(cleaned, require_complete=True)
        if violations:
            return self._refuse("confirm", contract_id, ValidationFailed(violations, contract_id))
        return self._mutate("confirm", contract_id,
                            lambda doc, now: lifecycle.confirm(doc, cleaned, now, self.policy))

    def update(self, contract_id: str, partial_fields: dict) -> Outcome | LifecycleError:
        cleaned = sanitize_influencer_fields(partial_fields)
        violations = validate_influencer_fields(cleaned, require_complete=False)
        if violations:
            return self._refuse("update", contract_id, ValidationFailed(violations, contract_id))
        return self._mutate("update", contract_id,
                            lambda doc, now: lifecycle.update(doc, cleaned, now, self.policy))

    def sign(self, contract_id: str, image: SignatureImage,
             signer_name: str = "", signer_email: str = "") -> Outcome | LifecycleError:
        violations = validate_signature_image(image)
        if violations:
            return self._refuse("sign", contract_id, ValidationFailed(violations, contract_id))
        return self._mutate("sign", contract_id, lambda doc, now: lifecycle.sign(
            doc, image, now, self.policy, signer_name=signer_name, signer_email=signer_email,
        ))

    def reject(self, contract_id: str, reason: str | None = None) -> Outcome | LifecycleError:
        return self._mutate("reject", contract_id,
                            lambda doc, now: lifecycle.reject(doc, reason, now))

    # --- Brand intents ---

    def send(self, contract_id: str) -> Outcome | LifecycleError:
        return self._mutate("send", contract_id, lifecycle.send)

    def brand_confirm(self, contract_id: str) -> Outcome | LifecycleError:
        return self._mutate("brand_confirm", contract_id, lifecycle.brand_confirm)

    def brand_sign(self, contract_id: str, image: SignatureImage,
                   signer_name: str = "", signer_email: str = "") -> Outcome | LifecycleError:
        violations = validate_signature_image(image)
        if violations:
            return self._refuse("brand_sign", contract_id, ValidationFailed(violations, contract_id))
        return self._mutate("brand_sign", contract_id, lambda doc, now: lifecycle.brand_sign(
            doc, image, now, signer_name=signer_name, signer_email=signer_email,
        ))

    def resend(self, contract_id: str) -> Outcome | LifecycleError:
        """Replace the effective contract with a fresh copy. Returns the replacement."""
        def persist(current, result):
            old, replacement = result
            if not self.store.supersede(old, current.version, replacement):
                return None
            return replacement

        return self._mutate("resend", contract_id, lifecycle.resend, persist=persist)

    # --- Plumbing ---

    def _resolve_for_write(self, contract_id: str) -> Resolution | NotFound:
        resolution = self.resolve_effective(contract_id)
        if isinstance(resolution, NotFound):
            return resolution
        if not resolution.resolved:
            return NotFound("Contract not found", contract_id)
        return resolution

    def _mutate(self, intent: str, contract_id: str, apply, persist=None) -> Outcome | LifecycleError:
        """Resolve, apply, save; re-run from fresh state on a version conflict."""
        if persist is None:
            def persist(current, updated):
                return updated if self.store.save(updated, current.version) else None

        for attempt in range(1, self.max_attempts + 1):
            resolution = self._resolve_for_write(contract_id)
            if isinstance(resolution, LifecycleError):
                return self._refuse(intent, contract_id, resolution)
            current = resolution.document
            try:
                result = apply(current, self.clock())
            except LifecycleError as e:
                return self._refuse(intent, contract_id, e)

            written = persist(current, result)
            if written is not None:
                return self._done(intent, contract_id, written)
            logger.warning("%s on %s lost a concurrent write (attempt %d/%d)",
                           intent, current.contract_id, attempt, self.max_attempts)

        return self._refuse(intent, contract_id, NotPermitted(
            "Contract is being modified concurrently; reload and retry", contract_id,
        ))

    def _done(self, intent: str, requested_id: str, doc: ContractDocument) -> Outcome:
        with_flags(doc, self.policy)
        if doc.contract_id != requested_id:
            logger.info("%s on %s applied to successor %s", intent, requested_id, doc.contract_id)
        logger.info("%s applied to %s (status=%s, version=%d)",
                    intent, doc.contract_id, doc.status.value, doc.version)
        try:
            self.renderer.request_render(doc)
        except Exception:
            # already committed
            logger.exception("render request failed for %s", doc.contract_id)
        return Outcome(doc, requested_id)

    def _refuse(self, intent: str, contract_id: str, error: LifecycleError) -> LifecycleError:
        logger.info("%s on %s refused: %s (%s)", intent, contract_id, error.kind, error.message)
        return error
