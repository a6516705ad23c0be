"""Contract state machine for inkwell.

Every intent takes the current document and returns a new one; the input is
never touched, so a failed guard leaves no trace. Guards raise the typed
errors from protocol.py. The lock is not an intent: it is re-evaluated after
every mutation and fires as soon as both parties have confirmed and signed.
"""

from contract import (
    ContractDocument, ContractFlags, SignatureImage, build_contract,
    compose_shipping_address, sanitize_influencer_fields,
    validate_influencer_fields, validate_signature_image,
)
from protocol import (
    BRAND_ACTIONABLE_STATES, REJECTABLE_STATES, REJECTION_REASON_MAX,
    STATE_TRANSITIONS, AlreadyLocked, AlreadySuperseded, ContractStatus,
    FieldViolation, NotPermitted, Party, ValidationFailed,
)


# --- Flag policy ---

class FlagPolicy:
    """Business rules layered on top of the state machine's own gates.

    The state machine already refuses edits and signatures on locked,
    superseded or out-of-state documents; a policy can only narrow that.
    """

    def allow_edit(self, doc: ContractDocument) -> bool:
        return True

    def allow_sign(self, doc: ContractDocument) -> bool:
        return True


class FreezeAfterBrandSignaturePolicy(FlagPolicy):
    """Influencer fields freeze once the brand has put its signature on them."""

    def allow_edit(self, doc: ContractDocument) -> bool:
        return not doc.signature(Party.BRAND).signed


DEFAULT_POLICY = FlagPolicy()


def compute_flags(doc: ContractDocument, policy: FlagPolicy | None = None) -> ContractFlags:
    """Derive permission flags from authoritative state. Pure."""
    policy = policy or DEFAULT_POLICY
    open_ = not doc.is_locked and not doc.is_superseded
    can_edit = (
        open_
        and doc.status in (ContractStatus.SENT, ContractStatus.CONFIRMED)
        and policy.allow_edit(doc)
    )
    can_sign = (
        open_
        and doc.status == ContractStatus.CONFIRMED
        and not doc.signature(Party.INFLUENCER).signed
        and policy.allow_sign(doc)
    )
    return ContractFlags(
        can_edit_influencer_fields=can_edit,
        can_sign_influencer=can_sign,
        is_resend_child=doc.resend_of is not None,
    )


def with_flags(doc: ContractDocument, policy: FlagPolicy | None = None) -> ContractDocument:
    """Attach freshly computed flags for presentation. Returns the same document."""
    doc.flags = compute_flags(doc, policy)
    return doc


# --- Guards ---

def _transition(doc: ContractDocument, new_status: ContractStatus):
    if new_status not in STATE_TRANSITIONS.get(doc.status, set()):
        raise NotPermitted(
            f"Invalid state transition: {doc.status.value} -> {new_status.value}",
            doc.contract_id,
        )
    doc.status = new_status


def check_mutable(doc: ContractDocument):
    """Refuse any write to a locked, superseded or rejected document."""
    if doc.is_locked or doc.status == ContractStatus.LOCKED:
        raise AlreadyLocked("Contract is locked", doc.contract_id)
    if doc.is_superseded:
        raise AlreadySuperseded(
            "Contract was replaced by a newer version", doc.contract_id,
            superseded_by=doc.superseded_by,
        )
    if doc.status == ContractStatus.REJECTED:
        raise NotPermitted("Contract was rejected", doc.contract_id)


def is_fully_executed(doc: ContractDocument) -> bool:
    return all(
        doc.confirmation(p).confirmed and doc.signature(p).signed
        for p in Party
    )


def settle(doc: ContractDocument, now: float) -> ContractDocument:
    """Apply the derived lock if both parties are now confirmed and signed."""
    if doc.locked_at is None and is_fully_executed(doc):
        _transition(doc, ContractStatus.LOCKED)
        doc.locked_at = now
    return doc


def _begin(doc: ContractDocument, now: float) -> ContractDocument:
    out = doc.copy()
    out.updated_at = now
    return out


# --- Influencer intents ---

def confirm(doc: ContractDocument, fields: dict, now: float,
            policy: FlagPolicy | None = None) -> ContractDocument:
    """sent -> confirmed. Persists the submitted party fields."""
    check_mutable(doc)
    if doc.status != ContractStatus.SENT:
        raise NotPermitted(f"Cannot confirm a {doc.status.value} contract", doc.contract_id)
    if not compute_flags(doc, policy).can_edit_influencer_fields:
        raise NotPermitted("Editing party fields is disabled for this contract", doc.contract_id)

    cleaned = sanitize_influencer_fields(fields)
    violations = validate_influencer_fields(cleaned, require_complete=True)
    if violations:
        raise ValidationFailed(violations, doc.contract_id)

    # prefill the submission left untouched must pass too
    merged = _merge_fields(doc.influencer_fields, cleaned)
    violations = validate_influencer_fields(merged, require_complete=True)
    if violations:
        raise ValidationFailed(violations, doc.contract_id)

    out = _begin(doc, now)
    merged["shippingAddress"] = compose_shipping_address(merged)
    out.influencer_fields = merged
    out.confirmations[Party.INFLUENCER.value].confirmed = True
    out.confirmations[Party.INFLUENCER.value].confirmed_at = now
    _transition(out, ContractStatus.CONFIRMED)
    return settle(out, now)


def update(doc: ContractDocument, partial: dict, now: float,
           policy: FlagPolicy | None = None) -> ContractDocument:
    """confirmed -> confirmed. Field-only mutation."""
    check_mutable(doc)
    if doc.status != ContractStatus.CONFIRMED:
        raise NotPermitted(f"Cannot update a {doc.status.value} contract", doc.contract_id)
    if not compute_flags(doc, policy).can_edit_influencer_fields:
        raise NotPermitted("Editing party fields is disabled for this contract", doc.contract_id)

    cleaned = sanitize_influencer_fields(partial)
    cleaned.pop("shippingAddress", None)
    if not cleaned:
        raise ValidationFailed([FieldViolation("influencerUpdates", "no fields to update")], doc.contract_id)

    merged = _merge_fields(doc.influencer_fields, cleaned)
    violations = validate_influencer_fields(merged, require_complete=False)
    if violations:
        raise ValidationFailed(violations, doc.contract_id)

    out = _begin(doc, now)
    merged["shippingAddress"] = compose_shipping_address(merged)
    out.influencer_fields = merged
    _transition(out, ContractStatus.CONFIRMED)
    return out


def sign(doc: ContractDocument, image: SignatureImage, now: float,
         policy: FlagPolicy | None = None,
         signer_name: str = "", signer_email: str = "") -> ContractDocument:
    """confirmed -> signed, then the lock check."""
    check_mutable(doc)
    if not doc.confirmation(Party.INFLUENCER).confirmed:
        raise NotPermitted("Confirm the contract before signing", doc.contract_id)
    if doc.status != ContractStatus.CONFIRMED:
        raise NotPermitted(f"Cannot sign a {doc.status.value} contract", doc.contract_id)
    if not compute_flags(doc, policy).can_sign_influencer:
        raise NotPermitted("Signing is disabled for this contract", doc.contract_id)
    violations = validate_signature_image(image)
    if violations:
        raise ValidationFailed(violations, doc.contract_id)

    out = _begin(doc, now)
    _record_signature(out, Party.INFLUENCER, image, now, signer_name, signer_email)
    _transition(out, ContractStatus.SIGNED)
    return settle(out, now)


def reject(doc: ContractDocument, reason: str | None, now: float) -> ContractDocument:
    """sent|confirmed -> rejected. Terminal."""
    check_mutable(doc)
    if doc.status not in REJECTABLE_STATES:
        raise NotPermitted(f"Cannot reject a {doc.status.value} contract", doc.contract_id)
    reason = (reason or "").strip()
    if len(reason) > REJECTION_REASON_MAX:
        raise ValidationFailed(
            [FieldViolation("reason", f"must be at most {REJECTION_REASON_MAX} characters")],
            doc.contract_id,
        )

    out = _begin(doc, now)
    _transition(out, ContractStatus.REJECTED)
    out.rejection_reason = reason
    out.rejected_at = now
    return out


# --- Brand intents ---

def send(doc: ContractDocument, now: float) -> ContractDocument:
    """draft -> sent."""
    check_mutable(doc)
    out = _begin(doc, now)
    _transition(out, ContractStatus.SENT)
    return out


def _check_brand_actionable(doc: ContractDocument):
    check_mutable(doc)
    if doc.status not in BRAND_ACTIONABLE_STATES:
        raise NotPermitted(f"Cannot act on a {doc.status.value} contract", doc.contract_id)


def brand_confirm(doc: ContractDocument, now: float) -> ContractDocument:
    _check_brand_actionable(doc)
    if doc.confirmation(Party.BRAND).confirmed:
        raise NotPermitted("Brand has already confirmed", doc.contract_id)

    out = _begin(doc, now)
    out.confirmations[Party.BRAND.value].confirmed = True
    out.confirmations[Party.BRAND.value].confirmed_at = now
    return settle(out, now)


def brand_sign(doc: ContractDocument, image: SignatureImage, now: float,
               signer_name: str = "", signer_email: str = "") -> ContractDocument:
    _check_brand_actionable(doc)
    if not doc.confirmation(Party.BRAND).confirmed:
        raise NotPermitted("Brand must confirm before signing", doc.contract_id)
    if doc.signature(Party.BRAND).signed:
        raise NotPermitted("Brand has already signed", doc.contract_id)
    violations = validate_signature_image(image)
    if violations:
        raise ValidationFailed(violations, doc.contract_id)

    out = _begin(doc, now)
    _record_signature(out, Party.BRAND, image, now, signer_name, signer_email)
    return settle(out, now)


def resend(doc: ContractDocument, now: float,
           new_id: str | None = None) -> tuple[ContractDocument, ContractDocument]:
    """Brand issues a replacement. Returns (superseded original, replacement).

    The replacement starts in `sent` with the original's party fields as a
    prefill and fresh confirmations and signatures.
    """
    check_mutable(doc)
    replacement = build_contract(
        doc.brand_id, doc.influencer_id, doc.campaign_id,
        send=True, contract_id=new_id, now=now,
    )
    out = _begin(doc, now)
    replacement.influencer_fields = out.copy().influencer_fields
    replacement.resend_of = doc.contract_id
    out.superseded_by = replacement.contract_id
    return out, replacement


def _record_signature(doc: ContractDocument, party: Party, image: SignatureImage,
                      now: float, signer_name: str, signer_email: str):
    sig = doc.signatures[party.value]
    sig.signed = True
    sig.signed_at = now
    sig.image_ref = image.ref
    sig.signer_name = (signer_name or "").strip()
    sig.signer_email = (signer_email or "").strip()


def _merge_fields(stored: dict, cleaned: dict) -> dict:
    """Overlay submitted fields on stored ones. dataAccess merges per key."""
    merged = {**stored, **cleaned}
    if isinstance(stored.get("dataAccess"), dict) and isinstance(cleaned.get("dataAccess"), dict):
        merged["dataAccess"] = {**stored["dataAccess"], **cleaned["dataAccess"]}
    elif isinstance(merged.get("dataAccess"), dict):
        merged["dataAccess"] = dict(merged["dataAccess"])
    return merged
