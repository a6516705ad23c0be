"""Contract document model and party-field validator for inkwell.

Builds, validates, and serializes the contract documents exchanged between a
brand and an influencer. Documents travel as camelCase dicts on the wire and
live as dataclasses in memory.
"""

import base64
import binascii
import copy
import hashlib
import re
import uuid
from dataclasses import dataclass, field

from protocol import (
    ALLOWED_INFLUENCER_KEYS, DATA_ACCESS_KEYS, INFLUENCER_STRING_FIELDS,
    REQUIRED_ON_CONFIRM, SIGNATURE_MAX_BYTES, SIGNATURE_MIME_TYPES,
    TAX_FORM_TYPES, ContractStatus, FieldViolation, Party,
)


# --- Document model ---

@dataclass
class PartyConfirmation:
    confirmed: bool = False
    confirmed_at: float | None = None

    def to_dict(self) -> dict:
        d = {"confirmed": self.confirmed}
        if self.confirmed_at is not None:
            d["confirmedAt"] = self.confirmed_at
        return d

    @classmethod
    def from_dict(cls, d: dict | None) -> "PartyConfirmation":
        d = d or {}
        return cls(confirmed=bool(d.get("confirmed", False)), confirmed_at=d.get("confirmedAt"))


@dataclass
class PartySignature:
    signed: bool = False
    signed_at: float | None = None
    image_ref: str | None = None
    signer_name: str = ""
    signer_email: str = ""

    def to_dict(self) -> dict:
        d = {"signed": self.signed}
        if self.signed_at is not None:
            d["signedAt"] = self.signed_at
        if self.image_ref:
            d["imageRef"] = self.image_ref
        if self.signer_name:
            d["signerName"] = self.signer_name
        if self.signer_email:
            d["signerEmail"] = self.signer_email
        return d

    @classmethod
    def from_dict(cls, d: dict | None) -> "PartySignature":
        d = d or {}
        return cls(
            signed=bool(d.get("signed", False)),
            signed_at=d.get("signedAt"),
            image_ref=d.get("imageRef"),
            signer_name=d.get("signerName", ""),
            signer_email=d.get("signerEmail", ""),
        )


@dataclass
class ContractFlags:
    """Server-computed permission gates. Recomputed on every read, never stored."""
    can_edit_influencer_fields: bool = False
    can_sign_influencer: bool = False
    is_resend_child: bool = False

    def to_dict(self) -> dict:
        return {
            "canEditInfluencerFields": self.can_edit_influencer_fields,
            "canSignInfluencer": self.can_sign_influencer,
            "isResendChild": self.is_resend_child,
        }


def _party_map(factory):
    return lambda: {p.value: factory() for p in Party}


@dataclass
class ContractDocument:
    """One negotiated agreement between a brand and an influencer for one campaign."""
    contract_id: str
    campaign_id: str
    brand_id: str
    influencer_id: str
    status: ContractStatus = ContractStatus.DRAFT
    confirmations: dict[str, PartyConfirmation] = field(default_factory=_party_map(PartyConfirmation))
    signatures: dict[str, PartySignature] = field(default_factory=_party_map(PartySignature))
    influencer_fields: dict = field(default_factory=dict)
    flags: ContractFlags = field(default_factory=ContractFlags)
    superseded_by: str | None = None
    resend_of: str | None = None
    locked_at: float | None = None
    rejection_reason: str | None = None
    rejected_at: float | None = None
    created_at: float | None = None
    updated_at: float | None = None
    version: int = 0

    @property
    def scope(self) -> tuple[str, str, str]:
        return (self.brand_id, self.influencer_id, self.campaign_id)

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    @property
    def is_superseded(self) -> bool:
        return self.superseded_by is not None

    def confirmation(self, party: Party) -> PartyConfirmation:
        return self.confirmations[party.value]

    def signature(self, party: Party) -> PartySignature:
        return self.signatures[party.value]

    def copy(self) -> "ContractDocument":
        return copy.deepcopy(self)

    def to_dict(self, include_flags: bool = True) -> dict:
        d = {
            "contractId": self.contract_id,
            "campaignId": self.campaign_id,
            "brandId": self.brand_id,
            "influencerId": self.influencer_id,
            "status": self.status.value,
            "confirmations": {k: v.to_dict() for k, v in self.confirmations.items()},
            "signatures": {k: v.to_dict() for k, v in self.signatures.items()},
            "influencer": copy.deepcopy(self.influencer_fields),
            "version": self.version,
        }
        if include_flags:
            d["flags"] = self.flags.to_dict()
        if self.superseded_by:
            d["supersededBy"] = self.superseded_by
        if self.resend_of:
            d["resendOf"] = self.resend_of
        if self.locked_at is not None:
            d["lockedAt"] = self.locked_at
        if self.status == ContractStatus.REJECTED:
            d["rejectionReason"] = self.rejection_reason or ""
            d["rejectedAt"] = self.rejected_at
        if self.created_at is not None:
            d["createdAt"] = self.created_at
        if self.updated_at is not None:
            d["updatedAt"] = self.updated_at
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ContractDocument":
        confirmations = d.get("confirmations", {})
        signatures = d.get("signatures", {})
        return cls(
            contract_id=d["contractId"],
            campaign_id=d["campaignId"],
            brand_id=d["brandId"],
            influencer_id=d["influencerId"],
            status=ContractStatus(d.get("status", "draft")),
            confirmations={p.value: PartyConfirmation.from_dict(confirmations.get(p.value)) for p in Party},
            signatures={p.value: PartySignature.from_dict(signatures.get(p.value)) for p in Party},
            influencer_fields=copy.deepcopy(d.get("influencer", {})),
            superseded_by=d.get("supersededBy"),
            resend_of=d.get("resendOf"),
            locked_at=d.get("lockedAt"),
            rejection_reason=d.get("rejectionReason"),
            rejected_at=d.get("rejectedAt"),
            created_at=d.get("createdAt"),
            updated_at=d.get("updatedAt"),
            version=d.get("version", 0),
        )


def new_contract_id() -> str:
    return uuid.uuid4().hex[:16]


def build_contract(brand_id: str, influencer_id: str, campaign_id: str,
                   influencer_fields: dict | None = None, send: bool = True,
                   contract_id: str | None = None, now: float | None = None) -> ContractDocument:
    """Build a fresh contract as the brand authoring flow hands it over."""
    fields = sanitize_influencer_fields(influencer_fields or {})
    if fields:
        fields["shippingAddress"] = compose_shipping_address(fields)
    return ContractDocument(
        contract_id=contract_id or new_contract_id(),
        campaign_id=campaign_id,
        brand_id=brand_id,
        influencer_id=influencer_id,
        status=ContractStatus.SENT if send else ContractStatus.DRAFT,
        influencer_fields=fields,
        created_at=now,
        updated_at=now,
    )


# --- Party field sanitizing ---

def sanitize_influencer_fields(raw: dict) -> dict:
    """Trim strings, map `zip` to `postalCode`, drop keys a party may not set.

    Non-string values are passed through so the validator can report them.
    """
    if not isinstance(raw, dict):
        return {}
    out = {}
    for key, value in raw.items():
        if key == "zip":
            key = "postalCode"
            if "postalCode" in raw:
                continue
        if key not in ALLOWED_INFLUENCER_KEYS:
            continue
        if isinstance(value, str):
            value = value.strip()
        elif key == "dataAccess" and isinstance(value, dict):
            value = {k: v for k, v in value.items() if k in DATA_ACCESS_KEYS}
        out[key] = value
    return out


def compose_shipping_address(fields: dict) -> str:
    """Single-line address: line1, line2, "city, state", postal code, country."""
    def part(k):
        v = fields.get(k)
        return v.strip() if isinstance(v, str) else ""

    city_state = ", ".join(p for p in (part("city"), part("state")) if p)
    parts = [part("addressLine1"), part("addressLine2"), city_state, part("postalCode"), part("country")]
    return ", ".join(p for p in parts if p)


# --- Field validation ---

_W9_TAX_ID = re.compile(r"^(?:\d{3}-\d{2}-\d{4}|\d{2}-\d{7}|\d{9})$")
_W8_TAX_ID = re.compile(r"^[A-Za-z0-9 \-/]{4,30}$")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_tax_id(value: str | None, tax_form_type: str | None) -> bool:
    """Tax id is optional; when present its shape follows the tax form.

    W-9: SSN (NNN-NN-NNNN), EIN (NN-NNNNNNN) or 9 bare digits.
    W-8BEN / W-8BEN-E: 4-30 letters, digits, spaces, '-' or '/'.
    """
    v = (value or "").strip()
    if not v:
        return True
    if tax_form_type == "W-9":
        return bool(_W9_TAX_ID.match(v))
    return bool(_W8_TAX_ID.match(v))


def validate_influencer_fields(fields: dict, require_complete: bool = True) -> list[FieldViolation]:
    """Validate influencer party fields.

    require_complete=True is the first-confirmation check: every required
    field must be present and non-blank. With require_complete=False absent
    fields are fine, but a required field that is present may not be blank.

    Returns every violation found, empty list if valid.
    """
    if not isinstance(fields, dict):
        return [FieldViolation("influencer", "must be an object")]

    violations = []

    for key in INFLUENCER_STRING_FIELDS:
        if key in fields and fields[key] is not None and not isinstance(fields[key], str):
            violations.append(FieldViolation(key, "must be a string"))
    bad_types = {v.field for v in violations}

    for key in REQUIRED_ON_CONFIRM:
        if key in bad_types:
            continue
        value = fields.get(key)
        blank = not (value or "").strip()
        if blank and (require_complete or key in fields):
            violations.append(FieldViolation(key, "is required"))
    missing = {v.field for v in violations}

    email = fields.get("email")
    if "email" not in missing and isinstance(email, str) and email.strip():
        if not _EMAIL.match(email.strip()):
            violations.append(FieldViolation("email", "is not a valid email address"))

    form = fields.get("taxFormType")
    if "taxFormType" not in missing and isinstance(form, str) and form.strip():
        if form not in TAX_FORM_TYPES:
            violations.append(FieldViolation("taxFormType", f"must be one of {', '.join(TAX_FORM_TYPES)}"))
            form = None

    tax_id = fields.get("taxId")
    if isinstance(tax_id, str) and form in TAX_FORM_TYPES and not is_valid_tax_id(tax_id, form):
        if form == "W-9":
            msg = "must be an SSN (XXX-XX-XXXX), EIN (XX-XXXXXXX) or 9 digits"
        else:
            msg = "must be 4-30 characters of letters, numbers, spaces, '-' or '/'"
        violations.append(FieldViolation("taxId", msg))

    data_access = fields.get("dataAccess")
    if data_access is not None:
        if not isinstance(data_access, dict):
            violations.append(FieldViolation("dataAccess", "must be an object"))
        else:
            for key, value in data_access.items():
                if not isinstance(value, bool):
                    violations.append(FieldViolation(f"dataAccess.{key}", "must be true or false"))

    return violations


# --- Signature images ---

@dataclass
class SignatureImage:
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def ref(self) -> str:
        """Content-addressed reference recorded on the signature."""
        return "sha256:" + hashlib.sha256(self.data).hexdigest()

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode()}"


_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.*)$", re.DOTALL)


def parse_signature_data_url(data_url: str) -> SignatureImage:
    """Decode a `data:<mime>;base64,...` URL. Raises ValueError if malformed."""
    m = _DATA_URL.match((data_url or "").strip())
    if not m:
        raise ValueError("signature must be a base64 data URL")
    try:
        data = base64.b64decode(m.group("payload"), validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("signature payload is not valid base64")
    return SignatureImage(mime_type=m.group("mime").lower(), data=data)


def validate_signature_image(image: SignatureImage | None) -> list[FieldViolation]:
    """PNG or JPEG, non-empty, at most SIGNATURE_MAX_BYTES."""
    if image is None:
        return [FieldViolation("signatureImage", "is required")]
    violations = []
    if image.mime_type not in SIGNATURE_MIME_TYPES:
        violations.append(FieldViolation("signatureImage", "must be a PNG or JPEG image"))
    if image.size == 0:
        violations.append(FieldViolation("signatureImage", "is empty"))
    elif image.size > SIGNATURE_MAX_BYTES:
        violations.append(FieldViolation(
            "signatureImage", f"must be at most {SIGNATURE_MAX_BYTES // 1024} KB",
        ))
    return violations
