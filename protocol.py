"""Shared constants and interfaces for the inkwell contract lifecycle.

All modules import from here to avoid circular dependencies.
"""

import os
from dataclasses import dataclass
from enum import Enum

# --- Lifecycle Constants ---

# Signature uploads: PNG/JPEG up to 50 KB
SIGNATURE_MAX_BYTES = int(os.environ.get("INKWELL_SIGNATURE_MAX_BYTES", str(50 * 1024)))
SIGNATURE_MIME_TYPES = {"image/png", "image/jpeg"}

# Optimistic concurrency: how many times an intent is re-evaluated after losing a race
MAX_ATTEMPTS = int(os.environ.get("INKWELL_MAX_ATTEMPTS", "3"))

REJECTION_REASON_MAX = int(os.environ.get("INKWELL_REJECTION_REASON_MAX", "1000"))

DEFAULT_PAGE_LIMIT = 10
PAGE_LIMIT_MAX = int(os.environ.get("INKWELL_PAGE_LIMIT_MAX", "100"))


# --- Parties ---

class Party(Enum):
    BRAND = "brand"
    INFLUENCER = "influencer"


# --- State Machine ---

class ContractStatus(Enum):
    DRAFT = "draft"          # brand is still authoring
    SENT = "sent"            # visible to influencer, nothing confirmed yet
    CONFIRMED = "confirmed"  # influencer accepted and submitted party fields
    SIGNED = "signed"        # influencer signed
    LOCKED = "locked"        # both parties confirmed and signed
    REJECTED = "rejected"    # influencer declined


# Valid state transitions: current_state -> set of valid next states
STATE_TRANSITIONS = {
    ContractStatus.DRAFT: {ContractStatus.SENT},
    ContractStatus.SENT: {ContractStatus.CONFIRMED, ContractStatus.REJECTED},
    ContractStatus.CONFIRMED: {
        ContractStatus.CONFIRMED,  # field-only update
        ContractStatus.SIGNED,
        ContractStatus.REJECTED,
    },
    ContractStatus.SIGNED: {ContractStatus.LOCKED},
    ContractStatus.LOCKED: set(),
    ContractStatus.REJECTED: set(),
}

TERMINAL_STATES = {ContractStatus.LOCKED, ContractStatus.REJECTED}

# Influencer may reject until they have signed
REJECTABLE_STATES = {ContractStatus.SENT, ContractStatus.CONFIRMED}

# Brand confirm/sign are tracked independently of status once the contract is out
BRAND_ACTIONABLE_STATES = {ContractStatus.SENT, ContractStatus.CONFIRMED, ContractStatus.SIGNED}


# --- Influencer Party Fields ---

TAX_FORM_TYPES = ("W-9", "W-8BEN", "W-8BEN-E")

INFLUENCER_STRING_FIELDS = (
    "legalName", "email", "phone", "taxId",
    "addressLine1", "addressLine2", "city", "state", "postalCode", "country",
    "taxFormType", "notes", "shippingAddress",
)

# Required (non-blank) when the influencer first confirms
REQUIRED_ON_CONFIRM = (
    "legalName", "email", "phone",
    "addressLine1", "city", "state", "postalCode", "country",
    "taxFormType",
)

DATA_ACCESS_KEYS = ("insightsReadOnly", "whitelisting", "sparkAds")

# Everything a party may submit; anything else is dropped
ALLOWED_INFLUENCER_KEYS = set(INFLUENCER_STRING_FIELDS) | {"dataAccess"}


# --- Lifecycle Errors ---
#
# Raised inside the state machine, returned (never raised) by the service.

@dataclass(frozen=True)
class FieldViolation:
    """One field-tagged validation problem."""
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class LifecycleError(Exception):
    """Base for typed lifecycle rejections."""

    kind = "lifecycle_error"

    def __init__(self, message: str = "", contract_id: str | None = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.contract_id = contract_id

    def to_dict(self) -> dict:
        d = {"error": self.kind, "message": self.message}
        if self.contract_id:
            d["contractId"] = self.contract_id
        return d


class ValidationFailed(LifecycleError):
    """User-correctable: carries every field violation at once."""

    kind = "validation_failed"

    def __init__(self, violations: list[FieldViolation], contract_id: str | None = None):
        fields = ", ".join(v.field for v in violations)
        super().__init__(f"Invalid fields: {fields}", contract_id)
        self.violations = list(violations)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["violations"] = [v.to_dict() for v in self.violations]
        return d


class NotPermitted(LifecycleError):
    kind = "not_permitted"


class AlreadyLocked(LifecycleError):
    kind = "already_locked"


class AlreadySuperseded(LifecycleError):
    kind = "already_superseded"

    def __init__(self, message: str = "", contract_id: str | None = None,
                 superseded_by: str | None = None):
        super().__init__(message, contract_id)
        self.superseded_by = superseded_by

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.superseded_by:
            d["supersededBy"] = self.superseded_by
        return d


class NotFound(LifecycleError):
    kind = "not_found"
