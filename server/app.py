# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""HTTP API for the inkwell contract lifecycle (FastAPI).

Endpoints for the influencer intents (confirm, update, sign, reject), their
brand-side counterparts (send, confirm, sign, resend) and the reads the
presentation layer needs: effective contract, scoped listing, rejected
history.

Every response that names a contract reports the id actually used, which
differs from the requested one when the request hit a superseded contract.
Flags in responses are computed at read time; clients must re-fetch after
every mutation instead of caching them.
"""

import sys
import os
# Ensure parent directory is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import logging
import time

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from contract import ContractDocument, parse_signature_data_url
from lifecycle import FlagPolicy
from protocol import (
    DEFAULT_PAGE_LIMIT,
    AlreadyLocked, AlreadySuperseded, FieldViolation, LifecycleError,
    NotFound, NotPermitted, Party, ValidationFailed,
)
from server.service import ContractLifecycleService, PdfRenderer
from server.store import ContractStore

logger = logging.getLogger(__name__)


# --- Request/Response models ---

class _Body(BaseModel):
    # Wire format is camelCase (brandId, influencerUpdates, ...)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class IssueContractRequest(_Body):
    brand_id: str
    influencer_id: str
    campaign_id: str
    influencer: dict = {}
    send: bool = True

class BrandActionRequest(_Body):
    brand_id: str

class ConfirmRequest(_Body):
    influencer_id: str
    influencer: dict

class UpdateRequest(_Body):
    influencer_id: str
    influencer_updates: dict

class SignRequest(_Body):
    role: str = "influencer"  # "influencer" or "brand"
    party_id: str  # must match the role's id on the contract
    signature_image_data_url: str
    name: str = ""
    email: str = ""

class RejectRequest(_Body):
    influencer_id: str
    reason: str = ""


_STATUS_CODES = {
    ValidationFailed: 400,
    NotPermitted: 403,
    NotFound: 404,
    AlreadyLocked: 409,
    AlreadySuperseded: 409,
}


def _unwrap(result) -> dict:
    """Outcome -> response body; lifecycle error -> HTTPException."""
    if isinstance(result, LifecycleError):
        raise HTTPException(_STATUS_CODES.get(type(result), 400), result.to_dict())
    return result.to_dict()


def _check_party(doc: ContractDocument, party_id: str, role: str):
    """Verify caller is the expected party. Raises 403 if not."""
    stored = doc.brand_id if role == Party.BRAND.value else doc.influencer_id
    if not party_id:
        raise HTTPException(403, f"Missing {role} id")
    if party_id != stored:
        raise HTTPException(403, f"Not the {role} of this contract")


def create_app(
    store: ContractStore | None = None,
    service: ContractLifecycleService | None = None,
    policy: FlagPolicy | None = None,
    renderer: PdfRenderer | None = None,
    clock=None,
) -> FastAPI:
    """Create FastAPI app with injected dependencies.

    Pass a ready service, or the pieces to build one (store, flag policy,
    PDF renderer, clock).
    """

    app = FastAPI(title="inkwell", version="1.0")

    _service = service or ContractLifecycleService(
        store=store, policy=policy, renderer=renderer, clock=clock or time.time,
    )

    # Expose for testing
    app.state.service = _service
    app.state.store = _service.store

    # --- Helpers ---

    def _effective(contract_id: str) -> ContractDocument:
        resolution = _service.resolve_effective(contract_id)
        if isinstance(resolution, NotFound):
            raise HTTPException(404, resolution.to_dict())
        return resolution.document

    # --- Reads ---

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/contracts")
    async def list_contracts(
        brand_id: str = Query(alias="brandId"),
        influencer_id: str = Query(alias="influencerId"),
        campaign_id: str = Query(alias="campaignId"),
    ):
        """Every contract in one brand/influencer/campaign scope, resend chain included."""
        docs = _service.list_scope(brand_id, influencer_id, campaign_id)
        return {"contracts": [d.to_dict() for d in docs]}

    @app.get("/contracts/{contract_id}")
    async def get_contract(
        contract_id: str,
        brand_id: str | None = Query(None, alias="brandId"),
        influencer_id: str | None = Query(None, alias="influencerId"),
        campaign_id: str | None = Query(None, alias="campaignId"),
    ):
        """Resolve to the effective contract.

        With a full scope an unknown id comes back unresolved instead of 404.
        """
        scope = None
        if brand_id and influencer_id and campaign_id:
            scope = (brand_id, influencer_id, campaign_id)
        resolution = _service.resolve_effective(contract_id, scope)
        if isinstance(resolution, NotFound):
            raise HTTPException(404, resolution.to_dict())
        return resolution.to_dict()

    @app.get("/influencers/{influencer_id}/rejected")
    async def list_rejected(influencer_id: str, page: int = 1, limit: int = DEFAULT_PAGE_LIMIT):
        return _service.list_rejected(influencer_id, page, limit)

    # --- Brand ---

    @app.post("/contracts")
    async def issue_contract(req: IssueContractRequest):
        """Hand over a contract from the brand authoring flow."""
        outcome = _service.issue(
            req.brand_id, req.influencer_id, req.campaign_id,
            influencer_fields=req.influencer, send=req.send,
        )
        return _unwrap(outcome)

    @app.post("/contracts/{contract_id}/send")
    async def send_contract(contract_id: str, req: BrandActionRequest):
        _check_party(_effective(contract_id), req.brand_id, Party.BRAND.value)
        return _unwrap(_service.send(contract_id))

    @app.post("/contracts/{contract_id}/brand/confirm")
    async def brand_confirm(contract_id: str, req: BrandActionRequest):
        _check_party(_effective(contract_id), req.brand_id, Party.BRAND.value)
        return _unwrap(_service.brand_confirm(contract_id))

    @app.post("/contracts/{contract_id}/resend")
    async def resend_contract(contract_id: str, req: BrandActionRequest):
        """Replace the effective contract; the old one points at the new one."""
        _check_party(_effective(contract_id), req.brand_id, Party.BRAND.value)
        return _unwrap(_service.resend(contract_id))

    # --- Influencer ---

    @app.post("/contracts/{contract_id}/influencer/confirm")
    async def influencer_confirm(contract_id: str, req: ConfirmRequest):
        _check_party(_effective(contract_id), req.influencer_id, Party.INFLUENCER.value)
        return _unwrap(_service.confirm(contract_id, req.influencer))

    @app.post("/contracts/{contract_id}/influencer/update")
    async def influencer_update(contract_id: str, req: UpdateRequest):
        _check_party(_effective(contract_id), req.influencer_id, Party.INFLUENCER.value)
        return _unwrap(_service.update(contract_id, req.influencer_updates))

    @app.post("/contracts/{contract_id}/reject")
    async def reject_contract(contract_id: str, req: RejectRequest):
        _check_party(_effective(contract_id), req.influencer_id, Party.INFLUENCER.value)
        return _unwrap(_service.reject(contract_id, req.reason))

    # --- Either party ---

    @app.post("/contracts/{contract_id}/sign")
    async def sign_contract(contract_id: str, req: SignRequest):
        if req.role not in (Party.BRAND.value, Party.INFLUENCER.value):
            raise HTTPException(400, f"Invalid role: {req.role}")
        _check_party(_effective(contract_id), req.party_id, req.role)

        try:
            image = parse_signature_data_url(req.signature_image_data_url)
        except ValueError as e:
            raise HTTPException(400, ValidationFailed(
                [FieldViolation("signatureImage", str(e))], contract_id,
            ).to_dict())

        if req.role == Party.BRAND.value:
            result = _service.brand_sign(contract_id, image, signer_name=req.name, signer_email=req.email)
        else:
            result = _service.sign(contract_id, image, signer_name=req.name, signer_email=req.email)
        return _unwrap(result)

    return app
