"""Platform API client for the inkwell contract lifecycle.

Thin HTTP client with a pluggable transport interface, used by the
presentation layer. Flags are server policy and may change with any
transition, so every mutating call re-fetches the effective contract and
returns that view; nothing from before the call is reused.
"""

import json
from abc import ABC, abstractmethod

import httpx

from contract import SignatureImage, validate_signature_image

# Lifecycle refusals come back as data, not exceptions
_LIFECYCLE_STATUS_CODES = (400, 403, 404, 409)


class Transport(ABC):
    """Override this to talk to the lifecycle over something other than HTTP."""

    @abstractmethod
    async def post(self, path: str, data: dict) -> dict:
        ...

    @abstractmethod
    async def get(self, path: str, params: dict | None = None) -> dict:
        ...


class HTTPTransport(Transport):
    """Default. Talks to the inkwell API over HTTP."""

    def __init__(self, base_url: str = "http://localhost:8000", api_key: str = "",
                 timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> dict:
        h = {"Content-Type": "application/json"}
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        return h

    def _decode(self, resp: httpx.Response) -> dict:
        if resp.status_code in _LIFECYCLE_STATUS_CODES:
            return {"status": resp.status_code, **resp.json()}
        resp.raise_for_status()
        return resp.json()

    async def post(self, path: str, data: dict) -> dict:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                f"{self.base_url}{path}",
                content=json.dumps(data),
                headers=self._headers(),
                timeout=self.timeout,
            )
            return self._decode(resp)

    async def get(self, path: str, params: dict | None = None) -> dict:
        async with httpx.AsyncClient() as client:
            resp = await client.get(
                f"{self.base_url}{path}",
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
            return self._decode(resp)


def is_error(resp: dict) -> bool:
    """True if a transport response is a lifecycle refusal."""
    return resp.get("status") in _LIFECYCLE_STATUS_CODES


class ContractClient:
    """High-level client for one party acting on contracts."""

    def __init__(self, transport: Transport | None = None, base_url: str = "http://localhost:8000",
                 influencer_id: str = "", brand_id: str = ""):
        self.transport = transport or HTTPTransport(base_url)
        self.influencer_id = influencer_id
        self.brand_id = brand_id

    # --- Reads ---

    async def get_effective(self, contract_id: str, scope: tuple[str, str, str] | None = None) -> dict:
        """Resolve contract_id to the effective contract (follows resends)."""
        params = None
        if scope:
            brand_id, influencer_id, campaign_id = scope
            params = {"brandId": brand_id, "influencerId": influencer_id, "campaignId": campaign_id}
        return await self.transport.get(f"/contracts/{contract_id}", params)

    async def list_contracts(self, brand_id: str, influencer_id: str, campaign_id: str) -> list[dict]:
        resp = await self.transport.get("/contracts", {
            "brandId": brand_id, "influencerId": influencer_id, "campaignId": campaign_id,
        })
        return resp.get("contracts", [])

    async def list_rejected(self, page: int = 1, limit: int = 10) -> dict:
        return await self.transport.get(
            f"/influencers/{self.influencer_id}/rejected", {"page": page, "limit": limit},
        )

    # --- Intents ---

    async def _act(self, path: str, payload: dict) -> dict:
        """POST an intent, then re-read the contract it actually touched.

        Returns {"result": <intent response>, "effective": <fresh view>}.
        A refused intent still re-reads the requested contract, since the
        refusal usually means its state moved on.
        """
        result = await self.transport.post(path, payload)
        if is_error(result):
            detail = result.get("detail")
            target = (detail.get("contractId") if isinstance(detail, dict) else None) or path.split("/")[2]
        else:
            target = result["contractId"]
        effective = await self.get_effective(target)
        return {"result": result, "effective": effective}

    async def confirm(self, contract_id: str, influencer_fields: dict) -> dict:
        return await self._act(f"/contracts/{contract_id}/influencer/confirm", {
            "influencerId": self.influencer_id,
            "influencer": influencer_fields,
        })

    async def update(self, contract_id: str, influencer_updates: dict) -> dict:
        return await self._act(f"/contracts/{contract_id}/influencer/update", {
            "influencerId": self.influencer_id,
            "influencerUpdates": influencer_updates,
        })

    async def sign(self, contract_id: str, image: SignatureImage, name: str = "",
                   email: str = "", role: str = "influencer") -> dict:
        """Upload a signature. The image is checked locally before any request."""
        violations = validate_signature_image(image)
        if violations:
            raise ValueError("; ".join(f"{v.field} {v.message}" for v in violations))
        party_id = self.brand_id if role == "brand" else self.influencer_id
        return await self._act(f"/contracts/{contract_id}/sign", {
            "role": role,
            "partyId": party_id,
            "name": name,
            "email": email,
            "signatureImageDataUrl": image.to_data_url(),
        })

    async def reject(self, contract_id: str, reason: str = "") -> dict:
        return await self._act(f"/contracts/{contract_id}/reject", {
            "influencerId": self.influencer_id,
            "reason": reason,
        })

    async def brand_confirm(self, contract_id: str) -> dict:
        return await self._act(f"/contracts/{contract_id}/brand/confirm", {"brandId": self.brand_id})

    async def resend(self, contract_id: str) -> dict:
        return await self._act(f"/contracts/{contract_id}/resend", {"brandId": self.brand_id})
