"""Resend chain resolution.

When a brand resends a contract, the old document points at its replacement
through `supersededBy`. Readers follow those pointers forward to the
effective document. Pure: nothing here touches storage or mutates documents.
"""

from dataclasses import dataclass, field

from contract import ContractDocument


@dataclass
class Resolution:
    """Outcome of following a resend chain.

    `document` is None in degraded mode: the requested id was not in the
    scoped set, so the caller only has the id itself, not lifecycle state.
    """
    requested_id: str
    effective_id: str
    document: ContractDocument | None = None
    chain: list[str] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.document is not None

    @property
    def redirected(self) -> bool:
        return self.effective_id != self.requested_id

    def to_dict(self) -> dict:
        d = {
            "requestedId": self.requested_id,
            "contractId": self.effective_id,
            "resolved": self.resolved,
            "chain": list(self.chain),
        }
        if self.document is not None:
            d["contract"] = self.document.to_dict()
        return d


def resolve_effective(contract_id: str, scoped: list[ContractDocument]) -> Resolution:
    """Follow supersededBy from contract_id to the document with no successor.

    `scoped` holds every contract for one (brand, influencer, campaign). A
    pointer to an id outside that set ends the walk at the last visible
    document. The walk takes at most len(scoped) steps.
    """
    by_id = {doc.contract_id: doc for doc in scoped}
    current = by_id.get(contract_id)
    if current is None:
        return Resolution(requested_id=contract_id, effective_id=contract_id)

    chain = [current.contract_id]
    for _ in range(len(by_id)):
        if not current.superseded_by:
            break
        successor = by_id.get(current.superseded_by)
        if successor is None:
            break
        current = successor
        chain.append(current.contract_id)

    return Resolution(
        requested_id=contract_id,
        effective_id=current.contract_id,
        document=current,
        chain=chain,
    )
