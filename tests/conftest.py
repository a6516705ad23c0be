import sys
import os

# Ensure the project root is on the path for all tests
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import pytest

from contract import SignatureImage
from server.service import ContractLifecycleService, PdfRenderer
from server.store import ContractStore


BRAND_ID = "brand_acme"
INFLUENCER_ID = "inf_jane"
CAMPAIGN_ID = "camp_summer"
SCOPE = (BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID)

VALID_FIELDS = {
    "legalName": "Jane Creator",
    "email": "jane@example.com",
    "phone": "+1 555 0100",
    "addressLine1": "1 Main St",
    "addressLine2": "Apt 4",
    "city": "Austin",
    "state": "TX",
    "postalCode": "78701",
    "country": "US",
    "taxFormType": "W-9",
    "taxId": "123-45-6789",
    "notes": "",
    "dataAccess": {"insightsReadOnly": True, "whitelisting": False, "sparkAds": False},
}

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def png_image(size: int = 40 * 1024) -> SignatureImage:
    """A PNG-typed signature payload of exactly `size` bytes."""
    return SignatureImage("image/png", PNG_MAGIC + b"\x00" * (size - len(PNG_MAGIC)))


class FixedClock:
    """Deterministic clock: every call advances one second."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


class RecordingRenderer(PdfRenderer):
    def __init__(self):
        self.rendered = []

    def request_render(self, doc):
        self.rendered.append((doc.contract_id, doc.status.value))


@pytest.fixture
def store():
    s = ContractStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
def service(store, clock, renderer):
    return ContractLifecycleService(store=store, renderer=renderer, clock=clock)


def issue_contract(service, send=True, **fields) -> str:
    """Issue a contract in the shared scope; returns its id."""
    outcome = service.issue(BRAND_ID, INFLUENCER_ID, CAMPAIGN_ID, influencer_fields=fields or None, send=send)
    return outcome.contract_id


def brand_executes(service, contract_id):
    """Brand confirms and signs. Asserts both succeed."""
    from server.service import Outcome
    assert isinstance(service.brand_confirm(contract_id), Outcome)
    assert isinstance(service.brand_sign(contract_id, png_image(10 * 1024)), Outcome)
