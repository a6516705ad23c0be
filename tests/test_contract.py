"""Tests for the contract module: document model, field and signature validation."""

import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.dirname(__file__))

import base64
import pytest

from contract import (
    ContractDocument, SignatureImage, build_contract, compose_shipping_address,
    is_valid_tax_id, parse_signature_data_url, sanitize_influencer_fields,
    validate_influencer_fields, validate_signature_image,
)
from protocol import ContractStatus, FieldViolation, SIGNATURE_MAX_BYTES
from conftest import VALID_FIELDS, png_image


def _fields(v):
    return {x.field for x in v}


# --- Tax id format ---

class TestTaxId:
    @pytest.mark.parametrize("value", ["123-45-6789", "12-3456789", "123456789", "", "   ", None])
    def test_w9_accepts(self, value):
        assert is_valid_tax_id(value, "W-9")

    @pytest.mark.parametrize("value", ["abc", "12345678", "123-456-789", "1234567890", "12-345678"])
    def test_w9_rejects(self, value):
        assert not is_valid_tax_id(value, "W-9")

    @pytest.mark.parametrize("form", ["W-8BEN", "W-8BEN-E"])
    def test_w8_accepts(self, form):
        assert is_valid_tax_id("abc-123", form)
        assert is_valid_tax_id("DE 123/456", form)
        assert is_valid_tax_id("", form)
        assert is_valid_tax_id("x" * 30, form)

    @pytest.mark.parametrize("value", ["abc", "x" * 31, "abc_123", "ab#12"])
    def test_w8_rejects(self, value):
        assert not is_valid_tax_id(value, "W-8BEN")


# --- Field validation ---

class TestValidateInfluencerFields:
    def test_valid_fields(self):
        assert validate_influencer_fields(dict(VALID_FIELDS)) == []

    def test_reports_every_missing_required_field(self):
        violations = validate_influencer_fields({"legalName": "Jane"})
        assert _fields(violations) == {
            "email", "phone", "addressLine1", "city", "state",
            "postalCode", "country", "taxFormType",
        }
        assert all(v.message == "is required" for v in violations)

    def test_blank_after_trim_is_missing(self):
        v = validate_influencer_fields({**VALID_FIELDS, "legalName": "   "})
        assert v == [FieldViolation("legalName", "is required")]

    def test_partial_allows_absent_fields(self):
        assert validate_influencer_fields({"city": "Dallas"}, require_complete=False) == []

    def test_partial_rejects_blanked_required_field(self):
        v = validate_influencer_fields({"phone": ""}, require_complete=False)
        assert _fields(v) == {"phone"}

    def test_w9_tax_id_mismatch(self):
        v = validate_influencer_fields({**VALID_FIELDS, "taxId": "abc"})
        assert _fields(v) == {"taxId"}
        assert "SSN" in v[0].message

    def test_w8_tax_id_ok(self):
        assert validate_influencer_fields({**VALID_FIELDS, "taxFormType": "W-8BEN", "taxId": "abc-123"}) == []

    def test_empty_tax_id_is_optional(self):
        assert validate_influencer_fields({**VALID_FIELDS, "taxId": ""}) == []

    def test_unknown_tax_form(self):
        v = validate_influencer_fields({**VALID_FIELDS, "taxFormType": "1099"})
        assert _fields(v) == {"taxFormType"}

    def test_bad_email(self):
        v = validate_influencer_fields({**VALID_FIELDS, "email": "jane-at-example"})
        assert _fields(v) == {"email"}

    def test_non_string_field(self):
        v = validate_influencer_fields({**VALID_FIELDS, "phone": 5551234})
        assert v == [FieldViolation("phone", "must be a string")]

    def test_data_access_must_be_booleans(self):
        v = validate_influencer_fields({**VALID_FIELDS, "dataAccess": {"sparkAds": "yes"}})
        assert _fields(v) == {"dataAccess.sparkAds"}

    def test_multiple_violations_at_once(self):
        v = validate_influencer_fields({**VALID_FIELDS, "email": "nope", "taxId": "abc", "city": ""})
        assert _fields(v) == {"email", "taxId", "city"}

    def test_not_a_dict(self):
        assert _fields(validate_influencer_fields(["x"])) == {"influencer"}


class TestSanitize:
    def test_trims_strings(self):
        out = sanitize_influencer_fields({"legalName": "  Jane  ", "city": "\tAustin\n"})
        assert out == {"legalName": "Jane", "city": "Austin"}

    def test_drops_unknown_keys(self):
        out = sanitize_influencer_fields({"legalName": "Jane", "isAdmin": True, "flags": {}})
        assert out == {"legalName": "Jane"}

    def test_zip_alias(self):
        assert sanitize_influencer_fields({"zip": "78701"}) == {"postalCode": "78701"}

    def test_postal_code_wins_over_zip(self):
        assert sanitize_influencer_fields({"zip": "1", "postalCode": "2"}) == {"postalCode": "2"}

    def test_data_access_filtered(self):
        out = sanitize_influencer_fields({"dataAccess": {"sparkAds": True, "other": True}})
        assert out == {"dataAccess": {"sparkAds": True}}


def test_compose_shipping_address():
    assert compose_shipping_address(VALID_FIELDS) == "1 Main St, Apt 4, Austin, TX, 78701, US"
    assert compose_shipping_address({"city": "Austin", "country": "US"}) == "Austin, US"
    assert compose_shipping_address({}) == ""


# --- Signature images ---

class TestSignatureImage:
    def test_40kb_png_ok(self):
        assert validate_signature_image(png_image(40 * 1024)) == []

    def test_limit_is_inclusive(self):
        assert validate_signature_image(png_image(SIGNATURE_MAX_BYTES)) == []

    def test_too_large(self):
        v = validate_signature_image(png_image(SIGNATURE_MAX_BYTES + 1))
        assert _fields(v) == {"signatureImage"}
        assert "KB" in v[0].message

    def test_jpeg_ok(self):
        assert validate_signature_image(SignatureImage("image/jpeg", b"\xff\xd8\xff" + b"\x00" * 100)) == []

    def test_gif_rejected(self):
        v = validate_signature_image(SignatureImage("image/gif", b"GIF89a"))
        assert v[0].message == "must be a PNG or JPEG image"

    def test_empty_rejected(self):
        assert validate_signature_image(SignatureImage("image/png", b"")) == [
            FieldViolation("signatureImage", "is empty"),
        ]

    def test_missing(self):
        assert _fields(validate_signature_image(None)) == {"signatureImage"}

    def test_ref_is_content_digest(self):
        a, b = png_image(100), png_image(100)
        assert a.ref == b.ref
        assert a.ref.startswith("sha256:")
        assert png_image(101).ref != a.ref

    def test_parse_data_url(self):
        raw = b"\x89PNG\r\n\x1a\nabc"
        url = "data:image/png;base64," + base64.b64encode(raw).decode()
        image = parse_signature_data_url(url)
        assert image.mime_type == "image/png"
        assert image.data == raw
        assert image.to_data_url() == url

    def test_parse_rejects_non_data_url(self):
        with pytest.raises(ValueError):
            parse_signature_data_url("https://example.com/sig.png")

    def test_parse_rejects_bad_base64(self):
        with pytest.raises(ValueError):
            parse_signature_data_url("data:image/png;base64,***")


# --- Document model ---

class TestContractDocument:
    def test_build_sent_by_default(self):
        doc = build_contract("b", "i", "c", now=10.0)
        assert doc.status == ContractStatus.SENT
        assert doc.created_at == 10.0
        assert not doc.confirmations["brand"].confirmed
        assert not doc.signatures["influencer"].signed
        assert doc.scope == ("b", "i", "c")

    def test_build_draft(self):
        assert build_contract("b", "i", "c", send=False).status == ContractStatus.DRAFT

    def test_build_prefill_is_sanitized(self):
        doc = build_contract("b", "i", "c", influencer_fields={"city": " Austin ", "bogus": 1})
        assert doc.influencer_fields == {"city": "Austin", "shippingAddress": "Austin"}

    def test_wire_round_trip(self):
        doc = build_contract("b", "i", "c", influencer_fields=VALID_FIELDS, now=5.0)
        doc.confirmations["influencer"].confirmed = True
        doc.confirmations["influencer"].confirmed_at = 6.0
        doc.signatures["brand"].signed = True
        doc.signatures["brand"].image_ref = "sha256:ab"
        doc.superseded_by = "next"
        again = ContractDocument.from_dict(doc.to_dict())
        assert again.to_dict() == doc.to_dict()

    def test_wire_keys_are_camel_case(self):
        d = build_contract("b", "i", "c").to_dict()
        assert {"contractId", "campaignId", "brandId", "influencerId", "flags"} <= set(d)
        assert set(d["flags"]) == {"canEditInfluencerFields", "canSignInfluencer", "isResendChild"}

    def test_storage_form_has_no_flags(self):
        assert "flags" not in build_contract("b", "i", "c").to_dict(include_flags=False)

    def test_rejection_reason_only_when_rejected(self):
        doc = build_contract("b", "i", "c")
        doc.rejection_reason = "stale"
        assert "rejectionReason" not in doc.to_dict()
        doc.status = ContractStatus.REJECTED
        assert doc.to_dict()["rejectionReason"] == "stale"

    def test_copy_is_deep(self):
        doc = build_contract("b", "i", "c", influencer_fields=VALID_FIELDS)
        dup = doc.copy()
        dup.confirmations["brand"].confirmed = True
        dup.influencer_fields["dataAccess"]["sparkAds"] = True
        assert not doc.confirmations["brand"].confirmed
        assert doc.influencer_fields["dataAccess"]["sparkAds"] is False
