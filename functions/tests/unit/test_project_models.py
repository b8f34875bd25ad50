"""Unit tests for project request models."""

import base64

import pytest

from config.errors import InvalidRequest
from models.market import PriceRecord
from models.project import Attachment, HistoricalBid, ProjectRequest


PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-blueprint"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")


class TestAttachment:
    """Tests for Attachment parsing."""

    def test_from_data_url(self):
        attachment = Attachment.from_data_url(f"data:image/png;base64,{PNG_B64}")

        assert attachment.mime_type == "image/png"
        assert attachment.data == PNG_BYTES

    def test_from_bare_base64_with_mime_type(self):
        attachment = Attachment.from_data_url(PNG_B64, mime_type="image/jpeg")

        assert attachment.mime_type == "image/jpeg"
        assert attachment.to_base64() == PNG_B64

    def test_to_data_url_round_trip(self):
        url = f"data:application/pdf;base64,{PNG_B64}"

        assert Attachment.from_data_url(url).to_data_url() == url

    def test_missing_mime_type(self):
        with pytest.raises(InvalidRequest) as exc_info:
            Attachment.from_data_url(PNG_B64)

        assert exc_info.value.fields == ["attachment.mimeType"]

    def test_invalid_base64(self):
        with pytest.raises(InvalidRequest) as exc_info:
            Attachment.from_data_url("data:image/png;base64,@@not-base64@@")

        assert exc_info.value.fields == ["attachment.data"]

    def test_empty_payload(self):
        with pytest.raises(InvalidRequest):
            Attachment.from_data_url("", mime_type="image/png")


class TestProjectRequest:
    """Tests for ProjectRequest."""

    def test_missing_fields(self):
        request = ProjectRequest(scope="Harbor Reno", location="  ", description="")

        assert request.missing_fields() == ["location", "description"]

    def test_complete_request_has_no_missing_fields(self, sample_project_request):
        assert sample_project_request.missing_fields() == []
        assert sample_project_request.attachment is None

    def test_from_payload_with_attachment(self):
        request = ProjectRequest.from_payload(
            {"scope": "Harbor Reno", "location": "Chicago, IL", "description": "Office"},
            {"data": f"data:image/png;base64,{PNG_B64}", "mimeType": "image/png"},
        )

        assert request.attachment.data == PNG_BYTES

    def test_from_payload_rejects_non_object(self):
        with pytest.raises(InvalidRequest) as exc_info:
            ProjectRequest.from_payload(None)

        assert exc_info.value.fields == ["project"]

    def test_from_payload_rejects_non_string_field(self):
        with pytest.raises(InvalidRequest) as exc_info:
            ProjectRequest.from_payload({"scope": 42, "location": "Chicago", "description": "x"})

        assert exc_info.value.fields == ["scope"]

    @pytest.mark.parametrize("attachment, field", [
        ("data:image/png;base64,AAAA", "attachment"),
        ([PNG_B64], "attachment"),
        ({"data": 42, "mimeType": "image/png"}, "attachment.data"),
        ({"data": PNG_B64, "mimeType": ["image/png"]}, "attachment.mimeType"),
    ])
    def test_from_payload_rejects_malformed_attachment(self, attachment, field):
        with pytest.raises(InvalidRequest) as exc_info:
            ProjectRequest.from_payload(
                {"scope": "Harbor Reno", "location": "Chicago, IL", "description": "Office"},
                attachment,
            )

        assert exc_info.value.fields == [field]

    def test_is_immutable(self, sample_project_request):
        with pytest.raises(Exception):
            sample_project_request.scope = "Other"


class TestHistoricalBid:
    """Tests for HistoricalBid."""

    def test_from_ledger_document(self):
        bid = HistoricalBid.from_ledger_document({"projectSummary": "Loop buildout", "status": "won", "margins": 12.5})

        assert bid.to_prompt_line() == "- Project: Loop buildout, Outcome: won, Margins: 12.5%"

    def test_missing_margin_defaults_to_20(self):
        bid = HistoricalBid.from_ledger_document({"status": "won"})

        assert bid.name == "Untitled project"
        assert bid.margin == 20.0


class TestPriceRecord:
    """Tests for PriceRecord."""

    def test_prompt_line_and_source(self):
        record = PriceRecord(
            name="Type X drywall",
            price=18.48,
            retailer="Home Depot",
            link="https://www.homedepot.com/p/1",
            location="Chicago, IL",
        )

        assert record.to_prompt_line() == "- Type X drywall: $18.48 at Home Depot (https://www.homedepot.com/p/1)"
        assert record.to_grounding_source().title == "Home Depot: Type X drywall"
        assert record.model_dump(by_alias=True)["locationGrounding"] == "Chicago, IL"

    def test_negative_price_rejected(self):
        with pytest.raises(Exception):
            PriceRecord(name="x", price=-1)

    @pytest.mark.parametrize("price", [float("nan"), float("inf")])
    def test_non_finite_price_rejected(self, price):
        with pytest.raises(ValueError):
            PriceRecord(name="x", price=price)
