"""
Tests for data URI parsing and the structured output contract.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from mediquest.errors import ValidationError, parse_input
from mediquest.models.data_uri import SUPPORTED_DOCUMENT_TYPES, DataUri, parse_data_uri
from mediquest.models.scan_models import (
    SCAN_DISCLAIMER,
    BoundingBox,
    ScanAnalysisRequest,
    ScanType,
    StructuredReport,
    UrgencyLevel,
)


class TestDataUri:
    """Test data URI parsing."""

    def test_parses_png(self, png_data_uri):
        image = parse_data_uri(png_data_uri)
        assert image.mime_type == "image/png"
        assert image.extension == "png"
        assert image.decode().startswith(b"\x89PNG")
        assert image.to_uri() == png_data_uri

    def test_rejects_empty(self):
        with pytest.raises(ValueError):
            parse_data_uri("   ")

    def test_rejects_plain_base64(self):
        with pytest.raises(ValueError, match="data URI"):
            parse_data_uri("iVBORw0KGgo=")

    def test_rejects_unsupported_type(self):
        with pytest.raises(ValueError, match="Unsupported"):
            parse_data_uri("data:text/plain;base64,aGVsbG8=")

    def test_rejects_invalid_base64(self):
        with pytest.raises(ValueError, match="base64"):
            parse_data_uri("data:image/png;base64,not*base64")

    def test_pdf_allowed_for_documents_only(self):
        uri = "data:application/pdf;base64,JVBERi0xLjQ="
        assert parse_data_uri(uri, SUPPORTED_DOCUMENT_TYPES).extension == "pdf"
        with pytest.raises(ValueError):
            parse_data_uri(uri)

    def test_from_bytes_round_trip(self):
        image = DataUri.from_bytes(b"abc", "image/jpeg")
        assert image.decode() == b"abc"
        assert image.extension == "jpg"


class TestScanAnalysisRequest:
    """Test scan request validation."""

    def test_valid_request(self, xray_request):
        request = ScanAnalysisRequest.model_validate(xray_request)
        assert request.scan_type == ScanType.XRAY
        assert request.image.mime_type == "image/png"

    def test_request_is_immutable(self, xray_request):
        request = ScanAnalysisRequest.model_validate(xray_request)
        with pytest.raises(PydanticValidationError):
            request.scan_type = ScanType.CT

    @pytest.mark.parametrize("scan_type", ["Ultrasound", "xray", ""])
    def test_rejects_unknown_scan_type(self, xray_request, scan_type):
        with pytest.raises(ValidationError):
            parse_input(ScanAnalysisRequest, {**xray_request, "scan_type": scan_type})

    def test_rejects_empty_image(self, xray_request):
        with pytest.raises(ValidationError) as exc_info:
            parse_input(ScanAnalysisRequest, {**xray_request, "encoded_image": ""})
        assert exc_info.value.details["errors"][0]["loc"] == ("encoded_image",)

    def test_missing_fields(self):
        with pytest.raises(ValidationError):
            parse_input(ScanAnalysisRequest, {"scan_type": "CT"})


class TestStructuredReport:
    """Test the report contract."""

    def test_only_summary_and_urgency_required(self):
        report = StructuredReport.model_validate({"summary": "Normal chest.", "urgency": "Normal"})
        assert report.findings == []
        assert report.critical_findings is None
        assert report.disclaimer == SCAN_DISCLAIMER

    def test_urgency_is_closed_set(self):
        assert {u.value for u in UrgencyLevel} == {"Emergency", "Urgent", "Routine", "Normal"}
        with pytest.raises(PydanticValidationError):
            StructuredReport.model_validate({"summary": "x", "urgency": "Soon"})

    def test_urgency_required(self):
        with pytest.raises(PydanticValidationError):
            StructuredReport.model_validate({"summary": "x"})

    def test_bounding_box_range(self):
        with pytest.raises(PydanticValidationError):
            BoundingBox(y_min=0.1, x_min=0.1, y_max=1.5, x_max=0.2)

    def test_bounding_box_ordering(self):
        with pytest.raises(PydanticValidationError):
            BoundingBox(y_min=0.6, x_min=0.1, y_max=0.2, x_max=0.2)

    def test_localized_findings(self, localized_report):
        assert [f.label for f in localized_report.localized_findings] == ["Possible Nodule"]
