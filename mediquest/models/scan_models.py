"""
Pydantic models for the scan-analysis pipeline.

These models are the structured output contract between the pipeline and
the model endpoint: every model response is validated against them as soon
as it arrives, and anything that does not fit is rejected.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from mediquest.models.data_uri import DataUri, parse_data_uri

SCAN_DISCLAIMER = (
    "This AI-generated analysis is for informational purposes only and is not a "
    "medical diagnosis. Always consult a qualified radiologist or physician before "
    "making any medical decision."
)


class ScanType(str, Enum):
    """Supported medical scan modalities."""
    XRAY = "X-ray"
    CT = "CT"
    MRI = "MRI"


class UrgencyLevel(str, Enum):
    """How soon a human should act on a scan analysis."""
    EMERGENCY = "Emergency"
    URGENT = "Urgent"
    ROUTINE = "Routine"
    NORMAL = "Normal"


class PipelineStage(str, Enum):
    """Stages of a single scan pipeline invocation."""
    IDLE = "idle"
    PREPROCESSING = "preprocessing"
    TEXT_ANALYZING = "text_analyzing"
    IMAGE_GENERATING = "image_generating"
    COMPLETE = "complete"
    ERROR = "error"


class ScanAnalysisRequest(BaseModel):
    """
    Immutable input to the scan-analysis pipeline.

    Attributes:
        encoded_image: The scan as a base64 data URI.
        scan_type: Scan modality.
        patient_context: Optional free-text context such as age or history.
    """
    model_config = ConfigDict(frozen=True)

    encoded_image: str = Field(..., description="Scan image as data:<mime>;base64,<data>")
    scan_type: ScanType = Field(..., description="Scan modality")
    patient_context: str | None = Field(
        default=None,
        max_length=4000,
        description="Optional patient details (age, history)"
    )

    @field_validator("encoded_image")
    @classmethod
    def validate_encoded_image(cls, v: str) -> str:
        """Ensure the image is a non-empty data URI of a supported type."""
        return parse_data_uri(v).to_uri()

    @property
    def image(self) -> DataUri:
        return parse_data_uri(self.encoded_image)


class BoundingBox(BaseModel):
    """Region of a finding as fractions (0..1) of image height and width."""
    y_min: float = Field(..., ge=0.0, le=1.0)
    x_min: float = Field(..., ge=0.0, le=1.0)
    y_max: float = Field(..., ge=0.0, le=1.0)
    x_max: float = Field(..., ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_ordering(self) -> "BoundingBox":
        if self.y_min > self.y_max or self.x_min > self.x_max:
            raise ValueError("Bounding box minimum must not exceed maximum")
        return self


class Finding(BaseModel):
    """
    A single anomaly reported by the text analysis stage.

    Attributes:
        label: Short label, e.g. "Possible Nodule".
        confidence: Usually Low, Medium or High.
        explanation: Brief explanation of the finding.
        bounding_box: Present only when the region could be localized.
    """
    label: str = Field(..., min_length=1, description="Short label for the finding")
    confidence: str = Field(..., description="Confidence level (High, Medium, Low)")
    explanation: str = Field(..., description="Brief explanation of the finding")
    bounding_box: BoundingBox | None = Field(
        default=None,
        description="Normalized region; omitted when not confidently localizable"
    )


class StructuredReport(BaseModel):
    """
    Structured radiology report produced by the text analysis stage.

    Only summary and urgency are guaranteed; every narrative field may be
    absent when the model finds nothing to report.
    """
    summary: str = Field(
        ...,
        min_length=1,
        description=(
            "What the scan shows in simple terms. If a diagnosis is not possible "
            "from a single image, say so."
        ),
    )
    findings: list[Finding] = Field(
        default_factory=list,
        description="Detected anomalies, with bounding boxes where localizable"
    )
    critical_findings: str | None = Field(
        default=None,
        description="Findings requiring immediate medical attention"
    )
    key_findings: str | None = Field(
        default=None,
        description="Important non-critical observations or measurements"
    )
    health_issues: str | None = Field(
        default=None,
        description="Health concerns suggested by the scan"
    )
    recommended_specialists: str | None = Field(
        default=None,
        description="Medical professionals to consult"
    )
    recommended_medications: str | None = Field(
        default=None,
        description="Suggested medications or treatments; not medical advice"
    )
    urgency: UrgencyLevel = Field(..., description="Exactly one urgency level")
    disclaimer: str = Field(default=SCAN_DISCLAIMER, description="Standard medical disclaimer")

    @property
    def localized_findings(self) -> list[Finding]:
        return [f for f in self.findings if f.bounding_box is not None]


class AnnotatedImageResult(BaseModel):
    """Scan image with finding regions marked."""
    encoded_image: str = Field(..., min_length=1, description="Annotated image as a data URI")


class PersistedScanRecord(BaseModel):
    """
    Record written once per successful pipeline run.

    Never mutated after creation.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Scan id")
    patient_id: str = Field(..., description="Owning patient")
    upload_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    scan_type: ScanType
    original_image_url: str
    annotated_image_url: str
    analysis: StructuredReport


class AnnotateScanRequest(BaseModel):
    """Input to the image annotation stage when called on its own."""
    encoded_image: str = Field(..., description="Original scan as a data URI")
    analysis: StructuredReport

    @field_validator("encoded_image")
    @classmethod
    def validate_encoded_image(cls, v: str) -> str:
        return parse_data_uri(v).to_uri()


class ScanAnalysisResult(BaseModel):
    """
    Outcome of one pipeline invocation returned to the caller.

    Attributes:
        scan_id: Id generated when the run starts.
        stage: Final stage reached (always complete on success).
        stage_history: Every stage entered, in order.
        analysis: Structured report from the text analysis stage.
        annotated_image: Annotated image from the image stage.
        record: The persisted record, or None if persistence failed.
        persistence_error: Why persistence failed, if it did.
    """
    scan_id: str
    stage: PipelineStage
    stage_history: list[PipelineStage] = Field(default_factory=list)
    analysis: StructuredReport
    annotated_image: AnnotatedImageResult
    record: PersistedScanRecord | None = None
    persistence_error: str | None = None
    processing_time_ms: int = Field(default=0, ge=0)
