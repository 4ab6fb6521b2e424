"""
Scan analysis invokers.

TextAnalysisInvoker turns a scan into a StructuredReport.
ImageTransformInvoker marks the report's localized findings on the scan.
Both make a single model call per invocation and never retry.
"""

import json
import time
from typing import Any

from mediquest.config.logging_config import get_logger
from mediquest.errors import ImageGenerationUnavailable, parse_input
from mediquest.models.data_uri import DataUri, parse_data_uri
from mediquest.models.scan_models import (
    SCAN_DISCLAIMER,
    AnnotatedImageResult,
    AnnotateScanRequest,
    ScanAnalysisRequest,
    StructuredReport,
)
from mediquest.services.model_client import ModelClient

logger = get_logger(__name__)


TEXT_ANALYSIS_SYSTEM_PROMPT = """You are an expert AI radiologist. You analyze a single medical scan and return a structured JSON report. You never generate images.

## Rules
- Summarize what the scan shows in simple terms a patient can understand. If a diagnosis is not possible from a single image, say so clearly in the summary; that is a valid outcome.
- List each anomaly in `findings`. Add a `bounding_box` ONLY when you can confidently localize the region. Coordinates are fractions of image height (y) and width (x) between 0 and 1. Omit `bounding_box` otherwise.
- Fill `critical_findings`, `key_findings`, `health_issues`, `recommended_specialists` and `recommended_medications` only when you have something to report. Omit them otherwise.
- Choose exactly one `urgency`: Emergency, Urgent, Routine or Normal.
- Always set `disclaimer` to: "{disclaimer}"
""".format(disclaimer=SCAN_DISCLAIMER)

IMAGE_ANNOTATION_PROMPT = """Mark the following findings on this {scan_type}medical scan.

Instructions:
- Draw a clear, thin outline (box or circle) around each region listed below and place its number next to it.
- Do NOT add, remove or alter any anatomical content. Only overlay markers.
- Keep the output image exactly the same size and framing as the input.

Findings (coordinates are percentages of image height/width from the top-left corner):
{findings}"""


class TextAnalysisInvoker:
    """
    Produce a StructuredReport for a scan.

    Stateless; safe to share between concurrent invocations.
    """

    def __init__(self, model_client: ModelClient):
        self.model_client = model_client

    async def analyze(self, request: ScanAnalysisRequest | dict[str, Any]) -> StructuredReport:
        """
        Analyze a scan.

        Args:
            request: The scan request or its JSON-shaped equivalent.

        Returns:
            A StructuredReport whose urgency is one of the four levels.

        Raises:
            ValidationError: The request is missing fields or malformed.
            AnalysisUnavailable: The model call failed or its output did not
                fit the report schema.
        """
        request = parse_input(ScanAnalysisRequest, request)
        start_time = time.perf_counter()

        logger.info(
            "Text analysis started",
            scan_type=request.scan_type.value,
            has_patient_context=bool(request.patient_context),
        )

        report = await self.model_client.generate_structured(
            system_prompt=TEXT_ANALYSIS_SYSTEM_PROMPT,
            prompt=self._build_prompt(request),
            output_model=StructuredReport,
            images=[request.image],
        )
        report = report.model_copy(update={"disclaimer": SCAN_DISCLAIMER})

        logger.info(
            "Text analysis completed",
            urgency=report.urgency.value,
            finding_count=len(report.findings),
            localized_count=len(report.localized_findings),
            elapsed_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return report

    def _build_prompt(self, request: ScanAnalysisRequest) -> str:
        context = (request.patient_context or "").strip() or "None provided."
        return (
            f"Scan type: {request.scan_type.value}\n"
            f"Patient context: {context}\n\n"
            "Analyze the attached scan and return the JSON report."
        )


class ImageTransformInvoker:
    """Return a copy of the scan with the report's findings outlined."""

    def __init__(self, model_client: ModelClient):
        self.model_client = model_client

    async def annotate(
        self,
        image: DataUri | str,
        report: StructuredReport,
        scan_type: str | None = None,
    ) -> AnnotatedImageResult:
        """
        Mark localized findings on the scan.

        The image must be the one the report was produced from. When no
        finding has a bounding box the original image is returned as is.

        Raises:
            ImageGenerationUnavailable: The image model returned no image.
        """
        if isinstance(image, str):
            image = parse_data_uri(image)

        localized = report.localized_findings
        if not localized:
            logger.info("No localized findings; returning original image")
            return AnnotatedImageResult(encoded_image=image.to_uri())

        start_time = time.perf_counter()
        logger.info("Image annotation started", marker_count=len(localized))

        prompt = IMAGE_ANNOTATION_PROMPT.format(
            scan_type=f"{scan_type} " if scan_type else "",
            findings=self._describe_findings(report),
        )
        annotated = await self.model_client.generate_image(prompt=prompt, reference_image=image)
        if not annotated.payload:
            raise ImageGenerationUnavailable("Image model returned an empty image")

        logger.info(
            "Image annotation completed",
            elapsed_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return AnnotatedImageResult(encoded_image=annotated.to_uri())

    async def annotate_request(self, request: AnnotateScanRequest | dict[str, Any]) -> AnnotatedImageResult:
        """Annotate from a JSON-shaped request (image plus report)."""
        request = parse_input(AnnotateScanRequest, request)
        return await self.annotate(request.encoded_image, request.analysis)

    def _describe_findings(self, report: StructuredReport) -> str:
        lines = []
        for index, finding in enumerate(report.localized_findings, start=1):
            box = finding.bounding_box
            region = {
                "top": round(box.y_min * 100, 1),
                "left": round(box.x_min * 100, 1),
                "bottom": round(box.y_max * 100, 1),
                "right": round(box.x_max * 100, 1),
            }
            lines.append(f"{index}. {finding.label} ({finding.confidence}): {json.dumps(region)}")
        return "\n".join(lines)
