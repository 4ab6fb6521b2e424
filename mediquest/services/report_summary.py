"""Medical report summarization flow."""

from typing import Any

from mediquest.config.logging_config import get_logger
from mediquest.errors import parse_input
from mediquest.models.data_uri import SUPPORTED_DOCUMENT_TYPES, parse_data_uri
from mediquest.models.flow_models import ReportSummary, ReportSummaryRequest
from mediquest.services.model_client import ModelClient

logger = get_logger(__name__)


SYSTEM_PROMPT = """You are a medical expert explaining reports to patients.
Summarize the key findings of the attached medical report, identify potential issues, and recommend next steps in language that a layperson can understand.
Do not invent values that are not in the report."""


class ReportSummaryFlow:
    """Summarize an uploaded medical report (image or PDF)."""

    def __init__(self, model_client: ModelClient):
        self.model_client = model_client

    async def summarize(self, request: ReportSummaryRequest | dict[str, Any]) -> ReportSummary:
        request = parse_input(ReportSummaryRequest, request)
        report = parse_data_uri(request.report_data_uri, SUPPORTED_DOCUMENT_TYPES)

        logger.info("Report summarization started", mime_type=report.mime_type)
        summary = await self.model_client.generate_structured(
            system_prompt=SYSTEM_PROMPT,
            prompt="Summarize the attached medical report.",
            output_model=ReportSummary,
            images=[report],
        )
        logger.info("Report summarization completed", summary_length=len(summary.summary))
        return summary
