"""
Disease / health-risk prediction flow.

The model gathers the patient's profile and every health sub-collection
through tool calls, then produces a DiseasePrediction.
"""

from typing import Any

from pydantic import BaseModel, Field

from mediquest.config.logging_config import get_logger
from mediquest.database.database import DocumentStore
from mediquest.errors import AnalysisUnavailable, parse_input
from mediquest.models.flow_models import (
    DiseasePrediction,
    DiseasePredictionRequest,
    PatientCollection,
)
from mediquest.services.model_client import ModelClient
from mediquest.services.tools import Tool, ToolRegistry

logger = get_logger(__name__)


SYSTEM_PROMPT = """You are MediQuest AI, an advanced medical assistant. Your task is to perform a comprehensive health analysis for a patient based on all available data in their record.

**CRITICAL INSTRUCTIONS:**
1. **Gather All Data**: Use `get_patient_profile` to fetch the patient's core information. Then use `get_patient_sub_collection` for EACH of these collections: {collections}. You MUST query all of them.
2. **Synthesize and Analyze**: Analyze the patient's symptoms, medical history, lab reports, scan findings, medications and lifestyle data together with the questionnaire answers.
3. **Perform Core Tasks**:
   * **Health Risk Score**: a hypothetical score from 0-100, where 100 is perfect health and 0 is critical.
   * **Summary**: a concise summary of the patient's current health status.
   * **Risk Factors**: the top 3 most significant risk factors.
   * **Recommendations**: 3 actionable, evidence-based health recommendations.
   * **Specialist**: the single most appropriate medical specialist type (e.g. "Cardiologist", "General Physician").
   * **Urgency Level**: Low, Moderate, High or Emergency.""".format(
    collections=", ".join(f"'{c.value}'" for c in PatientCollection)
)

QUESTIONNAIRE_FIELDS = {
    "symptoms": "Reported symptoms",
    "chronic_history": "Chronic illnesses / family history",
    "medication_allergies": "Current medications / known allergies",
    "recent_procedures": "Recent surgeries / vaccinations",
    "lifestyle": "Lifestyle",
    "sleep": "Sleep pattern",
}


class PatientProfileLookup(BaseModel):
    patient_id: str = Field(..., description="The ID of the patient.")


class PatientCollectionLookup(BaseModel):
    patient_id: str = Field(..., description="The ID of the patient.")
    collection_name: PatientCollection = Field(..., description="The sub-collection to fetch.")


class DiseasePredictionFlow:
    """Health-risk analysis over a patient's full record."""

    def __init__(self, model_client: ModelClient, document_store: DocumentStore):
        self.model_client = model_client
        self.document_store = document_store

    async def predict(self, request: DiseasePredictionRequest | dict[str, Any]) -> DiseasePrediction:
        """
        Raises:
            ValidationError: The request is malformed.
            NotFound: The patient profile does not exist.
            AnalysisUnavailable: The model call failed or returned bad output.
        """
        request = parse_input(DiseasePredictionRequest, request)
        logger.info("Disease prediction started", patient_id=request.patient_id)

        # Fail before spending a model call on an unknown patient
        await self.document_store.get_patient(request.patient_id)

        prediction = await self.model_client.generate_structured(
            system_prompt=SYSTEM_PROMPT,
            prompt=self._build_prompt(request),
            output_model=DiseasePrediction,
            tools=self._build_tools(request.patient_id),
        )

        logger.info(
            "Disease prediction completed",
            health_score=prediction.health_score,
            urgency=prediction.urgency.value,
        )
        return prediction

    def _build_prompt(self, request: DiseasePredictionRequest) -> str:
        lines = [f"Patient ID: {request.patient_id}", "", "Questionnaire answers:"]
        for field, label in QUESTIONNAIRE_FIELDS.items():
            value = getattr(request, field)
            lines.append(f"- {label}: {value.strip() if value and value.strip() else 'Not provided'}")
        return "\n".join(lines)

    def _build_tools(self, patient_id: str) -> ToolRegistry:
        """Tools scoped to a single patient."""

        def check_scope(requested: str) -> None:
            if requested != patient_id:
                raise AnalysisUnavailable("Model requested a record for a different patient")

        async def get_patient_profile(params: PatientProfileLookup) -> dict[str, Any]:
            check_scope(params.patient_id)
            return await self.document_store.get_patient(params.patient_id)

        async def get_patient_sub_collection(params: PatientCollectionLookup) -> list[dict[str, Any]]:
            check_scope(params.patient_id)
            return await self.document_store.list_patient_collection(
                params.patient_id, params.collection_name
            )

        return ToolRegistry([
            Tool(
                name="get_patient_profile",
                description="Fetches a patient's core profile data (demographics, vitals).",
                input_model=PatientProfileLookup,
                handler=get_patient_profile,
            ),
            Tool(
                name="get_patient_sub_collection",
                description=(
                    "Fetches all records from a patient's health sub-collection "
                    "(e.g. medical_reports, appointments)."
                ),
                input_model=PatientCollectionLookup,
                handler=get_patient_sub_collection,
            ),
        ])
