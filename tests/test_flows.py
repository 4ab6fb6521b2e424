"""
Tests for the report summary, medicine lookup and disease prediction flows.
"""

import json
from datetime import date

import pytest
from pydantic import ValidationError as PydanticValidationError

from mediquest.errors import AnalysisUnavailable, NotFound, ValidationError
from mediquest.models.flow_models import (
    DiseasePrediction,
    MedicineData,
    MedicineDetails,
    PatientCollection,
    PredictionUrgency,
    ReportSummary,
)

PDF_DATA_URI = "data:application/pdf;base64,JVBERi0xLjQKJcOkw7zDtsOfCg=="


def full_medicine_data():
    return MedicineData.model_validate({
        "name": "Crocin Advance",
        "generic_name": "Paracetamol",
        "composition": {"active_ingredients": ["Paracetamol 500mg"], "formulation_type": "Tablet"},
        "function": {
            "primary_action": "Reduces fever and pain",
            "mechanism_of_action": "Inhibits prostaglandin synthesis in the CNS",
            "therapeutic_class": "Analgesic",
        },
        "diseases": ["Fever", "Headache"],
        "side_effects": {"common": ["Nausea"], "serious": ["Liver damage"]},
        "instructions": {
            "general_guidelines": "Take after food.",
            "special_precautions": "Avoid alcohol.",
        },
        "dosage": {
            "standard_dose": {"adult": "500-1000mg", "pediatric": "By weight", "elderly": "500mg"},
            "maximum_daily_dose": "4g",
            "duration_of_treatment": "3 days",
            "timing_considerations": "Every 4-6 hours",
            "missed_dose": "Take when remembered.",
        },
        "interactions": {"drug_interactions": ["Warfarin"]},
        "storage": {
            "temperature": "Below 30C",
            "special_conditions": "Keep dry",
            "expiry_guidelines": "Do not use after expiry",
        },
        "price": {"average_retail_price": "$4.00", "unit_price": "$0.25"},
        "rating": 4.3,
        "review_count": 812,
        "manufacturer": {"name": "GSK", "country": "UK"},
        "nearby_pharmacies": {
            "location": "San Francisco, CA",
            "pharmacies": [{"name": "Bay Pharmacy", "address": "1 Market St", "contact": "555-0100"}],
        },
    })


class TestReportSummaryFlow:
    """Test report summarization."""

    async def test_summarizes_pdf(self, services, model_client):
        model_client.structured[ReportSummary] = ReportSummary(
            summary="Your blood count is mostly normal.",
            potential_issues="Slightly low hemoglobin.",
            next_steps="Discuss iron levels with your doctor.",
        )

        summary = await services.report_summary.summarize({"report_data_uri": PDF_DATA_URI})

        assert summary.potential_issues == "Slightly low hemoglobin."
        sent = model_client.structured_calls[0]["images"][0]
        assert sent.mime_type == "application/pdf"

    async def test_accepts_image_report(self, services, model_client, png_data_uri):
        model_client.structured[ReportSummary] = ReportSummary(
            summary="Normal.", potential_issues="None.", next_steps="None."
        )
        await services.report_summary.summarize({"report_data_uri": png_data_uri})
        assert model_client.structured_calls[0]["images"][0].mime_type == "image/png"

    async def test_rejects_non_data_uri(self, services, model_client):
        with pytest.raises(ValidationError):
            await services.report_summary.summarize({"report_data_uri": "https://example.com/report.pdf"})
        assert model_client.structured_calls == []


class TestMedicineDetailsFlow:
    """Test medicine lookups."""

    async def test_generate_details(self, services, model_client):
        model_client.structured[MedicineDetails] = MedicineDetails(
            name="Insulin Glargine",
            strength="100 IU/ml",
            salt_composition="Insulin Glargine",
            category="Antidiabetic",
            is_prescription_required=True,
            storage_type="Cold",
            common_uses="Long-acting insulin for diabetes.",
            safety_notes="Risk of hypoglycemia.",
            expiry_date=date(2028, 10, 1),
            stock=100,
        )

        details = await services.medicine_details.generate_details({"medicine_name": "  Lantus "})

        assert details.storage_type.value == "Cold"
        call = model_client.structured_calls[0]
        assert call["prompt"] == 'Medicine name: "Lantus"'
        assert date.today().isoformat() in call["system_prompt"]

    async def test_blank_name_rejected(self, services, model_client):
        with pytest.raises(ValidationError):
            await services.medicine_details.generate_details({"medicine_name": "   "})
        assert model_client.structured_calls == []

    async def test_full_details_uses_location(self, services, model_client):
        model_client.structured[MedicineData] = full_medicine_data()

        data = await services.medicine_details.get_full_details({"medicine_name": "Crocin"}, location="Austin, TX")

        assert data.generic_name == "Paracetamol"
        assert '"Austin, TX"' in model_client.structured_calls[0]["system_prompt"]

    def test_rating_bounds(self):
        payload = full_medicine_data().model_dump()
        payload["rating"] = 7
        with pytest.raises(PydanticValidationError):
            MedicineData.model_validate(payload)


class TestDiseasePredictionFlow:
    """Test health-risk prediction over the patient record."""

    @pytest.fixture
    def patient_record(self, document_store):
        document_store.patients["patient-1"] = {"id": "patient-1", "name": "A. Patel", "age": 52}
        document_store.patient_docs[("patient-1", "chronic_conditions")] = [
            {"condition": "Type 2 diabetes", "since": "2019"},
        ]
        return document_store

    @pytest.fixture
    def prediction(self):
        return DiseasePrediction(
            health_score=64,
            summary="Diabetes with elevated cardiovascular risk.",
            risk_factors=["Type 2 diabetes", "Sedentary lifestyle", "Poor sleep"],
            recommendations=["Daily walks", "HbA1c every 3 months", "Sleep hygiene"],
            doctor_specialty="Endocrinologist",
            urgency=PredictionUrgency.MODERATE,
        )

    async def test_reads_every_collection(self, services, model_client, patient_record, prediction):
        seen = {}

        async def respond(*, tools, **kwargs):
            seen["profile"] = json.loads(
                await tools.invoke("get_patient_profile", json.dumps({"patient_id": "patient-1"}))
            )
            for collection in PatientCollection:
                seen[collection.value] = json.loads(await tools.invoke(
                    "get_patient_sub_collection",
                    json.dumps({"patient_id": "patient-1", "collection_name": collection.value}),
                ))
            return prediction

        model_client.structured[DiseasePrediction] = respond

        result = await services.disease_prediction.predict({
            "patient_id": "patient-1",
            "symptoms": "fatigue, thirst",
            "sleep": "5 hours",
        })

        assert result.health_score == 64
        assert seen["profile"]["age"] == 52
        assert seen["chronic_conditions"][0]["condition"] == "Type 2 diabetes"
        assert seen["appointments"] == []
        prompt = model_client.structured_calls[0]["prompt"]
        assert "- Reported symptoms: fatigue, thirst" in prompt
        assert "- Lifestyle: Not provided" in prompt

    async def test_unknown_patient(self, services, model_client):
        with pytest.raises(NotFound):
            await services.disease_prediction.predict({"patient_id": "ghost"})
        assert model_client.structured_calls == []

    async def test_other_patient_is_out_of_scope(self, services, model_client, patient_record, prediction):
        async def respond(*, tools, **kwargs):
            await tools.invoke("get_patient_profile", json.dumps({"patient_id": "patient-2"}))
            return prediction

        model_client.structured[DiseasePrediction] = respond
        with pytest.raises(AnalysisUnavailable):
            await services.disease_prediction.predict({"patient_id": "patient-1"})

    async def test_unknown_collection_rejected(self, services, model_client, patient_record, prediction):
        async def respond(*, tools, **kwargs):
            await tools.invoke(
                "get_patient_sub_collection",
                json.dumps({"patient_id": "patient-1", "collection_name": "billing"}),
            )
            return prediction

        model_client.structured[DiseasePrediction] = respond
        with pytest.raises(AnalysisUnavailable):
            await services.disease_prediction.predict({"patient_id": "patient-1"})

    def test_score_bounds(self, prediction):
        payload = prediction.model_dump()
        payload["health_score"] = 140
        with pytest.raises(PydanticValidationError):
            DiseasePrediction.model_validate(payload)
