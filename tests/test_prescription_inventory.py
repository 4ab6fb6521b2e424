"""
Tests for prescription-to-inventory matching.
"""

import json

import pytest

from mediquest.errors import AnalysisUnavailable, NotFound, ValidationError
from mediquest.models.flow_models import (
    InventoryStatus,
    PrescriptionMatch,
    PrescriptionMatchResult,
)
from mediquest.services.prescription_inventory import classify_stock


@pytest.fixture
def check_request():
    return {"store_id": "store-1", "patient_id": "patient-1", "prescription_id": "rx-1"}


@pytest.fixture
def stocked_store(document_store):
    document_store.prescriptions[("patient-1", "rx-1")] = {
        "id": "rx-1",
        "doctor": "Dr. Rao",
        "medicines": [
            {"name": "Crocin 500mg", "dosage": "500mg", "frequency": "Twice daily"},
            {"name": "Amoxicillin", "dosage": "250mg", "frequency": "Thrice daily"},
            {"name": "Cetirizine", "dosage": "10mg", "frequency": "At night"},
            {"name": "Rarecillin", "dosage": "5mg", "frequency": "Once daily"},
        ],
    }
    document_store.inventory["store-1"] = [
        {"id": "inv-1", "name": "Crocin Advance", "stock": 45},
        {"id": "inv-2", "name": "Amoxicillin 250", "stock": 3},
        {"id": "inv-3", "name": "Cetirizine", "stock": 0},
    ]
    return document_store


def scripted_matcher(matches, store_id="store-1", patient_id="patient-1", prescription_id="rx-1"):
    """A model stand-in that reads both tools before answering."""

    async def respond(*, tools, **kwargs):
        await tools.invoke(
            "get_prescription_details",
            json.dumps({"patient_id": patient_id, "prescription_id": prescription_id}),
        )
        await tools.invoke("get_inventory_details", json.dumps({"store_id": store_id}))
        return PrescriptionMatchResult(medicines=matches)

    return respond


class TestClassifyStock:
    """Test the stock thresholds."""

    @pytest.mark.parametrize(
        "stock,expected",
        [
            (120, InventoryStatus.AVAILABLE),
            (20, InventoryStatus.AVAILABLE),
            (19, InventoryStatus.LOW_STOCK),
            (1, InventoryStatus.LOW_STOCK),
            (0, InventoryStatus.OUT_OF_STOCK),
            (-2, InventoryStatus.OUT_OF_STOCK),
            (None, InventoryStatus.UNKNOWN),
        ],
    )
    def test_thresholds(self, stock, expected):
        assert classify_stock(stock) == expected


class TestPrescriptionInventoryFlow:
    """Test the full check against in-memory data."""

    async def test_statuses_follow_stock(self, services, model_client, stocked_store, check_request):
        model_client.structured[PrescriptionMatchResult] = scripted_matcher([
            PrescriptionMatch(name="Crocin 500mg", dosage="500mg", frequency="Twice daily",
                              matched_inventory_name="Crocin Advance"),
            PrescriptionMatch(name="Amoxicillin", dosage="250mg", frequency="Thrice daily",
                              matched_inventory_name="amoxicillin  250"),
            PrescriptionMatch(name="Cetirizine", dosage="10mg", frequency="At night",
                              matched_inventory_name="Cetirizine"),
            PrescriptionMatch(name="Rarecillin", dosage="5mg", frequency="Once daily"),
        ])

        result = await services.prescription_inventory.check(check_request)

        by_name = {m.name: m for m in result.medicines}
        assert by_name["Crocin 500mg"].inventory_status == InventoryStatus.AVAILABLE
        assert by_name["Crocin 500mg"].stock == 45
        assert by_name["Amoxicillin"].inventory_status == InventoryStatus.LOW_STOCK
        assert by_name["Cetirizine"].inventory_status == InventoryStatus.OUT_OF_STOCK
        assert by_name["Rarecillin"].inventory_status == InventoryStatus.UNKNOWN
        assert by_name["Rarecillin"].stock is None
        assert [m.name for m in result.medicines] == [
            "Crocin 500mg", "Amoxicillin", "Cetirizine", "Rarecillin",
        ]

    async def test_invented_inventory_name_is_unknown(self, services, model_client, stocked_store, check_request):
        """A match to an item the store does not carry cannot claim a stock level."""
        model_client.structured[PrescriptionMatchResult] = scripted_matcher([
            PrescriptionMatch(name="Rarecillin", dosage="5mg", frequency="Once daily",
                              matched_inventory_name="Rarecillin Forte"),
        ])

        result = await services.prescription_inventory.check(check_request)

        medicine = result.medicines[0]
        assert medicine.inventory_status == InventoryStatus.UNKNOWN
        assert medicine.matched_inventory_name is None

    async def test_duplicate_inventory_names_are_summed(self, services, model_client, stocked_store, check_request):
        """Two batches of the same item count as one stock level."""
        stocked_store.inventory["store-1"] += [
            {"id": "inv-4", "name": "amoxicillin 250", "stock": 18},
            {"id": "inv-5", "name": "Amoxicillin 250", "stock": "n/a"},
        ]
        model_client.structured[PrescriptionMatchResult] = scripted_matcher([
            PrescriptionMatch(name="Amoxicillin", dosage="250mg", frequency="Thrice daily",
                              matched_inventory_name="Amoxicillin 250"),
        ])

        result = await services.prescription_inventory.check(check_request)

        medicine = result.medicines[0]
        assert medicine.stock == 21
        assert medicine.inventory_status == InventoryStatus.AVAILABLE

    async def test_tools_are_registered(self, services, model_client, stocked_store, check_request):
        model_client.structured[PrescriptionMatchResult] = PrescriptionMatchResult(medicines=[])
        await services.prescription_inventory.check(check_request)

        tools = model_client.structured_calls[0]["tools"]
        assert sorted(tools.names) == ["get_inventory_details", "get_prescription_details"]

    async def test_missing_prescription(self, services, model_client, stocked_store):
        with pytest.raises(NotFound):
            await services.prescription_inventory.check(
                {"store_id": "store-1", "patient_id": "patient-1", "prescription_id": "rx-404"}
            )
        assert model_client.structured_calls == []

    async def test_missing_ids(self, services):
        with pytest.raises(ValidationError):
            await services.prescription_inventory.check({"store_id": "store-1"})

    async def test_tool_outside_request_scope(self, services, model_client, stocked_store, check_request):
        model_client.structured[PrescriptionMatchResult] = scripted_matcher([], store_id="store-2")
        with pytest.raises(AnalysisUnavailable):
            await services.prescription_inventory.check(check_request)

    async def test_model_failure(self, services, model_client, stocked_store, check_request):
        model_client.structured[PrescriptionMatchResult] = AnalysisUnavailable("Model returned invalid JSON")
        with pytest.raises(AnalysisUnavailable):
            await services.prescription_inventory.check(check_request)
