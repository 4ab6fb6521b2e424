"""
Prescription-to-inventory matching flow.

The model reads the prescription and the store inventory through tool
calls and matches each prescribed medicine to an inventory item; names
rarely match exactly ("Crocin 500mg" vs "Crocin Advance"). The stock
status is then computed here from the matched item's stock, so the
thresholds are deterministic regardless of what the model says.
"""

from typing import Any

from pydantic import BaseModel, Field

from mediquest.config.logging_config import get_logger
from mediquest.database.database import DocumentStore
from mediquest.errors import AnalysisUnavailable, parse_input
from mediquest.models.flow_models import (
    AnalyzedMedicine,
    InventoryStatus,
    PrescriptionCheckRequest,
    PrescriptionCheckResult,
    PrescriptionMatchResult,
)
from mediquest.services.model_client import ModelClient
from mediquest.services.tools import Tool, ToolRegistry

logger = get_logger(__name__)

AVAILABLE_THRESHOLD = 20

SYSTEM_PROMPT = """You are an expert pharmacy assistant AI. Your task is to digitize a prescription and match it against the pharmacy's inventory.

**Instructions:**
1. **Fetch Data:** Use `get_prescription_details` to get the prescription and `get_inventory_details` to get the store's full inventory list.
2. **Analyze & Match:** For each medicine in the prescription, search the inventory. A match might not be exact (e.g. "Crocin 500mg" in the prescription vs "Crocin Advance" in the inventory). Use the medicine name as the primary matching key.
3. **Report:** Return every medicine from the prescription with its dosage and frequency. Set `matched_inventory_name` to the inventory item's name EXACTLY as it appears in the inventory, or null if nothing matches."""


class PrescriptionLookup(BaseModel):
    patient_id: str = Field(..., description="The ID of the patient.")
    prescription_id: str = Field(..., description="The ID of the prescription to fetch.")


class InventoryLookup(BaseModel):
    store_id: str = Field(..., description="The ID of the medicine store.")


def classify_stock(stock: int | None) -> InventoryStatus:
    """
    Classify a stock count.

    None means no matching inventory item was found.
    """
    if stock is None:
        return InventoryStatus.UNKNOWN
    if stock >= AVAILABLE_THRESHOLD:
        return InventoryStatus.AVAILABLE
    if stock >= 1:
        return InventoryStatus.LOW_STOCK
    return InventoryStatus.OUT_OF_STOCK


def _normalize_name(name: str) -> str:
    return " ".join(name.lower().split())


def _stock_value(raw: Any) -> int | None:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _stock_by_name(inventory: list[dict[str, Any]]) -> dict[str, int | None]:
    """
    Total stock per normalized item name.

    Items sharing a name (e.g. separate batches) are summed; an item with an
    unreadable stock count adds nothing.
    """
    totals: dict[str, int | None] = {}
    for item in inventory:
        if not item.get("name"):
            continue
        name = _normalize_name(str(item["name"]))
        stock = _stock_value(item.get("stock"))
        if name not in totals:
            totals[name] = stock
            continue
        logger.info("Duplicate inventory item name", item=name)
        if stock is not None:
            totals[name] = (totals[name] or 0) + stock
    return totals


class PrescriptionInventoryFlow:
    """Check a patient's prescription against a store's stock."""

    def __init__(self, model_client: ModelClient, document_store: DocumentStore):
        self.model_client = model_client
        self.document_store = document_store

    async def check(self, request: PrescriptionCheckRequest | dict[str, Any]) -> PrescriptionCheckResult:
        """
        Match each prescribed medicine to the store inventory.

        Raises:
            ValidationError: The request is missing ids.
            NotFound: The prescription does not exist for this patient.
            AnalysisUnavailable: The model call failed or returned bad output.
        """
        request = parse_input(PrescriptionCheckRequest, request)
        logger.info(
            "Prescription check started",
            store_id=request.store_id,
            prescription_id=request.prescription_id,
        )

        # Fail before spending a model call on a missing prescription
        await self.document_store.get_prescription(request.patient_id, request.prescription_id)

        matches = await self.model_client.generate_structured(
            system_prompt=SYSTEM_PROMPT,
            prompt=(
                f"Store ID: {request.store_id}\n"
                f"Patient ID: {request.patient_id}\n"
                f"Prescription ID: {request.prescription_id}"
            ),
            output_model=PrescriptionMatchResult,
            tools=self._build_tools(request),
        )

        inventory = await self.document_store.list_inventory(request.store_id)
        stock_by_name = _stock_by_name(inventory)

        medicines = []
        for match in matches.medicines:
            stock = None
            if match.matched_inventory_name:
                stock = stock_by_name.get(_normalize_name(match.matched_inventory_name))
            medicines.append(
                AnalyzedMedicine(
                    name=match.name,
                    dosage=match.dosage,
                    frequency=match.frequency,
                    matched_inventory_name=match.matched_inventory_name if stock is not None else None,
                    stock=stock,
                    inventory_status=classify_stock(stock),
                )
            )

        logger.info(
            "Prescription check completed",
            medicine_count=len(medicines),
            unknown_count=sum(1 for m in medicines if m.inventory_status == InventoryStatus.UNKNOWN),
        )
        return PrescriptionCheckResult(medicines=medicines)

    def _build_tools(self, request: PrescriptionCheckRequest) -> ToolRegistry:
        """Tools scoped to the ids in this request."""

        async def get_prescription_details(params: PrescriptionLookup) -> dict[str, Any]:
            if (params.patient_id, params.prescription_id) != (request.patient_id, request.prescription_id):
                raise AnalysisUnavailable("Model requested a prescription outside this request")
            return await self.document_store.get_prescription(params.patient_id, params.prescription_id)

        async def get_inventory_details(params: InventoryLookup) -> list[dict[str, Any]]:
            if params.store_id != request.store_id:
                raise AnalysisUnavailable("Model requested an inventory outside this request")
            return await self.document_store.list_inventory(params.store_id)

        return ToolRegistry([
            Tool(
                name="get_prescription_details",
                description="Fetches the details of a specific prescription from the database.",
                input_model=PrescriptionLookup,
                handler=get_prescription_details,
            ),
            Tool(
                name="get_inventory_details",
                description="Fetches the entire inventory for a given medicine store.",
                input_model=InventoryLookup,
                handler=get_inventory_details,
            ),
        ])
