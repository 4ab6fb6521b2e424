"""
Pydantic models for the report, medicine, prescription and prediction flows.

Request models validate caller input; output models are the structured
output contract each model response must satisfy.
"""

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from mediquest.models.data_uri import SUPPORTED_DOCUMENT_TYPES, parse_data_uri


class PatientCollection(str, Enum):
    """Per-patient sub-collections in the document store."""
    MEDICAL_REPORTS = "medical_reports"
    SCAN_IMAGES = "scan_images"
    PRESCRIPTIONS = "prescriptions"
    ALLERGIES = "allergies"
    CHRONIC_CONDITIONS = "chronic_conditions"
    APPOINTMENTS = "appointments"


# =============================================================================
# Report summarization
# =============================================================================

class ReportSummaryRequest(BaseModel):
    """A medical report (image or PDF) as a data URI."""
    report_data_uri: str = Field(..., description="Report as data:<mime>;base64,<data>")

    @field_validator("report_data_uri")
    @classmethod
    def validate_report(cls, v: str) -> str:
        return parse_data_uri(v, SUPPORTED_DOCUMENT_TYPES).to_uri()


class ReportSummary(BaseModel):
    """Lay-language explanation of a medical report."""
    summary: str = Field(..., min_length=1, description="Summarized explanation of the report")
    potential_issues: str = Field(..., description="Potential issues identified in the report")
    next_steps: str = Field(..., description="Recommended next steps")


# =============================================================================
# Medicine lookup
# =============================================================================

class StorageType(str, Enum):
    NORMAL = "Normal"
    COLD = "Cold"


class MedicineDetailsRequest(BaseModel):
    """Name of the medicine to look up."""
    medicine_name: str = Field(..., min_length=1, max_length=200)

    @field_validator("medicine_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("Medicine name cannot be empty")
        return cleaned


class MedicineDetails(BaseModel):
    """Inventory-oriented record for a single medicine."""
    name: str = Field(..., description="Trade name")
    strength: str = Field(..., description="Strength, e.g. '500mg' or '10mg/5ml'")
    salt_composition: str = Field(..., description="Active ingredients, e.g. 'Paracetamol'")
    category: str = Field(..., description="Category, e.g. 'Analgesic'")
    is_prescription_required: bool = Field(..., description="Whether a prescription is required")
    storage_type: StorageType = Field(..., description="'Cold' for refrigeration, else 'Normal'")
    common_uses: str = Field(..., description="One-sentence summary of common uses")
    safety_notes: str = Field(..., description="Warnings, side effects, contraindications")
    expiry_date: date = Field(..., description="Suggested expiry date (YYYY-MM-DD)")
    stock: int = Field(..., ge=0, description="Suggested starting stock")


class Composition(BaseModel):
    active_ingredients: list[str] = Field(default_factory=list)
    inactive_ingredients: list[str] = Field(default_factory=list)
    formulation_type: str = Field(..., description="e.g. Tablet, Syrup, Injection")


class MedicineFunction(BaseModel):
    primary_action: str
    mechanism_of_action: str
    therapeutic_class: str


class SideEffects(BaseModel):
    common: list[str] = Field(default_factory=list)
    uncommon: list[str] = Field(default_factory=list)
    serious: list[str] = Field(default_factory=list)


class UsageInstructions(BaseModel):
    general_guidelines: str
    special_precautions: str
    contraindication_groups: list[str] = Field(default_factory=list)


class StandardDose(BaseModel):
    adult: str
    pediatric: str
    elderly: str


class Dosage(BaseModel):
    standard_dose: StandardDose
    maximum_daily_dose: str
    duration_of_treatment: str
    timing_considerations: str
    missed_dose: str


class Interactions(BaseModel):
    drug_interactions: list[str] = Field(default_factory=list)
    food_interactions: list[str] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)


class StorageGuidance(BaseModel):
    temperature: str
    special_conditions: str
    expiry_guidelines: str


class Price(BaseModel):
    average_retail_price: str
    unit_price: str


class Substitute(BaseModel):
    name: str
    generic_name: str
    price: str
    comparison_notes: str


class Manufacturer(BaseModel):
    name: str
    country: str


class Pharmacy(BaseModel):
    name: str
    address: str
    contact: str


class NearbyPharmacies(BaseModel):
    location: str
    pharmacies: list[Pharmacy] = Field(default_factory=list)


class MedicineData(BaseModel):
    """Full medicine monograph."""
    name: str
    generic_name: str
    composition: Composition
    function: MedicineFunction
    diseases: list[str] = Field(default_factory=list)
    side_effects: SideEffects
    instructions: UsageInstructions
    dosage: Dosage
    interactions: Interactions
    storage: StorageGuidance
    price: Price
    substitutes: list[Substitute] = Field(default_factory=list)
    rating: float = Field(..., ge=0.0, le=5.0)
    review_count: int = Field(..., ge=0)
    manufacturer: Manufacturer
    nearby_pharmacies: NearbyPharmacies


# =============================================================================
# Prescription and inventory
# =============================================================================

class InventoryStatus(str, Enum):
    """Stock classification for a prescribed medicine."""
    AVAILABLE = "Available"
    LOW_STOCK = "Low Stock"
    OUT_OF_STOCK = "Out of Stock"
    UNKNOWN = "Unknown"


class PrescriptionCheckRequest(BaseModel):
    """Identifies the store, patient and prescription to check."""
    store_id: str = Field(..., min_length=1)
    patient_id: str = Field(..., min_length=1)
    prescription_id: str = Field(..., min_length=1)


class PrescriptionMatch(BaseModel):
    """One prescription line as matched by the model against the inventory."""
    name: str
    dosage: str = ""
    frequency: str = ""
    matched_inventory_name: str | None = Field(
        default=None,
        description="Exact inventory item name that matches this medicine, or null"
    )


class PrescriptionMatchResult(BaseModel):
    """Structured output the model returns for a prescription check."""
    medicines: list[PrescriptionMatch]


class AnalyzedMedicine(BaseModel):
    """A prescribed medicine with its stock status at the store."""
    name: str
    dosage: str
    frequency: str
    matched_inventory_name: str | None = None
    stock: int | None = None
    inventory_status: InventoryStatus


class PrescriptionCheckResult(BaseModel):
    medicines: list[AnalyzedMedicine]


# =============================================================================
# Disease prediction
# =============================================================================

class PredictionUrgency(str, Enum):
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"
    EMERGENCY = "Emergency"


class DiseaseQuestionnaire(BaseModel):
    """Optional questionnaire answers collected before a prediction."""
    symptoms: str | None = Field(default=None, description="Comma-separated symptoms")
    chronic_history: str | None = None
    medication_allergies: str | None = None
    recent_procedures: str | None = None
    lifestyle: str | None = None
    sleep: str | None = None


class DiseasePredictionRequest(DiseaseQuestionnaire):
    """Patient id plus the questionnaire answers."""
    patient_id: str = Field(..., min_length=1)


class DiseasePrediction(BaseModel):
    """Health-risk analysis over the full patient record."""
    health_score: int = Field(..., ge=0, le=100, description="100 is perfect health, 0 is critical")
    summary: str = Field(..., min_length=1)
    risk_factors: list[str] = Field(..., max_length=5)
    recommendations: list[str] = Field(..., max_length=5)
    doctor_specialty: str
    urgency: PredictionUrgency
