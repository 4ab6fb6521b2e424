"""
Medicine lookup flows.

generate_details returns the short record a store adds to its inventory.
get_full_details returns the full monograph shown on the medicine page.
"""

from datetime import date
from typing import Any

from mediquest.config.logging_config import get_logger
from mediquest.errors import parse_input
from mediquest.models.flow_models import MedicineData, MedicineDetails, MedicineDetailsRequest
from mediquest.services.model_client import ModelClient

logger = get_logger(__name__)


DETAILS_SYSTEM_PROMPT = """You are an expert pharmacist AI. Given a medicine name, provide its structured details.

Instructions:
1. **Extract Details**: Determine the medicine's strength, salt composition, and category.
2. **Regulatory Info**: Classify whether it needs a prescription and its storage type ('Cold' for refrigeration, 'Normal' for room temperature).
3. **Summarize**: Write a very brief summary of its common uses and any key safety notes.
4. **Defaults**: Provide a reasonable starting stock count (e.g. 100) and an expiry date about 2 years after {today} in YYYY-MM-DD format."""

FULL_DETAILS_SYSTEM_PROMPT = """You are an expert pharmacist and medical data analyst. For the given medicine, provide a comprehensive, structured record covering composition, function, diseases treated, side effects, usage instructions, dosage, interactions, storage, price, substitutes, rating, manufacturer and nearby pharmacies.

Generate realistic but hypothetical data for every field. For nearby pharmacies, assume the user is in "{location}" and list 3 fictional pharmacies."""

DEFAULT_PHARMACY_LOCATION = "San Francisco, CA"


class MedicineDetailsFlow:
    """Look up medicine information by name."""

    def __init__(self, model_client: ModelClient):
        self.model_client = model_client

    async def generate_details(self, request: MedicineDetailsRequest | dict[str, Any]) -> MedicineDetails:
        request = parse_input(MedicineDetailsRequest, request)
        logger.info("Medicine details requested", medicine=request.medicine_name)
        return await self.model_client.generate_structured(
            system_prompt=DETAILS_SYSTEM_PROMPT.format(today=date.today().isoformat()),
            prompt=f'Medicine name: "{request.medicine_name}"',
            output_model=MedicineDetails,
        )

    async def get_full_details(
        self,
        request: MedicineDetailsRequest | dict[str, Any],
        location: str = DEFAULT_PHARMACY_LOCATION,
    ) -> MedicineData:
        request = parse_input(MedicineDetailsRequest, request)
        logger.info("Full medicine details requested", medicine=request.medicine_name)
        return await self.model_client.generate_structured(
            system_prompt=FULL_DETAILS_SYSTEM_PROMPT.format(location=location),
            prompt=f'Medicine name: "{request.medicine_name}"',
            output_model=MedicineData,
        )
