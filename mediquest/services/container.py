"""
Service container.

Built once by the process entry point and passed to the routes; there are
no module-level client singletons. Tests build one from fakes.
"""

from dataclasses import dataclass

from mediquest.config.config import Settings
from mediquest.config.logging_config import get_logger
from mediquest.database.database import ArangoDocumentStore, DocumentStore
from mediquest.services.disease_prediction import DiseasePredictionFlow
from mediquest.services.medicine_details import MedicineDetailsFlow
from mediquest.services.model_client import ModelClient, OpenAIModelClient
from mediquest.services.prescription_inventory import PrescriptionInventoryFlow
from mediquest.services.report_summary import ReportSummaryFlow
from mediquest.services.scan_analysis import ImageTransformInvoker, TextAnalysisInvoker
from mediquest.services.scan_pipeline import ScanPipeline
from mediquest.storage.blob_store import BlobStore, S3BlobStore

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """Clients and flows shared by every request of one process."""
    settings: Settings
    model_client: ModelClient
    document_store: DocumentStore
    blob_store: BlobStore
    text_analysis: TextAnalysisInvoker
    image_transform: ImageTransformInvoker
    scan_pipeline: ScanPipeline
    report_summary: ReportSummaryFlow
    medicine_details: MedicineDetailsFlow
    prescription_inventory: PrescriptionInventoryFlow
    disease_prediction: DiseasePredictionFlow

    @classmethod
    def build(
        cls,
        settings: Settings,
        model_client: ModelClient | None = None,
        document_store: DocumentStore | None = None,
        blob_store: BlobStore | None = None,
    ) -> "ServiceContainer":
        """
        Wire every flow to its collaborators.

        Args:
            settings: Application settings.
            model_client: Override for the OpenAI-backed client.
            document_store: Override for the ArangoDB store.
            blob_store: Override for the S3 store.
        """
        model_client = model_client or OpenAIModelClient(settings)
        document_store = document_store or ArangoDocumentStore(settings)
        blob_store = blob_store or S3BlobStore(settings)

        text_analysis = TextAnalysisInvoker(model_client)
        image_transform = ImageTransformInvoker(model_client)

        return cls(
            settings=settings,
            model_client=model_client,
            document_store=document_store,
            blob_store=blob_store,
            text_analysis=text_analysis,
            image_transform=image_transform,
            scan_pipeline=ScanPipeline(
                text_analysis,
                image_transform,
                document_store,
                blob_store,
                settings=settings,
            ),
            report_summary=ReportSummaryFlow(model_client),
            medicine_details=MedicineDetailsFlow(model_client),
            prescription_inventory=PrescriptionInventoryFlow(model_client, document_store),
            disease_prediction=DiseasePredictionFlow(model_client, document_store),
        )

    async def aclose(self) -> None:
        """Release network clients."""
        await self.model_client.aclose()
        self.document_store.close()
        logger.info("Services closed")
