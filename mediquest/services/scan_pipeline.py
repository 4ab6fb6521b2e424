"""
LangGraph pipeline for scan analysis.

Implements a 4-stage pipeline:
1. Preprocessing (decode and check the uploaded image)
2. Text Analysis (structured radiology report)
3. Image Generation (annotated copy of the scan)
4. Persistence (blob upload + patient record), on entry to complete

Stages run strictly in order. Any stage error routes to the failure node,
which moves the run to the error stage and stops it; the error is then
raised to the caller. A persistence failure is logged and reported on the
result but does not fail the run.
"""

import time
from typing import Any, TypedDict
from uuid import uuid4

import structlog
from langgraph.graph import END, StateGraph

from mediquest.config.config import Settings, get_settings
from mediquest.config.logging_config import get_logger
from mediquest.database.database import DocumentStore
from mediquest.errors import (
    AnalysisUnavailable,
    FlowError,
    ImageGenerationUnavailable,
    ValidationError,
    parse_input,
)
from mediquest.models.data_uri import DataUri, parse_data_uri
from mediquest.models.flow_models import PatientCollection
from mediquest.models.scan_models import (
    AnnotatedImageResult,
    PersistedScanRecord,
    PipelineStage,
    ScanAnalysisRequest,
    ScanAnalysisResult,
    StructuredReport,
)
from mediquest.services.scan_analysis import ImageTransformInvoker, TextAnalysisInvoker
from mediquest.storage.blob_store import BlobStore, scan_image_key

logger = get_logger(__name__)


ALLOWED_TRANSITIONS: dict[PipelineStage, frozenset[PipelineStage]] = {
    PipelineStage.IDLE: frozenset({PipelineStage.PREPROCESSING, PipelineStage.ERROR}),
    PipelineStage.PREPROCESSING: frozenset({PipelineStage.TEXT_ANALYZING, PipelineStage.ERROR}),
    PipelineStage.TEXT_ANALYZING: frozenset({PipelineStage.IMAGE_GENERATING, PipelineStage.ERROR}),
    PipelineStage.IMAGE_GENERATING: frozenset({PipelineStage.COMPLETE, PipelineStage.ERROR}),
    PipelineStage.COMPLETE: frozenset(),
    PipelineStage.ERROR: frozenset(),
}


class InvalidStageTransition(RuntimeError):
    """The pipeline attempted a transition outside ALLOWED_TRANSITIONS."""


class ScanPipelineState(TypedDict):
    """State for the scan pipeline graph."""
    request: ScanAnalysisRequest
    patient_id: str
    scan_id: str
    stage: PipelineStage
    stage_history: list[PipelineStage]
    image: DataUri | None
    analysis: StructuredReport | None
    annotated_image: AnnotatedImageResult | None
    record: PersistedScanRecord | None
    persistence_error: str | None
    error: FlowError | None


def advance(state: ScanPipelineState, target: PipelineStage) -> ScanPipelineState:
    """Move the run to target, enforcing the stage order."""
    current = state["stage"]
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStageTransition(f"Cannot move from {current.value} to {target.value}")
    return {
        **state,
        "stage": target,
        "stage_history": [*state["stage_history"], target],
    }


class ScanPipeline:
    """
    Sequential scan-analysis orchestrator.

    Holds only its collaborators; every run starts from a fresh state, so
    one instance serves concurrent invocations.
    """

    def __init__(
        self,
        text_invoker: TextAnalysisInvoker,
        image_invoker: ImageTransformInvoker,
        document_store: DocumentStore,
        blob_store: BlobStore,
        settings: Settings | None = None,
    ):
        """
        Initialize the scan pipeline.

        Args:
            text_invoker: Produces the structured report.
            image_invoker: Produces the annotated image.
            document_store: Receives the persisted scan record.
            blob_store: Receives the original and annotated images.
            settings: Application settings. Uses default if not provided.
        """
        self.settings = settings or get_settings()
        self.text_invoker = text_invoker
        self.image_invoker = image_invoker
        self.document_store = document_store
        self.blob_store = blob_store
        self._compiled_graph = self._build_graph()

    def _build_graph(self):
        """Build the LangGraph state graph."""
        graph = StateGraph(ScanPipelineState)

        graph.add_node("preprocessing", self._node_preprocessing)
        graph.add_node("text_analysis", self._node_text_analysis)
        graph.add_node("image_generation", self._node_image_generation)
        graph.add_node("persistence", self._node_persistence)
        graph.add_node("failure", self._node_failure)

        graph.set_entry_point("preprocessing")
        graph.add_conditional_edges(
            "preprocessing",
            self._route_after_stage,
            {"continue": "text_analysis", "failure": "failure"},
        )
        graph.add_conditional_edges(
            "text_analysis",
            self._route_after_stage,
            {"continue": "image_generation", "failure": "failure"},
        )
        graph.add_conditional_edges(
            "image_generation",
            self._route_after_stage,
            {"continue": "persistence", "failure": "failure"},
        )
        graph.add_edge("persistence", END)
        graph.add_edge("failure", END)

        return graph.compile()

    async def run(
        self,
        request: ScanAnalysisRequest | dict[str, Any],
        patient_id: str,
    ) -> ScanAnalysisResult:
        """
        Run the full pipeline for one scan.

        Args:
            request: The scan request or its JSON-shaped equivalent.
            patient_id: Patient that owns the scan record.

        Returns:
            The analysis, the annotated image and, unless persistence
            failed, the stored record.

        Raises:
            ValidationError: Bad request or image.
            AnalysisUnavailable: The text analysis stage failed.
            ImageGenerationUnavailable: The image stage failed.
        """
        request = parse_input(ScanAnalysisRequest, request)
        if not patient_id or not patient_id.strip():
            raise ValidationError("patient_id is required")

        start_time = time.perf_counter()
        scan_id = str(uuid4())
        initial_state: ScanPipelineState = {
            "request": request,
            "patient_id": patient_id.strip(),
            "scan_id": scan_id,
            "stage": PipelineStage.IDLE,
            "stage_history": [PipelineStage.IDLE],
            "image": None,
            "analysis": None,
            "annotated_image": None,
            "record": None,
            "persistence_error": None,
            "error": None,
        }

        with structlog.contextvars.bound_contextvars(scan_id=scan_id, patient_id=patient_id):
            logger.info("Scan pipeline started", scan_type=request.scan_type.value)
            final_state: ScanPipelineState = await self._compiled_graph.ainvoke(initial_state)
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)

            error = final_state["error"]
            if error is not None:
                history = [s.value for s in final_state["stage_history"]]
                error.details.setdefault("stage_history", history)
                logger.warning(
                    "Scan pipeline failed",
                    error_code=error.error_code,
                    stage_history=history,
                    elapsed_ms=elapsed_ms,
                )
                raise error

            logger.info(
                "Scan pipeline completed",
                persisted=final_state["record"] is not None,
                elapsed_ms=elapsed_ms,
            )

        return ScanAnalysisResult(
            scan_id=scan_id,
            stage=final_state["stage"],
            stage_history=final_state["stage_history"],
            analysis=final_state["analysis"],
            annotated_image=final_state["annotated_image"],
            record=final_state["record"],
            persistence_error=final_state["persistence_error"],
            processing_time_ms=elapsed_ms,
        )

    def _route_after_stage(self, state: ScanPipelineState) -> str:
        return "failure" if state["error"] is not None else "continue"

    def _node_preprocessing(self, state: ScanPipelineState) -> ScanPipelineState:
        """Node 1: Decode and check the uploaded image."""
        state = advance(state, PipelineStage.PREPROCESSING)
        try:
            image = parse_data_uri(state["request"].encoded_image)
            size = len(image.decode())
        except ValueError as e:
            return {**state, "error": ValidationError(f"Invalid scan image: {e}")}

        if size > self.settings.max_image_bytes:
            logger.warning("Scan image too large", size_bytes=size, limit=self.settings.max_image_bytes)
            return {
                **state,
                "error": ValidationError(
                    "Scan image exceeds the size limit",
                    details={"size_bytes": size, "max_bytes": self.settings.max_image_bytes},
                ),
            }

        logger.info("Node 1: Preprocessing completed", mime_type=image.mime_type, size_bytes=size)
        return {**state, "image": image}

    async def _node_text_analysis(self, state: ScanPipelineState) -> ScanPipelineState:
        """Node 2: Structured report from the text analysis invoker."""
        state = advance(state, PipelineStage.TEXT_ANALYZING)
        try:
            analysis = await self.text_invoker.analyze(state["request"])
        except FlowError as e:
            return {**state, "error": e}
        except Exception as e:
            logger.exception("Node 2: Text analysis error", error=str(e))
            return {**state, "error": AnalysisUnavailable(f"Text analysis failed: {e}")}
        return {**state, "analysis": analysis}

    async def _node_image_generation(self, state: ScanPipelineState) -> ScanPipelineState:
        """Node 3: Annotated image from the image transform invoker."""
        state = advance(state, PipelineStage.IMAGE_GENERATING)
        try:
            annotated = await self.image_invoker.annotate(
                state["image"],
                state["analysis"],
                scan_type=state["request"].scan_type.value,
            )
        except FlowError as e:
            return {**state, "error": e}
        except Exception as e:
            logger.exception("Node 3: Image generation error", error=str(e))
            return {**state, "error": ImageGenerationUnavailable(f"Image generation failed: {e}")}
        return {**state, "annotated_image": annotated}

    async def _node_persistence(self, state: ScanPipelineState) -> ScanPipelineState:
        """Node 4: Enter complete and store images and record (best effort)."""
        state = advance(state, PipelineStage.COMPLETE)
        try:
            record = await self._persist(state)
        except Exception as e:
            logger.exception("Scan persistence failed", error=str(e))
            return {**state, "persistence_error": str(e) or e.__class__.__name__}
        return {**state, "record": record}

    def _node_failure(self, state: ScanPipelineState) -> ScanPipelineState:
        """Terminal node for any stage error."""
        failed_stage = state["stage"]
        state = advance(state, PipelineStage.ERROR)
        logger.error(
            "Scan pipeline stage failed",
            stage=failed_stage.value,
            error_code=state["error"].error_code,
            error=state["error"].message,
        )
        return state

    async def _persist(self, state: ScanPipelineState) -> PersistedScanRecord:
        patient_id = state["patient_id"]
        scan_id = state["scan_id"]
        original = state["image"]
        annotated = parse_data_uri(state["annotated_image"].encoded_image)

        original_url = await self.blob_store.upload(
            scan_image_key(patient_id, scan_id, "original", original.extension),
            original.decode(),
            original.mime_type,
        )
        annotated_url = await self.blob_store.upload(
            scan_image_key(patient_id, scan_id, "annotated", annotated.extension),
            annotated.decode(),
            annotated.mime_type,
        )

        record = PersistedScanRecord(
            id=scan_id,
            patient_id=patient_id,
            scan_type=state["request"].scan_type,
            original_image_url=original_url,
            annotated_image_url=annotated_url,
            analysis=state["analysis"],
        )
        await self.document_store.add_patient_document(
            patient_id,
            PatientCollection.SCAN_IMAGES,
            record.model_dump(mode="json"),
        )
        logger.info("Scan record persisted")
        return record
