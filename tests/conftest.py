"""
Shared fixtures: in-memory fakes for the model endpoint, document store
and blob store.
"""

import base64
import inspect
from typing import Any

import pytest

from mediquest.config.config import Settings
from mediquest.errors import NotFound
from mediquest.models.data_uri import DataUri
from mediquest.models.scan_models import (
    BoundingBox,
    Finding,
    StructuredReport,
    UrgencyLevel,
)
from mediquest.services.container import ServiceContainer
from mediquest.storage.blob_store import BlobStoreError

# 1x1 transparent PNG
PNG_B64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
PNG_DATA_URI = f"data:image/png;base64,{PNG_B64}"
ANNOTATED_B64 = base64.b64encode(b"annotated-scan-bytes").decode("ascii")


class FakeModelClient:
    """
    Scripted ModelClient.

    structured maps an output model class to a value, an exception, or an
    async callable receiving the call kwargs.
    """

    def __init__(self):
        self.structured: dict[type, Any] = {}
        self.image: DataUri | Exception = DataUri(mime_type="image/png", payload=ANNOTATED_B64)
        self.structured_calls: list[dict[str, Any]] = []
        self.image_calls: list[dict[str, Any]] = []
        self.closed = False

    async def generate_structured(self, *, system_prompt, prompt, output_model, images=(), tools=None):
        call = {
            "system_prompt": system_prompt,
            "prompt": prompt,
            "output_model": output_model,
            "images": list(images),
            "tools": tools,
        }
        self.structured_calls.append(call)
        response = self.structured[output_model]
        if isinstance(response, Exception):
            raise response
        if inspect.iscoroutinefunction(response):
            return await response(**call)
        return response

    async def generate_image(self, *, prompt, reference_image):
        self.image_calls.append({"prompt": prompt, "reference_image": reference_image})
        if isinstance(self.image, Exception):
            raise self.image
        return self.image

    async def aclose(self):
        self.closed = True


class InMemoryDocumentStore:
    """DocumentStore over plain dicts."""

    def __init__(self):
        self.patients: dict[str, dict[str, Any]] = {}
        self.patient_docs: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.prescriptions: dict[tuple[str, str], dict[str, Any]] = {}
        self.inventory: dict[str, list[dict[str, Any]]] = {}
        self.fail_writes = False
        self.closed = False

    async def get_patient(self, patient_id):
        if patient_id not in self.patients:
            raise NotFound(f"Patient profile not found: {patient_id}")
        return self.patients[patient_id]

    async def list_patient_collection(self, patient_id, collection):
        return list(self.patient_docs.get((patient_id, collection.value), []))

    async def get_prescription(self, patient_id, prescription_id):
        if (patient_id, prescription_id) not in self.prescriptions:
            raise NotFound(f"Prescription not found: {prescription_id}")
        return self.prescriptions[(patient_id, prescription_id)]

    async def list_inventory(self, store_id):
        return list(self.inventory.get(store_id, []))

    async def add_patient_document(self, patient_id, collection, document):
        if self.fail_writes:
            raise RuntimeError("document store unavailable")
        stored = {**document, "patient_id": patient_id}
        self.patient_docs.setdefault((patient_id, collection.value), []).append(stored)
        return stored

    def close(self):
        self.closed = True


class InMemoryBlobStore:
    """BlobStore keeping uploads in a dict."""

    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail = False

    async def upload(self, key, data, content_type):
        if self.fail:
            raise BlobStoreError(f"Upload failed for {key}")
        self.objects[key] = (data, content_type)
        return f"https://blobs.test/{key}"


@pytest.fixture
def settings():
    return Settings(_env_file=None, llm_api_key="test-key", log_format="console")


@pytest.fixture
def model_client():
    return FakeModelClient()


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def services(settings, model_client, document_store, blob_store):
    return ServiceContainer.build(
        settings,
        model_client=model_client,
        document_store=document_store,
        blob_store=blob_store,
    )


@pytest.fixture
def xray_request():
    return {
        "scan_type": "X-ray",
        "encoded_image": PNG_DATA_URI,
        "patient_context": "Age 45",
    }


@pytest.fixture
def localized_report():
    return StructuredReport(
        summary="A small opacity is visible in the right upper lung field.",
        findings=[
            Finding(
                label="Possible Nodule",
                confidence="Medium",
                explanation="Rounded opacity about 1 cm across.",
                bounding_box=BoundingBox(y_min=0.2, x_min=0.55, y_max=0.3, x_max=0.65),
            ),
            Finding(
                label="Mild cardiomegaly",
                confidence="Low",
                explanation="Heart borders slightly enlarged.",
            ),
        ],
        key_findings="Right upper lobe opacity.",
        recommended_specialists="Pulmonologist",
        urgency=UrgencyLevel.URGENT,
        disclaimer="model supplied text",
    )


@pytest.fixture
def normal_report():
    return StructuredReport(
        summary="No abnormality detected. A diagnosis is not possible from a single image.",
        urgency=UrgencyLevel.NORMAL,
    )


@pytest.fixture
def png_data_uri():
    return PNG_DATA_URI
