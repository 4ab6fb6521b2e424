"""
ArangoDB document store.

Patients, their health sub-collections and store inventories live in
ArangoDB collections. Per-patient sub-collections are plain collections
whose documents carry a ``patient_id`` field; inventory documents carry a
``store_id``. The python-arango driver is blocking, so every call is run
in a worker thread.
"""

import asyncio
import re
from typing import Any, Protocol

from arango import ArangoClient
from arango.database import StandardDatabase
from arango.exceptions import (
    ArangoServerError,
    CollectionCreateError,
    DatabaseCreateError,
    DocumentGetError,
    DocumentParseError,
)

from mediquest.config.config import Settings, get_settings
from mediquest.config.logging_config import get_logger
from mediquest.errors import NotFound
from mediquest.models.flow_models import PatientCollection

logger = get_logger(__name__)

PATIENTS = "patients"
MEDICINE_STORES = "medicine_stores"
INVENTORY = "inventory"

COLLECTIONS = [
    PATIENTS,
    MEDICINE_STORES,
    INVENTORY,
    *(c.value for c in PatientCollection),
]

# Characters ArangoDB allows in a document _key
VALID_KEY = re.compile(r"^[A-Za-z0-9_\-:.@()+,=;$!*'%]{1,254}$")


class DocumentStore(Protocol):
    """Document store operations used by the flows."""

    async def get_patient(self, patient_id: str) -> dict[str, Any]:
        ...

    async def list_patient_collection(
        self, patient_id: str, collection: PatientCollection
    ) -> list[dict[str, Any]]:
        ...

    async def get_prescription(self, patient_id: str, prescription_id: str) -> dict[str, Any]:
        ...

    async def list_inventory(self, store_id: str) -> list[dict[str, Any]]:
        ...

    async def add_patient_document(
        self, patient_id: str, collection: PatientCollection, document: dict[str, Any]
    ) -> dict[str, Any]:
        ...

    def close(self) -> None:
        ...


def _clean(document: dict[str, Any]) -> dict[str, Any]:
    """Expose _key as id and drop the remaining Arango system fields."""
    cleaned = {k: v for k, v in document.items() if not k.startswith("_")}
    cleaned.setdefault("id", document.get("_key"))
    return cleaned


class ArangoDocumentStore:
    """
    DocumentStore backed by ArangoDB.

    The connection is opened lazily on first use; the database and its
    collections are created if they do not exist.
    """

    def __init__(self, settings: Settings | None = None, client: ArangoClient | None = None):
        self.settings = settings or get_settings()
        self._client = client
        self._db: StandardDatabase | None = None

    @property
    def client(self) -> ArangoClient:
        if self._client is None:
            self._client = ArangoClient(hosts=self.settings.arango_host)
            logger.info("ArangoDB client initialized", host=self.settings.arango_host)
        return self._client

    @property
    def db(self) -> StandardDatabase:
        """Get or create the database connection."""
        if self._db is None:
            self._db = self._connect()
        return self._db

    def _connect(self) -> StandardDatabase:
        settings = self.settings

        # Connect to system database to create our database if needed
        sys_db = self.client.db(
            "_system",
            username=settings.arango_username,
            password=settings.arango_password,
        )
        if not sys_db.has_database(settings.arango_database):
            try:
                sys_db.create_database(settings.arango_database)
                logger.info("Created database", database=settings.arango_database)
            except DatabaseCreateError as e:
                logger.error("Failed to create database", error=str(e))
                raise

        db = self.client.db(
            settings.arango_database,
            username=settings.arango_username,
            password=settings.arango_password,
        )
        logger.info("Connected to database", database=settings.arango_database)
        self._init_collections(db)
        return db

    def _init_collections(self, db: StandardDatabase) -> None:
        for name in COLLECTIONS:
            if not db.has_collection(name):
                try:
                    db.create_collection(name)
                    logger.info("Created collection", collection=name)
                except CollectionCreateError as e:
                    logger.warning("Collection creation failed", collection=name, error=str(e))

    def close(self) -> None:
        """Close the database connection."""
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None
            logger.info("Database connection closed")

    # ========================================================================
    # Blocking helpers (run in a worker thread)
    # ========================================================================

    def _get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Fetch one document by key; None if the key is malformed or absent."""
        if not VALID_KEY.match(key):
            logger.warning("Rejected malformed document key", collection=collection)
            return None
        try:
            return self.db.collection(collection).get(key)
        except DocumentParseError as e:
            logger.warning("Document key not parseable", collection=collection, error=str(e))
            return None
        except DocumentGetError as e:
            if e.http_code == 404:
                return None
            logger.error(
                "Document lookup failed",
                collection=collection,
                key=key,
                http_code=e.http_code,
                error=str(e),
            )
            raise

    def _query(self, aql: str, bind_vars: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            cursor = self.db.aql.execute(aql, bind_vars=bind_vars)
        except ArangoServerError as e:
            logger.error("Database error", error=str(e))
            raise
        return [_clean(doc) for doc in cursor]

    def _insert(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        result = self.db.collection(collection).insert(document, return_new=True)
        logger.debug("Document inserted", collection=collection, key=result["_key"])
        return _clean(result["new"])

    # ========================================================================
    # DocumentStore operations
    # ========================================================================

    async def get_patient(self, patient_id: str) -> dict[str, Any]:
        document = await asyncio.to_thread(self._get, PATIENTS, patient_id)
        if document is None:
            raise NotFound(f"Patient profile not found: {patient_id}")
        return _clean(document)

    async def list_patient_collection(
        self, patient_id: str, collection: PatientCollection
    ) -> list[dict[str, Any]]:
        return await asyncio.to_thread(
            self._query,
            "FOR d IN @@collection FILTER d.patient_id == @patient_id RETURN d",
            {"@collection": collection.value, "patient_id": patient_id},
        )

    async def get_prescription(self, patient_id: str, prescription_id: str) -> dict[str, Any]:
        document = await asyncio.to_thread(
            self._get, PatientCollection.PRESCRIPTIONS.value, prescription_id
        )
        if document is None or document.get("patient_id") != patient_id:
            raise NotFound(f"Prescription not found: {prescription_id}")
        return _clean(document)

    async def list_inventory(self, store_id: str) -> list[dict[str, Any]]:
        return await asyncio.to_thread(
            self._query,
            "FOR d IN @@collection FILTER d.store_id == @store_id RETURN d",
            {"@collection": INVENTORY, "store_id": store_id},
        )

    async def add_patient_document(
        self, patient_id: str, collection: PatientCollection, document: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Append a document to a patient sub-collection.

        A document ``id`` becomes the Arango ``_key``.
        """
        payload = {k: v for k, v in document.items() if k != "id"}
        payload["patient_id"] = patient_id
        if document.get("id"):
            payload["_key"] = str(document["id"])
        return await asyncio.to_thread(self._insert, collection.value, payload)
