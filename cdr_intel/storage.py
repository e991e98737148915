"""
Record stores for ingestion batches, their CDR records and cached analysis results.

``MemoryStore`` keeps everything in per-instance dictionaries; ``MongoStore``
persists to the ``file_uploads``, ``cdr_records`` and ``analysis_results``
collections through motor.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from cdr_intel import config
from cdr_intel.database import get_database
from cdr_intel.models import AnalysisType, CDRRecord, FileUpload

logger = logging.getLogger(__name__)


def assemble_analysis(results: Dict[str, object]) -> Optional[Dict]:
    """Complete analysis document from cached results, None if nothing is cached"""
    if not results:
        return None

    analysis = {}
    for analysis_type in AnalysisType:
        default = {} if analysis_type == AnalysisType.FILE_STATS else []
        analysis[analysis_type.value] = results.get(analysis_type.value) or default

    file_stats = analysis[AnalysisType.FILE_STATS.value]
    analysis["totalCalls"] = file_stats.get("totalCalls", 0)
    analysis["totalSms"] = file_stats.get("totalSms", 0)
    analysis["totalDuration"] = file_stats.get("totalDuration", 0)
    analysis["uniqueNumbers"] = file_stats.get("uniqueNumbers", 0)
    return analysis


def _analysis_key(analysis_type) -> str:
    return AnalysisType(analysis_type).value


class BaseStore(ABC):
    """Async store interface used by the ingestion pipeline"""

    @abstractmethod
    async def create_batch(self, filename: str, original_name: Optional[str] = None) -> str:
        ...

    @abstractmethod
    async def update_batch(self, batch_id: str, **fields) -> Optional[FileUpload]:
        ...

    @abstractmethod
    async def get_batch(self, batch_id: str) -> Optional[FileUpload]:
        ...

    @abstractmethod
    async def append_records(self, batch_id: str, records: List[CDRRecord]) -> int:
        ...

    @abstractmethod
    async def get_records(self, batch_id: str) -> List[CDRRecord]:
        ...

    @abstractmethod
    async def put_result(self, batch_id: str, analysis_type, result) -> None:
        ...

    @abstractmethod
    async def get_result(self, batch_id: str, analysis_type):
        ...

    @abstractmethod
    async def get_complete_analysis(self, batch_id: str) -> Optional[Dict]:
        ...

    @abstractmethod
    async def get_all_records(self) -> List[CDRRecord]:
        ...


class MemoryStore(BaseStore):
    """In-process store; each instance owns its batches"""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._uploads: Dict[str, FileUpload] = {}
        self._records: Dict[str, List[CDRRecord]] = {}
        self._results: Dict[str, Dict[str, object]] = {}

    async def create_batch(self, filename: str, original_name: Optional[str] = None) -> str:
        batch_id = str(uuid.uuid4())
        async with self._lock:
            self._uploads[batch_id] = FileUpload(
                id=batch_id,
                filename=filename,
                original_name=original_name or filename,
            )
            self._records[batch_id] = []
            self._results[batch_id] = {}
        return batch_id

    async def update_batch(self, batch_id: str, **fields) -> Optional[FileUpload]:
        async with self._lock:
            upload = self._uploads.get(batch_id)
            if upload is None:
                return None
            updated = FileUpload(**{**upload.model_dump(), **fields})
            self._uploads[batch_id] = updated
            return updated

    async def get_batch(self, batch_id: str) -> Optional[FileUpload]:
        return self._uploads.get(batch_id)

    async def append_records(self, batch_id: str, records: List[CDRRecord]) -> int:
        async with self._lock:
            if batch_id not in self._uploads:
                raise KeyError(f"Unknown batch: {batch_id}")
            self._records[batch_id].extend(records)
        return len(records)

    async def get_records(self, batch_id: str) -> List[CDRRecord]:
        return list(self._records.get(batch_id, []))

    async def put_result(self, batch_id: str, analysis_type, result) -> None:
        async with self._lock:
            self._results.setdefault(batch_id, {})[_analysis_key(analysis_type)] = result

    async def get_result(self, batch_id: str, analysis_type):
        return self._results.get(batch_id, {}).get(_analysis_key(analysis_type))

    async def get_complete_analysis(self, batch_id: str) -> Optional[Dict]:
        return assemble_analysis(self._results.get(batch_id, {}))

    async def get_all_records(self) -> List[CDRRecord]:
        return [record for records in self._records.values() for record in records]


class MongoStore(BaseStore):
    """MongoDB-backed store; results are upserted so they behave as a cache.

    BSON dates hold milliseconds, the precision the record parser already
    truncates timestamps to.
    """

    def __init__(self, db=None):
        self._db = db

    async def _database(self):
        if self._db is None:
            self._db = await get_database()
        return self._db

    async def create_batch(self, filename: str, original_name: Optional[str] = None) -> str:
        db = await self._database()
        upload = FileUpload(id=str(uuid.uuid4()), filename=filename, original_name=original_name or filename)
        await db.file_uploads.insert_one(upload.model_dump())
        return upload.id

    async def update_batch(self, batch_id: str, **fields) -> Optional[FileUpload]:
        db = await self._database()
        await db.file_uploads.update_one({"id": batch_id}, {"$set": fields})
        return await self.get_batch(batch_id)

    async def get_batch(self, batch_id: str) -> Optional[FileUpload]:
        db = await self._database()
        doc = await db.file_uploads.find_one({"id": batch_id}, {"_id": 0})
        return FileUpload(**doc) if doc else None

    async def append_records(self, batch_id: str, records: List[CDRRecord]) -> int:
        if not records:
            return 0
        db = await self._database()
        docs = [{**record.model_dump(), "upload_id": batch_id} for record in records]
        result = await db.cdr_records.insert_many(docs)
        logger.info(f"Inserted {len(result.inserted_ids)} records for batch {batch_id}")
        return len(result.inserted_ids)

    async def get_records(self, batch_id: str) -> List[CDRRecord]:
        db = await self._database()
        cursor = db.cdr_records.find({"upload_id": batch_id}, {"_id": 0}).sort("_id", 1)
        return [CDRRecord(**doc) async for doc in cursor]

    async def put_result(self, batch_id: str, analysis_type, result) -> None:
        db = await self._database()
        key = _analysis_key(analysis_type)
        await db.analysis_results.update_one(
            {"upload_id": batch_id, "analysis_type": key},
            {"$set": {"upload_id": batch_id, "analysis_type": key, "results": result}},
            upsert=True,
        )

    async def get_result(self, batch_id: str, analysis_type):
        db = await self._database()
        doc = await db.analysis_results.find_one(
            {"upload_id": batch_id, "analysis_type": _analysis_key(analysis_type)}, {"_id": 0}
        )
        return doc["results"] if doc else None

    async def get_complete_analysis(self, batch_id: str) -> Optional[Dict]:
        db = await self._database()
        cursor = db.analysis_results.find({"upload_id": batch_id}, {"_id": 0})
        results = {doc["analysis_type"]: doc["results"] async for doc in cursor}
        return assemble_analysis(results)

    async def get_all_records(self) -> List[CDRRecord]:
        db = await self._database()
        return [CDRRecord(**doc) async for doc in db.cdr_records.find({}, {"_id": 0})]


def create_store(kind: Optional[str] = None) -> BaseStore:
    """Store selected by name ("memory" or "mongo"), defaulting to CDR_STORE"""
    kind = (kind or config.CDR_STORE).lower()
    if kind == "memory":
        return MemoryStore()
    if kind == "mongo":
        return MongoStore()
    raise ValueError(f"Unknown store: {kind}")
