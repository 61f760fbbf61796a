"""
Ingestion orchestration: download, parse, extract and persist log objects.

Objects are processed one at a time and each object's entries in fixed-size
batches. A batch runs in a single transaction; conversation and message
failures are isolated with savepoints, connection-level failures abort and
roll back the whole batch.
"""

import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError

from dealbot_python_backend.config import CONVERSATION_UUID_NAMESPACE, GCS_LOG_PREFIX, INGESTION_BATCH_SIZE
from dealbot_python_backend.models import Conversation, Message
from dealbot_python_backend.parsers.log_content import LogContentParser
from dealbot_python_backend.services.conversation_extractor import ConversationExtractor, ExtractedEntry
from dealbot_python_backend.services.ingestion_store import ConversationStore, fetch_ingestion_stats

logger = logging.getLogger(__name__)

_NAMESPACE = uuid.UUID(CONVERSATION_UUID_NAMESPACE)

# Errors that mean the transaction itself is unusable
BATCH_FATAL_ERRORS = (OperationalError, InterfaceError, DisconnectionError)


@dataclass
class BatchResult:
    batch_id: str
    success: bool = True
    processed_count: int = 0
    failed_count: int = 0
    conversations_created: int = 0
    messages_created: int = 0
    errors: List[str] = field(default_factory=list)
    processing_time_ms: int = 0


@dataclass
class FileProcessingResult:
    file_name: str
    s3_key: str
    success: bool = True
    total_entries: int = 0
    processed_entries: int = 0
    skipped_entries: int = 0
    conversations_created: int = 0
    messages_created: int = 0
    batches: List[BatchResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    processing_time_ms: int = 0

    def add_batch(self, batch: BatchResult) -> None:
        self.batches.append(batch)
        self.processed_entries += batch.processed_count
        self.conversations_created += batch.conversations_created
        self.messages_created += batch.messages_created
        self.errors.extend(batch.errors)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class IngestionResult:
    success: bool = True
    processed_entries: int = 0
    errors: List[str] = field(default_factory=list)
    conversations_created: int = 0
    messages_created: int = 0

    def add_file(self, file_result: FileProcessingResult) -> None:
        self.processed_entries += file_result.processed_entries
        self.conversations_created += file_result.conversations_created
        self.messages_created += file_result.messages_created
        self.errors.extend(file_result.errors)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def conversation_uuid_for(conversation_id: str) -> uuid.UUID:
    """Deterministic row id for a logged conversation identifier."""
    return uuid.uuid5(_NAMESPACE, conversation_id)


def group_by_conversation(entries: Sequence[ExtractedEntry]) -> "OrderedDict[str, List[ExtractedEntry]]":
    groups: "OrderedDict[str, List[ExtractedEntry]]" = OrderedDict()
    for entry in entries:
        groups.setdefault(entry.conversation_id, []).append(entry)
    return groups


def chunk_entries(entries: Sequence[ExtractedEntry], size: int) -> List[List[ExtractedEntry]]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [list(entries[i:i + size]) for i in range(0, len(entries), size)]


def first_satisfaction_score(entries: Sequence[ExtractedEntry]) -> Optional[float]:
    # Group order, not timestamp order
    return next((e.satisfaction_score for e in entries if e.satisfaction_score is not None), None)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class IngestionCoordinator:
    """
    Runs the parse -> extract -> persist pipeline over stored log objects.

    Args:
        session_factory: Callable returning a new ``AsyncSession``
        object_source: Adapter exposing ``list_objects`` and ``download_object``
        batch_size: Entries persisted per transaction
        store_factory: Builds the persistence boundary for a session
    """

    def __init__(
        self,
        session_factory: Callable,
        object_source=None,
        *,
        batch_size: int = INGESTION_BATCH_SIZE,
        store_factory: Callable = ConversationStore,
    ):
        self.session_factory = session_factory
        self.object_source = object_source
        self.batch_size = batch_size
        self.store_factory = store_factory
        self.parser = LogContentParser()
        self.extractor = ConversationExtractor()

    # -- run ---------------------------------------------------------------

    async def ingest_all(self, prefix: Optional[str] = None) -> IngestionResult:
        """Process every object under ``prefix``; one object's failure never stops the run."""
        if prefix is None:
            prefix = GCS_LOG_PREFIX
        logger.info("Starting full log ingestion (prefix=%s)", prefix or "none")
        started = time.perf_counter()
        result = IngestionResult()

        try:
            page_token = None
            while True:
                listing = await self.object_source.list_objects(prefix, page_token=page_token)
                for stored in listing.objects:
                    file_result, error = await self._ingest_one(stored.key)
                    if file_result is not None:
                        result.add_file(file_result)
                    else:
                        result.errors.append(error)

                if not listing.is_truncated or not listing.next_token:
                    break
                page_token = listing.next_token
        except Exception as exc:  # noqa: BLE001
            logger.exception("Ingestion run failed while listing objects")
            result.errors.append(str(exc))
            result.success = False
            return result

        result.success = not result.errors
        logger.info(
            "Ingestion completed in %dms: %d entries, %d conversations, %d messages, %d errors",
            _elapsed_ms(started),
            result.processed_entries,
            result.conversations_created,
            result.messages_created,
            len(result.errors),
        )
        return result

    async def _ingest_one(self, key: str) -> Tuple[Optional[FileProcessingResult], Optional[str]]:
        """Returns the object's result, or None and the error message."""
        try:
            logger.info("Processing file: %s", key)
            file_result = await self.process_object(key)
        except Exception as exc:  # noqa: BLE001
            message = f"Failed to process {key}: {exc}"
            logger.exception(message)
            return None, message

        logger.info("Completed processing %s: %d entries", key, file_result.processed_entries)
        return file_result, None

    # -- object ------------------------------------------------------------

    async def process_object(self, key: str) -> FileProcessingResult:
        """Ingest one stored object. Download and parse failures propagate."""
        started = time.perf_counter()

        content = await self.object_source.download_object(key)
        records = self.parser.parse_content(content)
        entries = self.extractor.extract_entries(records)
        logger.info("Extracted %d entries from %d records in %s", len(entries), len(records), key)

        file_result = FileProcessingResult(
            file_name=key.rsplit("/", 1)[-1] or key,
            s3_key=key,
            total_entries=len(entries),
        )
        batches = chunk_entries(entries, self.batch_size)
        for index, batch in enumerate(batches, start=1):
            logger.info("Processing batch %d/%d with %d entries", index, len(batches), len(batch))
            try:
                batch_result = await self.process_batch(batch, f"{key}_batch_{index}")
            except Exception as exc:  # noqa: BLE001
                message = f"Batch {index} failed: {exc}"
                logger.exception(message)
                file_result.errors.append(message)
                continue
            file_result.add_batch(batch_result)

        file_result.skipped_entries = file_result.total_entries - file_result.processed_entries
        file_result.success = not file_result.errors
        file_result.processing_time_ms = _elapsed_ms(started)
        return file_result

    # -- batch -------------------------------------------------------------

    async def process_batch(self, entries: Sequence[ExtractedEntry], batch_id: str) -> BatchResult:
        """Persist one batch in a single transaction."""
        started = time.perf_counter()
        result = BatchResult(batch_id=batch_id)

        session = self.session_factory()
        store = self.store_factory(session)
        try:
            for conversation_id, group in group_by_conversation(entries).items():
                await self._process_group(store, conversation_id, group, result)
            await session.commit()
        except Exception as exc:  # noqa: BLE001
            await session.rollback()
            logger.error("Batch %s failed, transaction rolled back: %s", batch_id, exc)
            return BatchResult(
                batch_id=batch_id,
                success=False,
                processed_count=0,
                failed_count=len(entries),
                errors=[*result.errors, str(exc)],
                processing_time_ms=_elapsed_ms(started),
            )
        finally:
            await session.close()

        result.failed_count = len(entries) - result.processed_count
        result.success = not result.errors
        result.processing_time_ms = _elapsed_ms(started)
        logger.info(
            "Batch %s committed: %d/%d processed",
            batch_id,
            result.processed_count,
            len(entries),
        )
        return result

    async def _process_group(
        self,
        store,
        conversation_id: str,
        entries: List[ExtractedEntry],
        result: BatchResult,
    ) -> None:
        conversation_uuid = conversation_uuid_for(conversation_id)

        try:
            async with store.savepoint():
                conversation, created = await self._upsert_conversation(store, conversation_uuid, entries)
        except BATCH_FATAL_ERRORS:
            raise
        except Exception as exc:  # noqa: BLE001
            message = f"Failed to process conversation {conversation_id}: {exc}"
            logger.warning(message)
            result.errors.append(message)
            return

        if created:
            result.conversations_created += 1

        for entry in entries:
            try:
                async with store.savepoint():
                    _, message_created = await self._upsert_message(store, conversation_uuid, entry)
            except BATCH_FATAL_ERRORS:
                raise
            except Exception as exc:  # noqa: BLE001
                message = f"Failed to create message for conversation {conversation_id}: {exc}"
                logger.warning(message)
                result.errors.append(message)
                continue

            result.processed_count += 1
            if message_created:
                result.messages_created += 1

        try:
            async with store.savepoint():
                conversation.total_messages = await store.count_messages(conversation_uuid)
                await store.save_conversation(conversation)
        except BATCH_FATAL_ERRORS:
            raise
        except Exception as exc:  # noqa: BLE001
            message = f"Failed to process conversation {conversation_id}: {exc}"
            logger.warning(message)
            result.errors.append(message)

    async def _upsert_conversation(
        self,
        store,
        conversation_uuid: uuid.UUID,
        entries: List[ExtractedEntry],
    ) -> Tuple[Conversation, bool]:
        first, last = entries[0], entries[-1]
        score = first_satisfaction_score(entries)

        conversation = await store.find_conversation(conversation_uuid)
        if conversation is None:
            conversation = Conversation(
                id=conversation_uuid,
                user_id=first.user_id,
                started_at=first.timestamp,
                ended_at=max(last.timestamp, first.timestamp),
                total_messages=len(entries),
                satisfaction_score=score,
            )
            await store.save_conversation(conversation)
            return conversation, True

        existing_count = await store.count_messages(conversation_uuid)
        conversation.total_messages = existing_count + len(entries)
        if conversation.started_at is None or last.timestamp >= conversation.started_at:
            conversation.ended_at = last.timestamp
        if score is not None:
            conversation.satisfaction_score = score
        await store.save_conversation(conversation)
        return conversation, False

    async def _upsert_message(
        self,
        store,
        conversation_uuid: uuid.UUID,
        entry: ExtractedEntry,
    ) -> Tuple[Message, bool]:
        existing = await store.find_message(conversation_uuid, entry.role, entry.content, entry.timestamp)
        if existing is not None:
            return existing, False

        message = Message(
            conversation_id=conversation_uuid,
            role=entry.role,
            content=entry.content,
            timestamp=entry.timestamp,
            response_time_ms=entry.response_time_ms,
            has_results=entry.has_results,
            message_metadata=entry.metadata,
        )
        await store.add_message(message)
        return message, True

    # -- stats -------------------------------------------------------------

    async def get_ingestion_stats(self) -> Dict:
        session = self.session_factory()
        try:
            return await fetch_ingestion_stats(session)
        finally:
            await session.close()
