"""Services for the Deal Bot analytics backend."""

from .conversation_extractor import ConversationExtractor, ExtractedEntry
from .ingestion_coordinator import IngestionCoordinator

__all__ = [
    'ConversationExtractor',
    'ExtractedEntry',
    'IngestionCoordinator',
]
