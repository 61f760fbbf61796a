"""Shared environment configuration constants for the Deal Bot analytics backend."""
import os

# --- Database ---
DATABASE_URL = os.getenv("DATABASE_URL")

# --- Object storage ---
GCS_BUCKET_NAME = os.getenv("GCS_BUCKET_NAME")
GCS_LOG_PREFIX = os.getenv("GCS_LOG_PREFIX")
LOCAL_LOG_DIR = os.getenv("LOCAL_LOG_DIR", "./logs")
OBJECT_SOURCE_BACKEND = os.getenv("OBJECT_SOURCE_BACKEND", "auto")

# --- Ingestion ---
INGESTION_BATCH_SIZE = int(os.getenv("INGESTION_BATCH_SIZE", "1000"))
LIST_PAGE_SIZE = int(os.getenv("LIST_PAGE_SIZE", "1000"))

# Metadata "context" value emitted by the deal bot service itself
DEALBOT_CONTEXT = os.getenv("DEALBOT_CONTEXT", "DealBotService")

# Fixed namespace for deterministic conversation ids (RFC 4122 DNS namespace)
CONVERSATION_UUID_NAMESPACE = "6ba7b810-9dad-11d1-80b4-00c04fd430c8"
