"""Library-wide default values."""

DEFAULT_BATCH_CONCURRENCY = 8
DEFAULT_STREAM_BUFFER_SIZE = 4
DEFAULT_RETRIEVAL_K = 10
RRF_K = 60

# Chunking
DEFAULT_CHUNK_MAX_TOKENS = 256
DEFAULT_CHUNK_OVERLAP_PCT = 0.1

# Context formatting
CONTEXT_SNIPPET_CHARS = 1200
