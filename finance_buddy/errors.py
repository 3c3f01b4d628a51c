"""
Error taxonomy for the RAG core.

Construction errors are raised at startup, ingestion errors are batch-fatal
in the engine and record-local in the service, decode errors are always loud.
"""


class RAGError(Exception):
    """Base class for all RAG core errors"""


class EmbeddingModelLoadError(RAGError):
    """The embedding model or table could not be loaded"""


class EmbeddingError(RAGError):
    """A text could not be embedded"""


class VectorStoreError(RAGError):
    """The vector store could not be opened or written"""


class IndexFormatError(VectorStoreError):
    """The persisted index uses an unsupported embedding format"""


class VectorDecodeError(RAGError):
    """A stored embedding or metadata map could not be decoded"""


class RecordError(RAGError):
    """An external record could not be turned into a document"""


class RecordParseError(RecordError):
    """An external record is missing fields or has invalid values"""


class BlobError(RecordError):
    """Uploaded file content could not be fetched"""


class BlobNotFoundError(BlobError):
    pass


class BlobTooLargeError(BlobError):
    pass


class NotAuthenticatedError(RAGError):
    """No user identity is available for a 'current user' call"""


class GenerationError(RAGError):
    """The answer generator is not configured or its backend failed"""
