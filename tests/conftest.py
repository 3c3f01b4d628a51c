"""
Shared fixtures.

Log files go to a temporary directory; embeddings come from a deterministic
hashed word-vector table instead of a downloaded model.
"""

import hashlib
import os
import tempfile

os.environ.setdefault("FINANCE_BUDDY_LOG_DIR", tempfile.mkdtemp(prefix="finance_buddy_logs_"))

import numpy as np
import pytest

from finance_buddy.embeddings.word_vectors import WordVectorEmbeddingsProvider, tokenize
from finance_buddy.rag.engine import RAGEngine
from finance_buddy.rag.memory_store import InMemoryVectorStore
from finance_buddy.rag.sqlite_store import SQLiteVectorStore
from finance_buddy.sources.static_source import LocalBlobStorage, StaticRecordSource


DIMENSION = 1024

CORPUS = [
    "hello world",
    "Goal: Emergency Fund. Target: 1000.00. Current: 200.00.",
    "Expense: Food — 45.00 at Trader Joe's.",
    "User profile: Alex. Email: a@x.com.",
    "Expense: Bills — $1200.00 at Landlord. monthly rent",
    "weekly groceries vacation savings car loan insurance",
    "Uploaded file: budget.txt. Type: text/plain. Size: 2.0 KB.",
    "From budget.txt: My budget plan keeps groceries under 400 dollars and saves 300 dollars for the vacation.",
    "Transport Metro Sam USD points currency",
    "How is my emergency fund doing",
    "what did I spend on food",
    "The monthly grocery budget was reviewed and adjusted for inflation",
]


def hashed_vector(word: str, dimension: int = DIMENSION) -> np.ndarray:
    """Pseudo-random but reproducible vector for a word"""
    seed = int.from_bytes(hashlib.sha256(word.encode('utf-8')).digest()[:8], 'little')
    return np.random.default_rng(seed).standard_normal(dimension).astype(np.float32)


@pytest.fixture(scope="session")
def word_table():
    words = sorted({w for line in CORPUS for w in tokenize(line)})
    return {w: hashed_vector(w) for w in words}


@pytest.fixture
def embedder(word_table):
    return WordVectorEmbeddingsProvider(vectors=word_table)


@pytest.fixture
def temp_db():
    """Path to a throwaway index database"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, "test_index.db")


@pytest.fixture
def sqlite_store(temp_db):
    store = SQLiteVectorStore(temp_db)
    yield store
    store.close()


@pytest.fixture
def memory_store():
    store = InMemoryVectorStore()
    yield store
    store.close()


@pytest.fixture
def engine(embedder, sqlite_store):
    return RAGEngine(embedder, sqlite_store)


@pytest.fixture
def records():
    """Record export for two tenants"""
    return {
        "users": {
            "u1": {
                "expenses": [
                    {"id": "e1", "amount": 45.0, "category": "Food",
                     "merchant": "Trader Joe's", "description": "weekly groceries"},
                    {"id": "e2", "amount": 1200, "category": "Bills",
                     "merchant": "Landlord", "description": "monthly rent"},
                ],
                "goals": [
                    {"id": "g1", "name": "Emergency Fund", "targetAmount": 1000, "currentAmount": 200},
                ],
                "profile": {
                    "name": "Alex", "email": "a@x.com", "totalPoints": 120, "currency": "USD"
                },
                "uploads": [
                    {"id": "f1", "fileName": "budget.txt", "fileType": "text/plain",
                     "fileSize": 2048, "uploadedAt": "2025-10-29T14:30:00",
                     "storagePath": "users/u1/uploads/f1"},
                    {"id": "f2", "fileName": "receipt.pdf", "fileType": "application/pdf",
                     "fileSize": 5242880, "uploadedAt": "2025-10-30T09:00:00",
                     "storagePath": "users/u1/uploads/f2"},
                ],
            },
            "u2": {
                "expenses": [
                    {"id": "e9", "amount": 9.5, "category": "Transport",
                     "merchant": "Metro", "description": ""},
                ],
                "goals": [],
                "profile": {
                    "name": "Sam", "email": "s@x.com", "totalPoints": 5, "currency": "USD"
                },
                "uploads": [],
            },
        }
    }


@pytest.fixture
def record_source(records):
    return StaticRecordSource(records)


@pytest.fixture
def blob_root(tmp_path):
    upload = tmp_path / "users" / "u1" / "uploads" / "f1"
    upload.parent.mkdir(parents=True)
    upload.write_text(
        "My budget plan keeps groceries under 400 dollars and saves 300 dollars for the vacation.",
        encoding='utf-8'
    )
    return tmp_path


@pytest.fixture
def blob_storage(blob_root):
    return LocalBlobStorage(str(blob_root))
