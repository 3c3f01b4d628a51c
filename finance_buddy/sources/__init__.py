"""
Record sources and blob storage
"""

from finance_buddy.sources.base import RecordKind, RecordSource, BlobStorage
from finance_buddy.sources.models import Expense, Goal, UserProfile, FileUpload, TEXT_BASED_TYPES
from finance_buddy.sources.static_source import StaticRecordSource, LocalBlobStorage

__all__ = [
    'RecordKind',
    'RecordSource',
    'BlobStorage',
    'Expense',
    'Goal',
    'UserProfile',
    'FileUpload',
    'TEXT_BASED_TYPES',
    'StaticRecordSource',
    'LocalBlobStorage'
]
