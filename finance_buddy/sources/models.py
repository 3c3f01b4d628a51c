"""
Record Models - External Record Schemas

Pydantic models for the records pulled from the user's document store.
Field aliases follow the stored (camelCase) keys.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from finance_buddy.errors import RecordParseError


TEXT_BASED_TYPES = (
    "text/plain",
    "text/csv",
    "application/json",
    "application/xml",
    "text/html"
)


class RecordModel(BaseModel):
    """Base for external records; unknown keys are ignored"""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """
        Parse a stored record.

        Raises:
            RecordParseError: missing or invalid fields
        """
        if not isinstance(data, dict):
            raise RecordParseError(f"{cls.__name__} record must be a mapping, got {type(data).__name__}")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err['loc']) for err in e.errors())
            raise RecordParseError(f"Invalid {cls.__name__} record ({fields}): {e.error_count()} errors") from e

    def summary(self) -> str:
        raise NotImplementedError


# ============================================
# EXPENSES / GOALS
# ============================================

class Expense(RecordModel):
    id: str
    amount: float
    category: str
    merchant: str
    description: str = ""
    date: Optional[datetime] = None
    is_recurring: bool = Field(False, alias="isRecurring")

    def summary(self) -> str:
        text = f"Expense: {self.category} — ${self.amount:.2f} at {self.merchant}."
        if self.description.strip():
            text = f"{text} {self.description.strip()}"
        return text


class Goal(RecordModel):
    id: str
    name: str
    target_amount: float = Field(alias="targetAmount")
    current_amount: float = Field(alias="currentAmount")
    deadline: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.current_amount >= self.target_amount

    def summary(self) -> str:
        return (
            f"Goal: {self.name}. Target: {self.target_amount:.2f}. "
            f"Current: {self.current_amount:.2f}."
        )


# ============================================
# PROFILE
# ============================================

class UserProfile(RecordModel):
    name: str
    email: str
    total_points: int = Field(alias="totalPoints")
    currency: str

    def summary(self) -> str:
        return (
            f"User profile: {self.name}. Email: {self.email}. "
            f"Total points: {self.total_points}. Currency: {self.currency}."
        )


# ============================================
# UPLOADS
# ============================================

class FileUpload(RecordModel):
    id: str
    file_name: str = Field(alias="fileName")
    file_type: str = Field(alias="fileType")
    file_size: int = Field(alias="fileSize", ge=0)
    uploaded_at: datetime = Field(alias="uploadedAt")
    storage_path: str = Field(alias="storagePath")
    user_id: Optional[str] = Field(None, alias="userId")

    @property
    def formatted_size(self) -> str:
        """Human-readable size, decimal units (e.g. "2.5 MB")"""
        if self.file_size < 1000:
            return f"{self.file_size} B"
        if self.file_size < 1000 * 1000:
            return f"{self.file_size / 1000:.1f} KB"
        return f"{self.file_size / (1000 * 1000):.1f} MB"

    @property
    def is_text_based(self) -> bool:
        return self.file_type.lower() in TEXT_BASED_TYPES

    def summary(self) -> str:
        return (
            f"Uploaded file: {self.file_name}. Type: {self.file_type}. "
            f"Size: {self.formatted_size}. Uploaded: {self.uploaded_at:%Y-%m-%d %H:%M}"
        )
