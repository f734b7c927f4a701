"""
Base models and common mixins.
Provides reusable functionality for all models.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

from context_optimizer.core.utils.datetime_utils import utc_now_testable


class TimestampMixin(BaseModel):
    """
    Mixin for automatic timestamps.
    Adds created_at to any model (UTC, mockable in tests).
    """

    created_at: datetime = Field(
        default_factory=utc_now_testable, description="UTC creation timestamp"
    )


class ContextOptimizerBaseModel(BaseModel):
    """
    Base model for every context optimizer model.
    Common configuration and enhanced validation.
    """

    model_config = ConfigDict(
        # Validate values on assignment
        validate_assignment=True,
        # Use enum values
        use_enum_values=True,
        # Prevent extra fields
        extra="forbid",
        # Better documentation
        json_schema_extra={"additionalProperties": False},
    )


class PartialUpdate(ContextOptimizerBaseModel):
    """
    Explicit partial-update structure.

    Every field of a subclass is Optional and None means "leave unchanged".
    Stores translate set_fields() into a minimal UPDATE and reject an
    update with no field set before touching the database.
    """

    def set_fields(self) -> dict:
        """Fields the caller actually set, excluding explicit None."""
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }

