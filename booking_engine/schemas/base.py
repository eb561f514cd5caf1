"""
Base schemas with standardized field types for consistent API responses.
"""

from pydantic import BaseModel, ConfigDict


class StandardizedModel(BaseModel):
    """Base model for responses built from ORM rows."""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)
