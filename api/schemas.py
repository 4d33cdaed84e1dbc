"""
SLOTENGINE — API Request Schemas

Pydantic models for the JSON bodies accepted by the /api/slot routes.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class SpinRequest(BaseModel):
    bet: float = Field(1.0, ge=0)


class EvaluateRequest(BaseModel):
    grid: list[list[Optional[str]]]
    bet: float = Field(1.0, ge=0)

    @field_validator("grid")
    @classmethod
    def _non_empty(cls, grid):
        if not grid or not any(grid):
            raise ValueError("grid must contain at least one row with cells")
        return grid
