"""Plant Maintenance — AI Recommendation Schemas.

Request and response models for the predictive maintenance
recommendation form. The response keys match the camelCase JSON the
model is instructed to return.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RecommendationRequest(BaseModel):
    """Analysis request.

    When machine_id is given and a text field is left empty, the text is
    rendered from the breakdown log and PM schedule of that machine.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    machine_history: str = Field("", max_length=20000)
    pm_schedule: str = Field("", max_length=20000)
    cost_per_hour_downtime: float = Field(..., ge=1, description="Cost of downtime per hour")
    machine_id: Optional[str] = Field(None, max_length=50)


class RecommendationResult(BaseModel):
    """Free-text report sections returned by the model."""
    model_config = ConfigDict(populate_by_name=True)

    predicted_failures: str = Field(..., alias="predictedFailures")
    recommended_actions: str = Field(..., alias="recommendedActions")
    potential_cost_savings: str = Field(..., alias="potentialCostSavings")
