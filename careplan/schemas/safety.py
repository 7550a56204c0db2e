"""Safety check result attached to every analysis."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from careplan.schemas.plan_content import RiskLevel


class SafetyCheckResult(BaseModel):
    """Risk assessment gating whether generation may proceed."""
    model_config = ConfigDict(populate_by_name=True)

    safe_to_generate: bool = Field(..., alias="safeToGenerate")
    risk_level: RiskLevel = Field(..., alias="riskLevel")
    risk_flags: list[str] = Field(default_factory=list, alias="riskFlags")
    reasoning: Optional[str] = Field(default=None)

    @classmethod
    def blocked(cls, flags: list[str], reasoning: str) -> "SafetyCheckResult":
        return cls(
            safe_to_generate=False,
            risk_level=RiskLevel.HIGH,
            risk_flags=flags,
            reasoning=reasoning,
        )
