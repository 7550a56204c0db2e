"""
Structured difference between the current plan and a proposed one.

Used for the reviewer-facing diff and for the change summary stored on each
new version. Summaries reference goal ids and statuses only.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from careplan.schemas.plan_content import PlanContent, RiskLevel


class GoalStatusChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    goal_id: str = Field(..., alias="goalId")
    previous_status: str = Field(..., alias="previousStatus")
    new_status: str = Field(..., alias="newStatus")


class PlanDiff(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_initial: bool = Field(default=False, alias="isInitial")
    goal_status_changes: list[GoalStatusChange] = Field(default_factory=list, alias="goalStatusChanges")
    new_goal_ids: list[str] = Field(default_factory=list, alias="newGoalIds")
    removed_goal_ids: list[str] = Field(default_factory=list, alias="removedGoalIds")
    new_interventions: list[str] = Field(default_factory=list, alias="newInterventions")
    homework_changed: bool = Field(default=False, alias="homeworkChanged")
    previous_risk: Optional[RiskLevel] = Field(default=None, alias="previousRisk")
    new_risk: Optional[RiskLevel] = Field(default=None, alias="newRisk")

    @property
    def risk_changed(self) -> bool:
        return self.previous_risk is not None and self.previous_risk != self.new_risk

    @property
    def is_empty(self) -> bool:
        return not (
            self.is_initial
            or self.goal_status_changes
            or self.new_goal_ids
            or self.removed_goal_ids
            or self.new_interventions
            or self.homework_changed
            or self.risk_changed
        )


def diff_plan_content(current: Optional[PlanContent], proposed: PlanContent) -> PlanDiff:
    if current is None:
        return PlanDiff(
            is_initial=True,
            new_goal_ids=[goal.id for goal in proposed.clinical_goals],
            new_interventions=list(proposed.interventions),
            homework_changed=bool(proposed.homework),
            new_risk=proposed.risk_score,
        )

    current_goals = {goal.id: goal for goal in current.clinical_goals}
    proposed_ids = {goal.id for goal in proposed.clinical_goals}

    status_changes = [
        GoalStatusChange(
            goal_id=goal.id,
            previous_status=current_goals[goal.id].status,
            new_status=goal.status,
        )
        for goal in proposed.clinical_goals
        if goal.id in current_goals and current_goals[goal.id].status != goal.status
    ]
    existing_interventions = set(current.interventions)

    return PlanDiff(
        goal_status_changes=status_changes,
        new_goal_ids=[goal.id for goal in proposed.clinical_goals if goal.id not in current_goals],
        removed_goal_ids=[goal_id for goal_id in current_goals if goal_id not in proposed_ids],
        new_interventions=[i for i in proposed.interventions if i not in existing_interventions],
        homework_changed=current.homework != proposed.homework,
        previous_risk=current.risk_score,
        new_risk=proposed.risk_score,
    )


def summarize(diff: PlanDiff) -> str:
    """One-line change summary, e.g. for PlanVersion.change_summary."""
    if diff.is_initial:
        return f"Initial treatment plan created; {len(diff.new_goal_ids)} initial goal(s) established"

    parts = [
        f"Goal {change.goal_id} status: {change.previous_status} → {change.new_status}"
        for change in diff.goal_status_changes
    ]
    if diff.new_goal_ids:
        parts.append(f"Added {len(diff.new_goal_ids)} new goal(s)")
    if diff.removed_goal_ids:
        parts.append(f"Removed {len(diff.removed_goal_ids)} goal(s)")
    if diff.new_interventions:
        parts.append(f"Added {len(diff.new_interventions)} new intervention(s)")
    if diff.homework_changed:
        parts.append("Updated homework assignment")
    if diff.risk_changed:
        parts.append(f"Risk level: {diff.previous_risk.value} → {diff.new_risk.value}")

    return "; ".join(parts) if parts else "No changes applied"
