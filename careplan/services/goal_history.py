"""
Goal status history recorded on approval, and its per-goal timeline view.

Rows come from the same diff that produces the version's change summary, so
the history and the summary never disagree.
PHI note: goal descriptions are clinical text - NEVER log.
"""
from typing import Iterable, Optional

from careplan.db.models import GoalHistory
from careplan.schemas.plan_content import PlanContent
from careplan.schemas.suggestion import GoalTimeline
from careplan.services.plan_diff import PlanDiff

NEW_GOAL_STATUS = "NEW"
NEW_GOAL_REASON = "New goal added from session analysis"
STATUS_CHANGE_REASON = "Status change approved from session analysis"


def goal_history_rows(
    plan_id: str,
    diff: PlanDiff,
    content: PlanContent,
    changed_by: Optional[str] = None,
    session_id: Optional[str] = None,
    plan_version_id: Optional[str] = None,
) -> list[GoalHistory]:
    """One row per goal status change and one per new goal, in that order."""
    goals = {goal.id: goal for goal in content.clinical_goals}
    rows = []

    for change in diff.goal_status_changes:
        goal = goals.get(change.goal_id)
        rows.append(GoalHistory(
            treatment_plan_id=plan_id,
            plan_version_id=plan_version_id,
            goal_id=change.goal_id,
            goal_description=goal.description if goal else None,
            previous_status=change.previous_status,
            new_status=change.new_status,
            changed_by=changed_by,
            reason=STATUS_CHANGE_REASON,
            session_id=session_id,
        ))

    for goal_id in diff.new_goal_ids:
        goal = goals[goal_id]
        rows.append(GoalHistory(
            treatment_plan_id=plan_id,
            plan_version_id=plan_version_id,
            goal_id=goal_id,
            goal_description=goal.description,
            previous_status=NEW_GOAL_STATUS,
            new_status=goal.status,
            changed_by=changed_by,
            reason=NEW_GOAL_REASON,
            session_id=session_id,
        ))

    return rows


def goal_timeline(entries: Iterable[GoalHistory], current: Optional[PlanContent]) -> list[GoalTimeline]:
    """
    Group history entries by goal, sorted by goal id.

    Description and status come from the current plan when the goal is still
    in it, else from the goal's latest entry. Current goals without history
    are listed with an empty history.
    """
    current_goals = {goal.id: goal for goal in current.clinical_goals} if current else {}

    by_goal: dict[str, list[GoalHistory]] = {}
    for entry in entries:
        by_goal.setdefault(entry.goal_id, []).append(entry)

    timelines = []
    for goal_id, history in by_goal.items():
        goal = current_goals.get(goal_id)
        latest = history[-1]
        timelines.append(GoalTimeline(
            goal_id=goal_id,
            description=(goal.description if goal else None) or latest.goal_description or f"Goal {goal_id}",
            current_status=goal.status if goal else latest.new_status,
            history=[entry.to_view() for entry in history],
        ))

    for goal_id, goal in current_goals.items():
        if goal_id not in by_goal:
            timelines.append(GoalTimeline(goal_id=goal_id, description=goal.description,
                                          current_status=goal.status))

    return sorted(timelines, key=lambda timeline: timeline.goal_id)
