"""
Success/failure values returned by the workflow instead of raising.

    result = await workflow.create_suggestion(db, session_id, uid)
    if isinstance(result, Err):
        ...  # result.error is a PlanWorkflowError
    else:
        created = result.value
"""
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from careplan.services.exceptions import PlanWorkflowError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: PlanWorkflowError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
