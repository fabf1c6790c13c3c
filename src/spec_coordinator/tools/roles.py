"""Lead/validator role assignment.

Every change to the live assignment goes through :class:`RoleAssignment`,
whose constructor enforces that the lead never validates and that at least
one validator remains.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from spec_coordinator.domain.models import Session, ToolName
from spec_coordinator.errors import RoleAssignmentError
from spec_coordinator.tools.definitions import LEAD_PRIORITY

MIN_TOOLS = 2


@dataclass(frozen=True, slots=True)
class RoleAssignment:
    lead: ToolName
    validators: tuple[ToolName, ...]

    def __post_init__(self) -> None:
        if not self.validators:
            raise RoleAssignmentError("At least 1 validator required")
        if self.lead in self.validators:
            raise RoleAssignmentError(
                f"Lead tool {self.lead.value} cannot also be a validator"
            )
        if len(set(self.validators)) != len(self.validators):
            raise RoleAssignmentError("Validator list contains duplicates")

    def with_lead(self, new_lead: ToolName, available: Sequence[ToolName]) -> RoleAssignment:
        """Promote ``new_lead``; validators keep their order minus the new lead.

        When that leaves nobody to validate, every other available tool takes
        the role, which may include the previous lead.
        """
        if new_lead not in available:
            raise RoleAssignmentError(f"Lead tool not available: {new_lead.value}")
        validators = tuple(tool for tool in self.validators if tool != new_lead)
        if not validators:
            validators = tuple(tool for tool in available if tool != new_lead)
        return RoleAssignment(lead=new_lead, validators=validators)

    def apply_to(self, session: Session) -> None:
        session.apply_roles(self.lead, self.validators)


def assign_roles(
    available: Sequence[ToolName],
    lead: ToolName | None = None,
    validators: Sequence[ToolName] | None = None,
) -> RoleAssignment:
    """Pick the lead and validators for a new session."""

    unique_available = list(dict.fromkeys(available))
    if len(unique_available) < MIN_TOOLS:
        raise RoleAssignmentError("At least 2 AI tools required")

    if lead is not None and lead not in unique_available:
        raise RoleAssignmentError(f"Lead tool not available: {lead.value}")
    if validators is not None:
        for validator in validators:
            if validator not in unique_available:
                raise RoleAssignmentError(f"Validator tool not available: {validator.value}")

    chosen_lead = lead
    if chosen_lead is None:
        chosen_lead = next((tool for tool in LEAD_PRIORITY if tool in unique_available), None)
    if chosen_lead is None:
        raise RoleAssignmentError("No lead tool available")

    candidates = unique_available if validators is None else list(dict.fromkeys(validators))
    return RoleAssignment(
        lead=chosen_lead,
        validators=tuple(tool for tool in candidates if tool != chosen_lead),
    )


def normalize_resumed_roles(
    session: Session, available: Sequence[ToolName]
) -> tuple[RoleAssignment, bool]:
    """Re-check a resumed session's roles against the tools installed now.

    Returns the (possibly repaired) assignment and whether it changed.
    """

    unique_available = list(dict.fromkeys(available))
    if len(unique_available) < MIN_TOOLS:
        raise RoleAssignmentError("At least 2 AI tools required")

    lead = session.lead if session.lead in unique_available else unique_available[0]
    validators = tuple(
        tool for tool in session.validators if tool != lead and tool in unique_available
    )
    if not validators:
        validators = tuple(tool for tool in unique_available if tool != lead)

    assignment = RoleAssignment(lead=lead, validators=validators)
    changed = assignment.lead != session.lead or list(assignment.validators) != session.validators
    return assignment, changed


__all__ = ["MIN_TOOLS", "RoleAssignment", "assign_roles", "normalize_resumed_roles"]
