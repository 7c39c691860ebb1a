"""
Uncertainty Policy

Which way to lean when a verdict cannot actually be computed. The defaults
are asymmetric:

- unknown relevance criteria pass (fail-open)
- LLM and validation errors follow the configured default action,
  ``suppress`` unless configured otherwise (fail-closed)
- the scheduler's quick check treats its own errors as "still relevant"
- a missing interaction history fails ``lastInteractionAge``

One instance is shared by the rule engine, the LLM bridge and the
validator.
"""

from dataclasses import dataclass
from enum import Enum


class UncertaintyAction(str, Enum):
    """Default action when relevance cannot be determined."""
    SUPPRESS = "suppress"
    PROCEED = "proceed"


@dataclass(frozen=True)
class UncertaintyPolicy:
    """Fail-open / fail-closed defaults for the relevance pipeline."""
    pass_unknown_criteria: bool = True
    on_uncertainty: UncertaintyAction = UncertaintyAction.SUPPRESS
    pass_missing_interaction_history: bool = False
    relevant_on_quick_check_error: bool = True

    @property
    def relevant_when_uncertain(self) -> bool:
        """Verdict used for validation, parse and transport errors."""
        return self.on_uncertainty != UncertaintyAction.SUPPRESS

    @classmethod
    def from_config(cls, config) -> "UncertaintyPolicy":
        """Build the policy from a RelevanceConfig."""
        return cls(
            pass_unknown_criteria=config.pass_unknown_criteria,
            on_uncertainty=UncertaintyAction(config.default_action_on_uncertainty),
            pass_missing_interaction_history=config.pass_missing_interaction_history,
            relevant_on_quick_check_error=config.relevant_on_quick_check_error
        )
