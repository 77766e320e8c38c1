"""
Declarative field interaction rules for entity forms.

This module lives in the *model* layer (``scm_forms/ui/model``).  It exposes
a small rule engine based on ``SimpleRuleSpec`` so that the form engine can
drive dependent field state without hard-coding if/else logic:

- Rules are stored in lists of ``SimpleRuleSpec`` (``SCD_UI_RULES`` holds the
  School/Class/Division behaviour).
- Adapters implement ``show``, ``hide``, ``enable``, ``disable``,
  ``set_value`` and ``set_options`` for field names.
- ``apply_rules`` executes rules for a given trigger field.
- ``evaluate_all_rules`` runs every trigger against the current values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Protocol
import logging

from scm_forms.util.constants import SCD_CLASS_FIELD, SCD_DIVISION_FIELD, SCD_SCHOOL_FIELD

# Context key injected next to the form values so rule conditions can depend
# on the acting user without seeing the session object.
USER_IS_TEACHER_KEY = "user.is_teacher"


class RuleAdapter(Protocol):
    """Surface a rule needs from whatever owns the fields."""

    def show(self, name: str) -> None: ...

    def hide(self, name: str) -> None: ...

    def enable(self, name: str) -> None: ...

    def disable(self, name: str) -> None: ...

    def set_value(self, name: str, value: Any) -> Any: ...

    def set_options(self, name: str, options: List[Any]) -> None: ...


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def division_locked(values: Mapping[str, Any]) -> bool:
    """Return whether the Division picker must stay non-interactive.

    Non-teachers must pick a School or a Class first, otherwise the Division
    list would be the full unscoped collection.
    """
    if values.get(USER_IS_TEACHER_KEY):
        return False
    return _is_blank(values.get(SCD_SCHOOL_FIELD)) and _is_blank(values.get(SCD_CLASS_FIELD))


# ---------------------------------------------------------------------------
# Simple rule engine
# ---------------------------------------------------------------------------

@dataclass
class SimpleFieldEffect:
    """
    Describe an effect applied to a target field when a rule is triggered.

    Parameters
    ----------
    target_field:
        Name of the form field to affect (e.g. ``"classId"``).
    action:
        One of ``"show"``, ``"hide"``, ``"enable"``, ``"disable"``,
        ``"set_value"``, or ``"set_options"``.
    value:
        Optional static value or callable providing the value for
        ``set_value`` / ``set_options`` actions.
    condition:
        Optional predicate receiving the live value map; the effect is only
        applied when the predicate returns True.
    """

    target_field: str
    action: str
    value: Optional[Any] = None
    condition: Optional[Callable[[Mapping[str, Any]], bool]] = None


@dataclass
class SimpleRuleSpec:
    """
    High level description of a simple field rule.

    Parameters
    ----------
    trigger_field:
        Name of the field whose change should trigger this rule.
    effects:
        List of :class:`SimpleFieldEffect` to apply when the rule fires.
    """

    trigger_field: str
    effects: List[SimpleFieldEffect]


_VALID_ACTIONS = {"show", "hide", "enable", "disable", "set_value", "set_options"}


# ---------------------------------------------------------------------------
# Rule declarations
# ---------------------------------------------------------------------------

def _division_availability_effects() -> List[SimpleFieldEffect]:
    return [
        SimpleFieldEffect(
            target_field=SCD_DIVISION_FIELD,
            action="disable",
            condition=division_locked,
        ),
        SimpleFieldEffect(
            target_field=SCD_DIVISION_FIELD,
            action="enable",
            condition=lambda values: not division_locked(values),
        ),
    ]


SCD_UI_RULES: List[SimpleRuleSpec] = [
    # 1) Picking a School invalidates the dependent Class and Division.
    SimpleRuleSpec(
        trigger_field=SCD_SCHOOL_FIELD,
        effects=[
            SimpleFieldEffect(target_field=SCD_CLASS_FIELD, action="set_value", value=""),
            SimpleFieldEffect(target_field=SCD_DIVISION_FIELD, action="set_value", value=""),
            *_division_availability_effects(),
        ],
    ),
    # 2) Class choice unlocks Division for non-teachers.
    SimpleRuleSpec(
        trigger_field=SCD_CLASS_FIELD,
        effects=_division_availability_effects(),
    ),
]


def apply_rules(
    trigger_field: str,
    values: Mapping[str, Any],
    ui_adapter: RuleAdapter,
    rules: Optional[Iterable[SimpleRuleSpec]] = None,
) -> None:
    """
    Apply all matching simple rules for the given trigger field.

    Parameters
    ----------
    trigger_field:
        Name of the field that changed.
    values:
        Mapping of field names to their current values.  Pass a live view
        (e.g. a ``ChainMap`` over the form state) so conditions evaluated after
        a ``set_value`` effect see the updated value.
    ui_adapter:
        An object implementing ``show``, ``hide``, ``enable``, ``disable``,
        ``set_value`` and ``set_options`` for field names.
    """
    rule_source = rules if rules is not None else SCD_UI_RULES

    for rule in rule_source:
        if rule.trigger_field != trigger_field:
            continue
        for eff in rule.effects:
            if eff.action not in _VALID_ACTIONS:
                logging.warning("Ignoring unknown rule action %s for %s", eff.action, eff.target_field)
                continue
            if eff.condition is not None and not eff.condition(values):
                continue
            if eff.action == "show":
                ui_adapter.show(eff.target_field)
            elif eff.action == "hide":
                ui_adapter.hide(eff.target_field)
            elif eff.action == "enable":
                ui_adapter.enable(eff.target_field)
            elif eff.action == "disable":
                ui_adapter.disable(eff.target_field)
            elif eff.action == "set_value":
                val = eff.value(values) if callable(eff.value) else eff.value
                ui_adapter.set_value(eff.target_field, val)
            elif eff.action == "set_options":
                opts = eff.value(values) if callable(eff.value) else eff.value
                ui_adapter.set_options(eff.target_field, list(opts) if opts is not None else [])


def evaluate_all_rules(
    values: Mapping[str, Any],
    ui_adapter: RuleAdapter,
    trigger_field: str | None = None,
    extra_rule_lists: Optional[List[List[SimpleRuleSpec]]] = None,
    include_scd: bool = True,
) -> None:
    """
    Evaluate rules against *values*.

    When ``trigger_field`` is given only rules for that field run; otherwise
    every distinct trigger is evaluated once, in declaration order.  Extra
    rule lists are applied before the built-in SCD rules.
    """
    combined_rules: List[SimpleRuleSpec] = []
    if extra_rule_lists:
        for lst in extra_rule_lists:
            combined_rules.extend(lst or [])
    if include_scd:
        combined_rules.extend(SCD_UI_RULES)

    if trigger_field:
        apply_rules(trigger_field, values, ui_adapter, rules=combined_rules)
        return

    seen: set[str] = set()
    for rule in combined_rules:
        tf = rule.trigger_field
        if tf in seen:
            continue
        seen.add(tf)
        apply_rules(tf, values, ui_adapter, rules=combined_rules)


def availability_only(rules: Iterable[SimpleRuleSpec]) -> List[SimpleRuleSpec]:
    """Return copies of *rules* without ``set_value`` effects.

    Used for the initial evaluation after a record is loaded, where clearing
    dependent values would wipe the fetched selection.
    """
    trimmed: List[SimpleRuleSpec] = []
    for rule in rules:
        effects = [eff for eff in rule.effects if eff.action != "set_value"]
        if effects:
            trimmed.append(SimpleRuleSpec(trigger_field=rule.trigger_field, effects=effects))
    return trimmed


__all__ = [
    "RuleAdapter",
    "SimpleFieldEffect",
    "SimpleRuleSpec",
    "SCD_UI_RULES",
    "USER_IS_TEACHER_KEY",
    "apply_rules",
    "availability_only",
    "division_locked",
    "evaluate_all_rules",
]
