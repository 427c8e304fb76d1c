"""
Provisioning Rule Matcher for the Lifecycle Engine.

Evaluates declarative provisioning rules (attribute -> expected value conditions)
against an employee profile to decide which integrated applications apply.
All functions here are pure and safe to call concurrently.
"""

import logging
from numbers import Number
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field

from ..models import App, EmployeeProfile, ProvisioningRule

logger = logging.getLogger(__name__)

_MISSING = object()


class AppSelection(BaseModel):
    """Apps with at least one active rule, split by whether the employee matches."""
    matched: List[App] = Field(default_factory=list)
    unmatched: List[App] = Field(default_factory=list)


def _value_kind(value: Any) -> Optional[str]:
    # bool is checked first since it is a subclass of int
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Number):
        return "number"
    return None


def values_equal(expected: Any, actual: Any) -> bool:
    """
    Compare an expected condition value with a resolved profile value.

    Strings compare case-insensitively, booleans only equal booleans and
    numbers compare numerically. Any other kind never matches.
    """
    expected_kind = _value_kind(expected)
    if expected_kind is None or expected_kind != _value_kind(actual):
        return False

    if expected_kind == "string":
        return expected.casefold() == actual.casefold()

    return expected == actual


def resolve_attribute(profile: EmployeeProfile, key: str) -> Any:
    """
    Resolve a condition key against a profile.

    Direct fields are looked up by field name or camelCase alias first; the
    metadata map is consulted when the direct field is absent or unset.
    """
    field_name = _field_name_for(key)
    if field_name is not None:
        value = getattr(profile, field_name)
        if value is not None:
            return value

    return profile.meta.get(key, _MISSING)


def _field_name_for(key: str) -> Optional[str]:
    fields = EmployeeProfile.model_fields
    if key in fields:
        return key
    for name, info in fields.items():
        if info.alias == key:
            return name
    return None


def matches(profile: EmployeeProfile, condition: Mapping[str, Any]) -> bool:
    """
    Check whether a profile satisfies every key of a condition.

    Args:
        profile: Employee profile to evaluate
        condition: Mapping of attribute name to expected value

    Returns:
        True if all keys match (an empty condition always matches)
    """
    for key, expected in condition.items():
        if expected is None:
            continue

        actual = resolve_attribute(profile, key)
        if actual is _MISSING or not values_equal(expected, actual):
            return False

    return True


def has_matching_rule(profile: EmployeeProfile, rules: Iterable[ProvisioningRule]) -> bool:
    """True if any active rule in the list matches the profile."""
    return any(rule.is_active and matches(profile, rule.condition) for rule in rules)


def select_applicable_apps(
    profile: EmployeeProfile, rules: Iterable[ProvisioningRule]
) -> AppSelection:
    """
    Partition the apps that have at least one active rule.

    Args:
        profile: Employee profile to evaluate
        rules: Provisioning rules across all apps

    Returns:
        AppSelection with matched and unmatched apps. Apps without an active
        rule appear in neither list.
    """
    rules_by_app: Dict[str, List[ProvisioningRule]] = {}
    apps: Dict[str, App] = {}

    for rule in rules:
        if not rule.is_active:
            continue
        apps.setdefault(rule.app.id, rule.app)
        rules_by_app.setdefault(rule.app.id, []).append(rule)

    selection = AppSelection()
    for app_id, app in apps.items():
        if has_matching_rule(profile, rules_by_app[app_id]):
            selection.matched.append(app)
        else:
            selection.unmatched.append(app)

    logger.debug(
        f"Rule selection for {profile.employee_id}: "
        f"{len(selection.matched)} matched, {len(selection.unmatched)} unmatched"
    )
    return selection
