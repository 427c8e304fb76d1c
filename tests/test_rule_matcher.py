"""
Tests for the provisioning rule matcher.
"""

import pytest

from lifecycle_engine.engine.rule_matcher import (
    has_matching_rule,
    matches,
    resolve_attribute,
    select_applicable_apps,
    values_equal,
)
from lifecycle_engine.models import App, EmployeeProfile, ProvisioningRule

from .conftest import GITHUB_APP, GOOGLE_APP, SLACK_APP


class TestMatches:
    """Condition evaluation against a single profile."""

    def test_department_match_is_case_insensitive(self):
        """A rule on Engineering matches a profile in engineering."""
        profile = EmployeeProfile(employee_id="E1", full_name="Test User", department="engineering")
        assert matches(profile, {"department": "Engineering"})

    def test_empty_condition_matches_everything(self, engineer, new_hire):
        assert matches(engineer, {})
        assert matches(new_hire, {})

    def test_all_keys_must_match(self, engineer):
        assert matches(engineer, {"department": "Engineering", "employment_type": "full_time"})
        assert not matches(engineer, {"department": "Engineering", "employment_type": "CONTRACT"})

    def test_camel_case_alias_resolves_direct_field(self, engineer):
        assert matches(engineer, {"jobTitle": "staff engineer"})
        assert matches(engineer, {"employmentType": "FULL_TIME"})

    def test_falls_back_to_meta(self, engineer):
        assert matches(engineer, {"cost_center": "r&d"})

    def test_unset_direct_field_falls_back_to_meta(self):
        profile = EmployeeProfile(
            employee_id="E1", full_name="Test User", location=None, meta={"location": "Berlin"}
        )
        assert matches(profile, {"location": "berlin"})

    def test_missing_attribute_never_matches(self, new_hire):
        assert not matches(new_hire, {"location": "Berlin"})
        assert not matches(new_hire, {"unknown_key": "x"})

    def test_none_expected_value_places_no_constraint(self, new_hire):
        assert matches(new_hire, {"location": None, "department": "Engineering"})

    def test_numbers_compare_numerically(self, engineer):
        assert matches(engineer, {"level": 5})
        assert matches(engineer, {"level": 5.0})
        assert not matches(engineer, {"level": 4})

    def test_booleans_only_equal_booleans(self, engineer):
        assert matches(engineer, {"remote": True})
        assert not matches(engineer, {"remote": 1})
        assert not matches(engineer, {"level": True})

    def test_string_never_equals_number(self, engineer):
        assert not matches(engineer, {"level": "5"})


class TestValuesEqual:
    """Tagged comparison over strings, numbers and booleans."""

    @pytest.mark.parametrize("expected,actual,result", [
        ("Sales", "SALES", True),
        ("Sales", "Marketing", False),
        (3, 3.0, True),
        (True, True, True),
        (False, 0, False),
        (1, True, False),
        ("a", None, False),
        ("a", ["a"], False),
    ])
    def test_values_equal(self, expected, actual, result):
        assert values_equal(expected, actual) is result


class TestResolveAttribute:
    """Field lookup order."""

    def test_direct_field_wins_over_meta(self):
        profile = EmployeeProfile(
            employee_id="E1", full_name="Test User", department="Sales", meta={"department": "Ops"}
        )
        assert resolve_attribute(profile, "department") == "Sales"


class TestSelectApplicableApps:
    """Partitioning apps into matched and unmatched."""

    def test_partitions_apps_with_active_rules(self, engineer, new_hire, rules):
        selection = select_applicable_apps(engineer, rules)
        assert selection.matched == [SLACK_APP, GITHUB_APP]
        assert selection.unmatched == []

        selection = select_applicable_apps(new_hire, rules)
        assert selection.matched == [GITHUB_APP]
        assert selection.unmatched == [SLACK_APP]

    def test_apps_without_active_rules_are_excluded(self, engineer):
        rules = [
            ProvisioningRule(id="r1", app=GOOGLE_APP, condition={}, is_active=False),
            ProvisioningRule(id="r2", app=SLACK_APP, condition={"department": "Sales"}),
        ]
        selection = select_applicable_apps(engineer, rules)
        assert selection.matched == []
        assert selection.unmatched == [SLACK_APP]

    def test_any_active_rule_matching_selects_the_app(self, engineer):
        rules = [
            ProvisioningRule(id="r1", app=SLACK_APP, condition={"department": "Sales"}),
            ProvisioningRule(id="r2", app=SLACK_APP, condition={"department": "Engineering"}),
        ]
        assert select_applicable_apps(engineer, rules).matched == [SLACK_APP]

    def test_inactive_rule_does_not_select_the_app(self, engineer):
        rules = [
            ProvisioningRule(id="r1", app=SLACK_APP, condition={"department": "Sales"}),
            ProvisioningRule(id="r2", app=SLACK_APP, condition={}, is_active=False),
        ]
        assert select_applicable_apps(engineer, rules).unmatched == [SLACK_APP]

    @pytest.mark.parametrize("department", ["Engineering", "Sales", None])
    def test_matched_and_unmatched_are_disjoint_and_complete(self, department):
        apps = [App(id=f"app{i}", name=f"App {i}", type="CUSTOM") for i in range(4)]
        rules = [
            ProvisioningRule(id="r0", app=apps[0], condition={"department": "Engineering"}),
            ProvisioningRule(id="r1", app=apps[1], condition={"department": "Sales"}),
            ProvisioningRule(id="r2", app=apps[2], condition={}),
            ProvisioningRule(id="r3", app=apps[3], condition={}, is_active=False),
        ]
        profile = EmployeeProfile(employee_id="E1", full_name="Test User", department=department)

        selection = select_applicable_apps(profile, rules)

        matched = {app.id for app in selection.matched}
        unmatched = {app.id for app in selection.unmatched}
        assert matched.isdisjoint(unmatched)
        assert matched | unmatched == {"app0", "app1", "app2"}


class TestHasMatchingRule:

    def test_empty_rule_list(self, engineer):
        assert not has_matching_rule(engineer, [])

    def test_matching_rule(self, engineer, rules):
        assert has_matching_rule(engineer, rules)
