"""Unit tests for auditguard/audit/classifier.py.

The classifier is pure — no I/O, no fixtures beyond a default instance.
"""

import pytest

from auditguard.audit.classifier import (
    EndpointRule,
    EventClassifier,
    compile_endpoint_pattern,
    is_bulk_operation,
    is_data_export,
    is_sensitive_operation,
)
from auditguard.models.taxonomy import DataSensitivity, EventType, RiskLevel


@pytest.fixture
def classifier() -> EventClassifier:
    return EventClassifier()


# ---------------------------------------------------------------------------
# Endpoint table
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_successful_login_matches_exact_entry(classifier):
    result = classifier.classify("POST", "/api/v1/auth/login", 200)
    assert result.event_type is EventType.AUTH_LOGIN_SUCCESS
    assert result.risk_level is RiskLevel.MEDIUM
    assert result.data_sensitivity is DataSensitivity.CONFIDENTIAL


@pytest.mark.unit
def test_failed_login_is_classified_as_failed_with_high_risk(classifier):
    result = classifier.classify("POST", "/api/v1/auth/login", 401)
    assert result.event_type is EventType.AUTH_LOGIN_FAILED
    assert result.risk_level is RiskLevel.HIGH


@pytest.mark.unit
def test_any_failed_auth_call_is_a_failed_login(classifier):
    result = classifier.classify("POST", "/api/v1/auth/signup", 400)
    assert result.event_type is EventType.AUTH_LOGIN_FAILED


@pytest.mark.unit
def test_password_reset_success(classifier):
    result = classifier.classify("POST", "/api/v1/auth/reset-password", 200)
    assert result.event_type is EventType.AUTH_PASSWORD_RESET_SUCCESS
    assert result.risk_level is RiskLevel.HIGH


@pytest.mark.unit
def test_pattern_entry_matches_one_segment_per_parameter(classifier):
    result = classifier.classify("PATCH", "/api/v1/organizations/org-1/members/u-9/role", 200)
    assert result.event_type is EventType.ORG_MEMBER_ROLE_CHANGE
    assert result.risk_level is RiskLevel.HIGH


@pytest.mark.unit
def test_pattern_entries_are_anchored(classifier):
    result = classifier.classify("PATCH", "/api/v1/organizations/org-1/members/u-9/role/extra", 200)
    assert result.event_type is None


@pytest.mark.unit
def test_method_restricted_entry_ignores_other_methods(classifier):
    assert classifier.classify("GET", "/api/v1/organizations", 200).event_type is None
    assert (
        classifier.classify("POST", "/api/v1/organizations", 201).event_type
        is EventType.ORG_CREATE
    )


@pytest.mark.unit
def test_plain_reads_are_unclassified_and_low_risk(classifier):
    result = classifier.classify("GET", "/api/v1/tasks", 200)
    assert result.event_type is None
    assert result.risk_level is RiskLevel.LOW
    assert result.data_sensitivity is DataSensitivity.INTERNAL


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_organization_delete_is_high_risk(classifier):
    result = classifier.classify("DELETE", "/api/v1/organizations/abc", 200)
    assert result.event_type is EventType.ORG_DELETE
    assert result.risk_level is RiskLevel.HIGH


@pytest.mark.unit
def test_project_delete(classifier):
    result = classifier.classify("DELETE", "/api/v1/projects/p-1", 204)
    assert result.event_type is EventType.PROJECT_DELETE
    assert result.risk_level is RiskLevel.MEDIUM


@pytest.mark.unit
def test_unlisted_delete_is_at_least_medium(classifier):
    result = classifier.classify("DELETE", "/api/v1/tasks/t-1", 204)
    assert result.event_type is EventType.TASK_DELETE
    assert result.risk_level is RiskLevel.MEDIUM


@pytest.mark.unit
def test_member_delete_uses_table_entry_not_heuristic(classifier):
    result = classifier.classify("DELETE", "/api/v1/organizations/o-1/members/u-1", 200)
    assert result.event_type is EventType.ORG_MEMBER_REMOVE


# ---------------------------------------------------------------------------
# Escalation
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_bulk_operation_raises_to_medium(classifier):
    result = classifier.classify("POST", "/api/v1/tasks/bulk", 200, is_bulk=True)
    assert result.risk_level is RiskLevel.MEDIUM


@pytest.mark.unit
def test_export_raises_risk_and_sensitivity(classifier):
    result = classifier.classify("GET", "/api/v1/projects/export", 200, is_export=True)
    assert result.risk_level is RiskLevel.MEDIUM
    assert result.data_sensitivity is DataSensitivity.CONFIDENTIAL


@pytest.mark.unit
def test_audit_paths_are_restricted(classifier):
    result = classifier.classify("GET", "/api/v1/audit/export", 200, is_export=True)
    assert result.data_sensitivity is DataSensitivity.RESTRICTED


@pytest.mark.unit
def test_admin_paths_are_high_risk(classifier):
    assert classifier.classify("GET", "/api/v1/admin/users", 200).risk_level is RiskLevel.HIGH


@pytest.mark.unit
def test_escalation_never_lowers_risk(classifier):
    base = classifier.classify("PUT", "/api/v1/organizations/o-1/members/u-1/role", 200)
    escalated = classifier.classify(
        "PUT", "/api/v1/organizations/o-1/members/u-1/role", 200, is_bulk=True, is_export=True
    )
    assert escalated.risk_level >= base.risk_level


# ---------------------------------------------------------------------------
# Predicates and custom tables
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_bulk_detection_by_path_and_body():
    assert is_bulk_operation("/api/v1/tasks/bulk")
    assert is_bulk_operation("/api/v1/anything", {"ids": ["a", "b"]})
    assert is_bulk_operation("/api/v1/anything", {"items": []})
    assert not is_bulk_operation("/api/v1/tasks", {"ids": "a,b"})


@pytest.mark.unit
def test_export_detection_by_path_and_query():
    assert is_data_export("/api/v1/projects/p-1/export")
    assert is_data_export("/api/v1/reports")
    assert is_data_export("/api/v1/tasks", {"format": "csv"})
    assert is_data_export("/api/v1/tasks", {"export": "true"})
    assert not is_data_export("/api/v1/tasks", {"format": "json"})


@pytest.mark.unit
@pytest.mark.parametrize(
    "path",
    [
        "/api/v1/auth/reset-password",
        "/api/v1/auth/change-password",
        "/api/v1/auth/password/reset",
        "/api/v1/auth/refresh_token",
        "/api/v1/users/me/keys",
        "/api/v1/vault/secrets/s-1",
    ],
)
def test_sensitive_operation_markers(path):
    assert is_sensitive_operation(path)


@pytest.mark.unit
@pytest.mark.parametrize(
    "path", ["/api/v1/tasks", "/api/v1/monkeys", "/api/v1/organizations/org-1/members"]
)
def test_non_sensitive_paths(path):
    assert not is_sensitive_operation(path)


@pytest.mark.unit
def test_compile_endpoint_pattern():
    pattern = compile_endpoint_pattern("/api/v1/tasks/:id/status")
    assert pattern.match("/api/v1/tasks/42/status")
    assert not pattern.match("/api/v1/tasks/42/43/status")
    assert not pattern.match("/api/v1/tasks/42/status/x")


@pytest.mark.unit
def test_custom_endpoint_table():
    classifier = EventClassifier(
        {"/api/v2/exports/:id": EndpointRule(EventType.DATA_EXPORT, RiskLevel.HIGH)}
    )
    result = classifier.classify("GET", "/api/v2/exports/e-1", 200)
    assert result.event_type is EventType.DATA_EXPORT
    assert result.risk_level is RiskLevel.HIGH
    assert classifier.classify("POST", "/api/v1/auth/login", 200).event_type is None
