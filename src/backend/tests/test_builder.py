"""Tests for the response builder: baseline, overrides, sanitization."""

import pytest

from errorhub.errors import FailureCategory, FieldViolation, RaisedFailure
from errorhub.mapping.builder import REDACTED, ResponseBuilder
from errorhub.mapping.registry import ErrorCodeEntry, ErrorCodeRegistry
from errorhub.mapping.rules import DEFAULT_RULE, CategoryRule, DiagnosticsRule, RuleOverride

CID = "c0ffee"


@pytest.fixture
def registry():
    return ErrorCodeRegistry()


@pytest.fixture
def builder(registry):
    return ResponseBuilder(registry)


def _rule(category: FailureCategory, **override) -> CategoryRule:
    return CategoryRule(category, RuleOverride(**override))


class TestBaseline:
    def test_registry_defaults(self, builder):
        failure = RaisedFailure(FailureCategory.CONFLICT, "row 7 locked")
        response = builder.build(failure, DEFAULT_RULE, CID)
        assert response.code == "CONFLICT"
        assert response.status == 409
        assert response.correlation_id == CID
        assert response.details == []
        assert "row 7" not in response.message

    def test_template_uses_public_context(self, builder):
        failure = RaisedFailure(FailureCategory.NOT_FOUND, "x", context={"resource": "invoice"})
        assert builder.build(failure, DEFAULT_RULE, CID).message == "The requested invoice was not found"

    def test_template_missing_placeholder_uses_name(self, builder):
        failure = RaisedFailure(FailureCategory.NOT_FOUND, "x")
        assert builder.build(failure, DEFAULT_RULE, CID).message == "The requested resource was not found"

    def test_public_message_beats_template(self, builder):
        failure = RaisedFailure(FailureCategory.VALIDATION, "x", public_message="Method Not Allowed")
        assert builder.build(failure, DEFAULT_RULE, CID).message == "Method Not Allowed"

    def test_status_hint_inside_category(self, builder):
        failure = RaisedFailure(FailureCategory.VALIDATION, "x", status_hint=405)
        assert builder.build(failure, DEFAULT_RULE, CID).status == 405

    def test_status_hint_outside_category_ignored(self, builder):
        failure = RaisedFailure(FailureCategory.VALIDATION, "x", status_hint=404)
        response = builder.build(failure, DEFAULT_RULE, CID)
        assert response.status == 400
        assert response.code == "VALIDATION_FAILED"


class TestOverrides:
    def test_validation_narrowed_to_422(self, builder):
        rule = _rule(FailureCategory.VALIDATION, status=422)
        response = builder.build(RaisedFailure(FailureCategory.VALIDATION, "x"), rule, CID)
        assert response.status == 422
        assert response.code == "VALIDATION_FAILED"

    def test_internal_never_escalates_to_non_5xx(self, builder):
        rule = _rule(FailureCategory.INTERNAL, status=400)
        response = builder.build(RaisedFailure(FailureCategory.INTERNAL, "x"), rule, CID)
        assert response.status == 500

    def test_internal_status_fixed_even_within_5xx(self, builder):
        rule = _rule(FailureCategory.INTERNAL, status=503)
        assert builder.build(RaisedFailure(FailureCategory.INTERNAL, "x"), rule, CID).status == 500

    def test_foreign_code_rejected(self, builder):
        rule = _rule(FailureCategory.VALIDATION, code="NOT_FOUND")
        response = builder.build(RaisedFailure(FailureCategory.VALIDATION, "x"), rule, CID)
        assert response.code == "VALIDATION_FAILED"

    def test_alias_code_accepted(self, registry, builder):
        registry.register(
            ErrorCodeEntry(
                FailureCategory.CONFLICT, 409, "CONFLICT", "x", aliases=frozenset({"EMAIL_TAKEN"})
            )
        )
        rule = _rule(FailureCategory.CONFLICT, code="EMAIL_TAKEN")
        assert builder.build(RaisedFailure(FailureCategory.CONFLICT, "x"), rule, CID).code == "EMAIL_TAKEN"

    def test_message_and_details_override(self, builder):
        rule = _rule(
            FailureCategory.CONFLICT,
            message="Email already registered",
            details=(FieldViolation("email", "taken"),),
        )
        response = builder.build(RaisedFailure(FailureCategory.CONFLICT, "x"), rule, CID)
        assert response.message == "Email already registered"
        assert [(d.field, d.message) for d in response.details] == [("email", "taken")]

    def test_header_with_line_break_dropped(self, builder):
        rule = _rule(FailureCategory.CONFLICT, headers={"X-Evil": "a\r\nSet-Cookie: x", "X-Ok": "1"})
        response = builder.build(RaisedFailure(FailureCategory.CONFLICT, "x"), rule, CID)
        assert response.headers == {"X-Ok": "1"}


class TestDetails:
    def test_field_context_becomes_detail(self, builder):
        failure = RaisedFailure(FailureCategory.VALIDATION, "x", context={"field": "email", "reason": "must contain @"})
        response = builder.build(failure, DEFAULT_RULE, CID)
        assert [(d.field, d.message) for d in response.details] == [("email", "must contain @")]

    def test_violations_keep_order(self, builder):
        violations = (FieldViolation("b", "2"), FieldViolation("a", "1"))
        failure = RaisedFailure(FailureCategory.VALIDATION, "x", violations=violations)
        assert [d.field for d in builder.build(failure, DEFAULT_RULE, CID).details] == ["b", "a"]

    def test_context_not_rendered_unless_allow_listed(self, builder):
        failure = RaisedFailure(FailureCategory.NOT_FOUND, "x", context={"resource_id": "42"})
        assert builder.build(failure, DEFAULT_RULE, CID).details == []

    def test_allow_listed_context_rendered(self, builder):
        failure = RaisedFailure(FailureCategory.NOT_FOUND, "x", context={"resource_id": "42"})
        rule = _rule(FailureCategory.NOT_FOUND, expose=frozenset({"context"}))
        details = builder.build(failure, rule, CID).details
        assert [(d.field, d.message) for d in details] == [("resource_id", "42")]


class TestSanitization:
    def test_sensitive_context_never_in_details(self, builder):
        failure = RaisedFailure(
            FailureCategory.VALIDATION,
            "x",
            context={"password": "hunter2", "api_key": "sk-live-1", "username": "bob"},
            violations=(
                FieldViolation("password", "too short"),
                FieldViolation("confirm", "does not match hunter2"),
                FieldViolation("username", "taken"),
            ),
        )
        rule = _rule(FailureCategory.VALIDATION, expose=frozenset({"context"}))
        body = builder.build(failure, rule, CID).body()
        rendered = str(body)
        for needle in ("password", "hunter2", "api_key", "sk-live-1"):
            assert needle not in rendered
        assert {"field": "username", "message": "taken"} in body["details"]

    def test_sensitive_key_inside_field_or_message_dropped(self, builder):
        failure = RaisedFailure(
            FailureCategory.VALIDATION,
            "x",
            context={"Password": "hunter2"},
            violations=(
                FieldViolation("user.password", "too short"),
                FieldViolation("confirm", "must equal PASSWORD"),
                FieldViolation("email", "malformed"),
            ),
        )
        details = builder.build(failure, DEFAULT_RULE, CID).body()["details"]
        assert "password" not in str(details).lower()
        assert details == [{"field": "email", "message": "malformed"}]

    def test_violation_on_password_field_kept_without_sensitive_context(self, builder):
        failure = RaisedFailure(
            FailureCategory.VALIDATION, "x", violations=(FieldViolation("password", "too short"),)
        )
        assert builder.build(failure, DEFAULT_RULE, CID).details[0].field == "password"

    def test_custom_deny_list(self, registry):
        builder = ResponseBuilder(registry, sensitive_key_patterns=["^internal_"])
        failure = RaisedFailure(
            FailureCategory.CONFLICT, "x", context={"internal_host": "db-7", "table": "users"}
        )
        rule = _rule(FailureCategory.CONFLICT, expose=frozenset({"context"}))
        details = builder.build(failure, rule, CID).details
        assert [d.field for d in details] == ["table"]

    def test_exposed_internal_message_is_redacted(self, builder):
        failure = RaisedFailure(
            FailureCategory.INTERNAL, "login failed for secret s3cr3t", context={"client_secret": "s3cr3t"}
        )
        rule = _rule(FailureCategory.INTERNAL, expose=frozenset({"internal_message"}))
        response = builder.build(failure, rule, CID)
        assert "s3cr3t" not in response.message
        assert REDACTED in response.message


class TestDiagnostics:
    def test_absent_by_default(self, builder):
        failure = RaisedFailure(FailureCategory.INTERNAL, "boom", cause=RaisedFailure(FailureCategory.INTERNAL, "root"))
        response = builder.build(failure, DEFAULT_RULE, CID)
        assert response.diagnostics is None
        assert "diagnostics" not in response.body()

    def test_cause_chain_alone_hides_exception_type(self, builder):
        try:
            raise RuntimeError("boom")
        except RuntimeError as exc:
            failure = RaisedFailure(
                FailureCategory.INTERNAL,
                "boom",
                cause=RaisedFailure(FailureCategory.DEPENDENCY, "upstream"),
                exception=exc,
            )
        rule = _rule(FailureCategory.INTERNAL, expose=frozenset({"cause_chain"}))
        diagnostics = builder.build(failure, rule, CID).body()["diagnostics"]
        assert "exceptionType" not in diagnostics
        assert diagnostics["causes"] == [{"category": "Dependency", "message": "upstream"}]

    def test_cause_chain_and_stack_trace(self, registry):
        builder = ResponseBuilder(registry, stack_trace_filters=["site-packages"])
        try:
            raise RuntimeError("boom")
        except RuntimeError as exc:
            failure = RaisedFailure(
                FailureCategory.INTERNAL,
                "boom",
                cause=RaisedFailure(FailureCategory.DEPENDENCY, "upstream"),
                exception=exc,
            )
        response = builder.build(failure, DiagnosticsRule(), CID)
        body = response.body()
        assert body["diagnostics"]["internalMessage"] == "boom"
        assert body["diagnostics"]["exceptionType"] == "RuntimeError"
        assert body["diagnostics"]["causes"] == [{"category": "Dependency", "message": "upstream"}]
        assert any("test_cause_chain_and_stack_trace" in frame for frame in body["diagnostics"]["stackTrace"])
        assert response.status == 500
