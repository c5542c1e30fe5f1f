"""Tests for UI refresh pattern checks."""

from pathlib import Path

import pytest

from system_map_auditor.ui_refresh_validator import UiRefreshDependency, UiRefreshValidator


BARE = 'export function Bare() {\n  const { data } = useQuery({ queryKey: ["/api/tags"] });\n  return <ul />;\n}\n'

TAGS = """export function Tags() {
  const { data, isLoading, isError, refetch } = useQuery({ queryKey: ["/api/tags"] });
  if (isLoading) return <p>Loading</p>;
  if (isError) return <p>Error</p>;
  return <button onClick={() => refetch()}>Reload</button>;
}
"""

UNHANDLED_MUTATION = """export function useAdd() {
  return useMutation({
    mutationFn: (body) => apiRequest("POST", "/api/tags", body),
  });
}
"""


@pytest.fixture
def validator(make_context) -> UiRefreshValidator:
    return UiRefreshValidator(make_context())


@pytest.mark.parametrize("kwargs,expected", [
    ({}, 1.0),
    ({"queries": ["k"]}, 0.4),
    ({"queries": ["k"], "has_loading_state": True}, 0.65),
    ({"queries": ["k"], "has_loading_state": True, "has_error_state": True}, 0.9),
])
def test_refresh_completeness(kwargs, expected):
    assert UiRefreshDependency(component="c", **kwargs).refresh_completeness == expected


class TestRefreshChains:
    def test_sample_project_is_clean(self, validator, make_codebase, sample_project: Path):
        result = validator.validate_all(make_codebase())
        assert result.issues == []

    def test_missing_states(self, validator, make_codebase):
        result = validator.validate_ui_refresh_chains(make_codebase({"src/Bare.tsx": BARE}))
        assert [i.message for i in result.issues] == [
            "Component src/Bare.tsx uses queries but lacks loading states",
            "Component src/Bare.tsx uses queries but lacks error states",
            "Component src/Bare.tsx has incomplete UI refresh patterns (40%)",
        ]
        assert result.issues[2].metadata == {"refreshCompleteness": 0.4}

    def test_unvalidated_triggers_are_info(self, validator, make_codebase):
        result = validator.validate_ui_refresh_chains(make_codebase({"src/Tags.tsx": TAGS}))
        assert [(i.severity, i.location) for i in result.issues] == [
            ("info", "src/Tags.tsx:2"),
            ("info", "src/Tags.tsx:5"),
        ]
        assert result.passed

    def test_trigger_in_callback_is_validated(self, validator):
        source = "load().then(() => {\n  refetch();\n});\nuseQuery({ queryKey: ['/api/a'] });\n"
        dependency = validator.analyze("src/x.ts", source)
        assert dependency.queries == ["/api/a"]
        assert [(t.trigger, t.line, t.validated) for t in dependency.refresh_triggers] == [("refetch", 1, True)]


class TestDataSync:
    def test_key_never_invalidated(self, validator, make_codebase):
        result = validator.validate_component_data_sync(make_codebase({"src/Bare.tsx": BARE}))
        assert [i.message for i in result.issues] == [
            'Data dependency "/api/tags" in src/Bare.tsx may not be properly synchronized'
        ]

    def test_refetch_counts_as_sync(self, validator, make_codebase):
        result = validator.validate_component_data_sync(make_codebase({"src/Tags.tsx": TAGS}))
        assert result.issues == []
        assert result.metrics.checks_performed == 1


class TestUiConsistency:
    def test_mutation_without_on_success(self, validator, make_codebase):
        result = validator.validate_ui_consistency(make_codebase({"src/hooks/useAdd.ts": UNHANDLED_MUTATION}))
        assert [i.location for i in result.issues] == ["src/hooks/useAdd.ts:3"]

    def test_sample_mutation_is_handled(self, validator, make_codebase, sample_project: Path):
        result = validator.validate_ui_consistency(make_codebase())
        assert result.issues == []
        assert result.metrics.checks_performed == 1


def test_disabled(make_context, make_codebase, config):
    config.ui_refresh.enabled = False
    validator = UiRefreshValidator(make_context(cfg=config))
    result = validator.validate_all(make_codebase({"src/Bare.tsx": BARE}))
    assert result.issues == []
    assert result.metrics.checks_performed == 0
