"""Tests for component existence, dependency and usage checks."""

from pathlib import Path

import pytest

from system_map_auditor.component_validator import ComponentValidator
from system_map_auditor.indexer import index_project
from system_map_auditor.system_map import ComponentDef, SystemMapLoader


FOO = "export function Foo() {\n  return <div>foo</div>;\n}\n"


@pytest.fixture
def validator(make_context) -> ComponentValidator:
    return ComponentValidator(make_context())


class TestExistence:
    def test_exported_component_passes(self, validator, make_codebase, sample_project: Path):
        codebase = make_codebase()
        component = ComponentDef(name="MemoryList", path="src/components/MemoryList.tsx")
        result = validator.validate_exists(component, codebase)
        assert result.issues == []
        assert result.metrics.checks_performed == 1

    def test_path_resolves_through_source_dirs(self, validator, make_codebase):
        codebase = make_codebase({"src/components/Foo.tsx": FOO})
        result = validator.validate_exists(ComponentDef(name="Foo", path="components/Foo.tsx"), codebase)
        assert result.issues == []

    def test_default_export_counts(self, validator, make_codebase):
        codebase = make_codebase({"src/Page.tsx": "export default function Page() { return null; }\n"})
        result = validator.validate_exists(ComponentDef(name="Page", path="src/Page.tsx"), codebase)
        assert result.passed
        assert result.issues == []

    def test_file_without_export_is_error(self, validator, make_codebase):
        codebase = make_codebase({"src/Bar.tsx": "export const Other = 1;\n"})
        result = validator.validate_exists(ComponentDef(name="Bar", path="src/Bar.tsx"), codebase)
        assert not result.passed
        assert result.errors[0].message == "Component Bar not found in exports of src/Bar.tsx"

    def test_single_candidate_is_warning_with_corrected_path(self, validator, make_codebase):
        codebase = make_codebase({"src/widgets/Foo.tsx": FOO})
        result = validator.validate_exists(ComponentDef(name="Foo", path="src/Foo.tsx"), codebase)
        assert result.passed
        assert len(result.issues) == 1
        issue = result.issues[0]
        assert issue.severity == "warning"
        assert issue.location == "src/Foo.tsx"
        assert "src/widgets/Foo.tsx" in issue.suggestion
        assert issue.metadata["candidates"] == ["src/widgets/Foo.tsx"]

    def test_several_candidates_are_ambiguous(self, validator, make_codebase):
        codebase = make_codebase({"src/components/Foo.tsx": FOO, "src/widgets/Foo.tsx": FOO})
        result = validator.validate_exists(ComponentDef(name="Foo", path="src/Foo.tsx"), codebase)
        issue = result.issues[0]
        assert issue.severity == "warning"
        assert "Multiple matches found" in issue.message
        assert issue.metadata["candidates"] == ["src/components/Foo.tsx", "src/widgets/Foo.tsx"]

    def test_nothing_found_is_error(self, validator, make_codebase):
        codebase = make_codebase({"src/other.ts": "export const x = 1;\n"})
        result = validator.validate_exists(ComponentDef(name="Ghost", path="src/Ghost.tsx"), codebase)
        assert [i.severity for i in result.issues] == ["error"]
        assert result.issues[0].type == "missing-component"


class TestDependencies:
    def test_declared_and_imported(self, validator, make_codebase, sample_project: Path):
        codebase = make_codebase()
        component = ComponentDef(
            name="MemoryList", path="src/components/MemoryList.tsx", dependencies=["MemoryCard"]
        )
        result = validator.validate_dependencies(component, codebase)
        assert result.issues == []
        assert result.metrics.checks_performed == 1

    def test_existing_but_not_imported(self, validator, make_codebase):
        codebase = make_codebase({
            "src/A.tsx": "export function A() { return null; }\n",
            "src/B.tsx": "export function B() { return null; }\n",
        })
        result = validator.validate_dependencies(
            ComponentDef(name="A", path="src/A.tsx", dependencies=["B"]), codebase
        )
        assert [i.severity for i in result.issues] == ["warning"]
        assert "not imported in A" in result.issues[0].message

    def test_missing_dependency_is_error(self, validator, make_codebase):
        codebase = make_codebase({"src/A.tsx": "export function A() { return null; }\n"})
        result = validator.validate_dependencies(
            ComponentDef(name="A", path="src/A.tsx", dependencies=["Ghost"]), codebase
        )
        assert [i.severity for i in result.issues] == ["error"]
        assert result.issues[0].location == "src/A.tsx:dependencies"

    def test_undeclared_imports_are_info(self, validator, make_codebase):
        codebase = make_codebase({
            "src/A.tsx": 'import { Helper } from "./Helper";\nimport React from "react";\nexport function A() {}\n',
            "src/Helper.tsx": "export function Helper() {}\n",
        })
        result = validator.validate_dependencies(ComponentDef(name="A", path="src/A.tsx"), codebase)
        assert [i.severity for i in result.issues] == ["info"]
        assert "imports Helper" in result.issues[0].message

    def test_unlocated_component_is_skipped(self, validator, make_codebase):
        codebase = make_codebase({"src/other.ts": ""})
        result = validator.validate_dependencies(
            ComponentDef(name="Ghost", path="src/Ghost.tsx", dependencies=["X"]), codebase
        )
        assert result.issues == []
        assert result.metrics.checks_performed == 0


class TestUsagePatterns:
    def test_type_mismatch(self, validator, make_codebase, sample_project: Path):
        codebase = make_codebase()
        component = ComponentDef(name="MemoryCard", path="src/components/MemoryCard.tsx", type="hook")
        result = validator.validate_usage_patterns(component, codebase, check_unused=False)
        assert len(result.warnings) == 1
        assert 'codebase indicates "component"' in result.warnings[0].message

    def test_used_component(self, validator, make_codebase, sample_project: Path):
        codebase = make_codebase()
        component = ComponentDef(name="MemoryCard", path="src/components/MemoryCard.tsx")
        result = validator.validate_usage_patterns(component, codebase, check_types=False)
        assert result.issues == []

    def test_unused_component(self, validator, make_codebase, sample_project: Path):
        codebase = make_codebase()
        component = ComponentDef(name="useCreateMemory", path="src/hooks/useCreateMemory.ts", type="hook")
        result = validator.validate_usage_patterns(component, codebase)
        assert [i.message for i in result.issues] == [
            "Component useCreateMemory is not used anywhere in the codebase"
        ]
        assert result.metrics.checks_performed == 2


def test_validate_all_on_sample_map(validator, sample_project: Path, sample_map_path: Path):
    system_map = SystemMapLoader(sample_project).load(sample_map_path)
    codebase = index_project(sample_project)
    result = validator.validate_all(system_map.components.values(), codebase)
    assert result.passed
    assert result.issues == []
    # two existence checks, one dependency, two type checks
    assert result.metrics.checks_performed == 5
