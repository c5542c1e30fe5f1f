"""Tests for integration evidence discovery and feature scoring."""

import os
from pathlib import Path

import pytest

from system_map_auditor.evidence_validator import SECONDS_PER_DAY, IntegrationEvidenceValidator
from system_map_auditor.models import IntegrationEvidence
from system_map_auditor.system_map import ComponentDef, SystemMap, SystemMapLoader


NOTES_PANEL = """export function NotesPanel() {
  const { data, isLoading } = useQuery({ queryKey: ["/api/notes"], onError: () => {} });
  const add = useMutation({
    mutationFn: (text) => apiRequest("POST", "/api/notes", { text }),
    onSuccess: () => queryClient.invalidateQueries({ queryKey: ["/api/notes"] }),
  });
  if (isLoading) return <p>Loading</p>;
  return <button onClick={() => add.mutate("x")}>Add</button>;
}
"""

NOTES_ROUTES = 'router.post("/api/notes", async (req, res) => res.json(await storage.addNote(req.body)));\n'

NOTES_MAP = {
    "name": "notes",
    "components": [{"name": "NotesPanel", "path": "src/components/NotesPanel.tsx"}],
    "apis": [{"method": "POST", "path": "/api/notes", "handler": "server/routes.ts"}],
    "flows": [
        {
            "name": "add-note",
            "steps": [{"action": "click", "component": "NotesPanel", "api": "POST /api/notes"}],
        }
    ],
}


@pytest.fixture
def validator(make_context) -> IntegrationEvidenceValidator:
    return IntegrationEvidenceValidator(make_context())


@pytest.fixture
def notes_project(temp_dir: Path, write_project, write_system_map) -> SystemMap:
    write_project({
        "src/components/NotesPanel.tsx": NOTES_PANEL,
        "server/routes.ts": NOTES_ROUTES,
        "docs/flows/add-note.md": "# Add note\n",
    })
    return SystemMapLoader(temp_dir).load(write_system_map(".system-maps/notes.map.json", NOTES_MAP))


def _evidence(status="verified", last_verified=0.0, evidence_type="end-to-end-test"):
    return IntegrationEvidence(
        feature_name="memories",
        evidence_type=evidence_type,
        evidence_location="tests/e2e/memories.test.ts",
        last_verified=last_verified,
        verification_status=status,
    )


@pytest.mark.parametrize("content,expected", [
    ("Status: VERIFIED on staging", "verified"),
    ("all checks PASSED", "verified"),
    ("upload FAILED twice", "failed"),
    ("BROKEN since deploy", "failed"),
    ("not run yet", "needs-verification"),
])
def test_verification_status(content, expected):
    assert IntegrationEvidenceValidator.verification_status(content) == expected


class TestCollection:
    def test_sample_e2e_test(self, validator, sample_project: Path):
        evidence = validator.collect_evidence("memories")
        assert [(e.evidence_type, e.evidence_location, e.verification_status) for e in evidence] == [
            ("end-to-end-test", "tests/e2e/memories.test.ts", "verified"),
        ]

    def test_failed_test_file(self, validator, write_project):
        write_project({"tests/e2e/memories.test.ts": "// FAILED on CI\n"})
        evidence = validator.collect_evidence("memories")
        issues = validator.validate_evidence_quality(evidence)
        assert [i.severity for i in issues] == ["error"]

    def test_manual_record_needs_verification(self, validator, write_project):
        write_project({"docs/verification/payments.md": "Steps to try by hand\n"})
        evidence = validator.collect_evidence("payments")
        assert [e.verification_status for e in evidence] == ["needs-verification"]
        assert [i.severity for i in validator.validate_evidence_quality(evidence)] == ["warning"]
        assert validator.validate_evidence_completeness("payments", evidence) == []

    def test_docs_must_mention_feature(self, validator, write_project):
        write_project({"README.md": "# Project\n", "docs/payments.md": "Payments overview\n"})
        evidence = validator.collect_evidence("payments")
        assert [e.evidence_location for e in evidence] == ["docs/payments.md"]

    def test_skipped_dirs_are_ignored(self, validator, write_project):
        write_project({"node_modules/pkg/payments.test.ts": ""})
        assert validator.collect_evidence("payments") == []

    def test_unreadable_evidence_is_reported(self, validator, temp_dir: Path):
        (temp_dir / "tests" / "e2e").mkdir(parents=True)
        os.symlink(temp_dir / "gone.ts", temp_dir / "tests" / "e2e" / "payments.test.ts")
        issues = []
        assert validator.collect_evidence("payments", issues) == []
        assert [(i.severity, i.location) for i in issues] == [("error", "tests/e2e/payments.test.ts")]
        assert issues[0].message.startswith("Failed to read tests/e2e/payments.test.ts")


class TestEvidenceChecks:
    def test_no_evidence(self, validator):
        issues = validator.validate_evidence_completeness("ghost", [])
        assert [i.severity for i in issues] == ["error", "warning"]

    def test_documentation_only(self, validator):
        issues = validator.validate_evidence_completeness("memories", [_evidence(evidence_type="documentation")])
        assert [i.severity for i in issues] == ["warning"]

    def test_freshness(self, validator):
        now = 100 * SECONDS_PER_DAY
        stale = _evidence(last_verified=now - 31 * SECONDS_PER_DAY)
        fresh = _evidence(last_verified=now - 29 * SECONDS_PER_DAY)
        issues = validator.validate_evidence_freshness([stale, fresh], now=now)
        assert len(issues) == 1
        assert issues[0].severity == "info"
        assert issues[0].metadata == {"maxAgeDays": 30}

    def test_subjects(self, validator):
        assert validator.subjects(SystemMap(name="memories", path="m.json")) == ["memories"]

    def test_sample_document(self, validator, sample_project: Path, sample_map_path: Path):
        system_map = SystemMapLoader(sample_project).load(sample_map_path)
        result = validator.validate_all(system_map)
        assert result.issues == []
        assert result.metrics.checks_performed == 1

    def test_disabled(self, make_context, config):
        config.evidence.enabled = False
        validator = IntegrationEvidenceValidator(make_context(cfg=config))
        assert validator.validate_all(SystemMap(name="ghost", path="g.json")).issues == []


class TestFeatureIntegration:
    def test_fully_integrated(self, validator, make_codebase, notes_project, write_project):
        write_project({"tests/e2e/notes.test.ts": "test('adds a note', () => {});\n"})
        status = validator.validate_feature_integration(notes_project, make_codebase())
        assert [c.score for c in status.components] == [1.0]
        assert [a.score for a in status.apis] == [1.0]
        assert [f.score for f in status.flows] == [1.0]
        assert status.average_score == pytest.approx(1.0)
        assert status.overall_status == "fully-integrated"
        assert status.blockers == []

    def test_unverified_without_evidence(self, validator, make_codebase, notes_project):
        status = validator.validate_feature_integration(notes_project, make_codebase())
        assert status.evidence == []
        assert status.flows[0].has_end_to_end_test is False
        assert status.flows[0].has_evidence is True
        assert status.overall_status == "unverified"

    def test_sample_is_partially_integrated(self, validator, make_codebase, sample_project: Path,
                                            sample_map_path: Path):
        system_map = SystemMapLoader(sample_project).load(sample_map_path)
        status = validator.validate_feature_integration(system_map, make_codebase())
        assert status.feature_name == "memories"
        assert status.average_score == pytest.approx((0.8 + 0.9 + 0.8) / 3)
        assert status.overall_status == "partially-integrated"

    def test_missing_component_is_blocker(self, validator, make_codebase, notes_project):
        notes_project.components["Ghost"] = ComponentDef(name="Ghost", path="src/Ghost.tsx")
        status = validator.validate_feature_integration(notes_project, make_codebase())
        assert [b.message for b in status.blockers] == ["Component Ghost does not exist"]

    def test_unreadable_source_is_blocker(self, validator, make_codebase, notes_project, temp_dir: Path):
        codebase = make_codebase()
        (temp_dir / "src" / "components" / "NotesPanel.tsx").unlink()
        status = validator.validate_feature_integration(notes_project, codebase)
        failures = [b for b in status.blockers if b.message.startswith("Failed to read")]
        assert [b.location for b in failures] == ["src/components/NotesPanel.tsx"]
        assert failures[0].severity == "error"
