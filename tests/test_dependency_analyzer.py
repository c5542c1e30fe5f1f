"""Tests for the import graph: cycles, depth, critical path and architecture checks."""

from pathlib import Path

from system_map_auditor.dependency_analyzer import DependencyAnalyzer


def _module(*imports: str) -> str:
    lines = [f'import {{ x{i} }} from "{module}";' for i, module in enumerate(imports)]
    return "\n".join(lines + ["export const value = 1;", ""])


CHAIN = {
    "src/a.ts": _module("./b", "react"),
    "src/b.ts": _module("./c"),
    "src/c.ts": _module(),
}

TRIANGLE = {
    "src/a.ts": _module("./b"),
    "src/b.ts": _module("./c"),
    "src/c.ts": _module("./a"),
}


class TestGraph:
    def test_sample_graph(self, make_codebase, sample_project: Path):
        graph = DependencyAnalyzer(make_codebase()).graph
        assert graph["src/components/MemoryList.tsx"] == ["src/components/MemoryCard.tsx"]
        assert graph["src/hooks/useCreateMemory.ts"] == ["src/lib/queryClient.ts"]
        assert graph["server/routes.ts"] == ["server/storage.ts"]

    def test_packages_and_self_imports_are_ignored(self, make_codebase):
        codebase = make_codebase({"src/a.ts": _module("react", "./a"), "src/index.ts": _module("./a")})
        graph = DependencyAnalyzer(codebase).graph
        assert graph == {"src/a.ts": [], "src/index.ts": ["src/a.ts"]}

    def test_directory_index_imports(self, make_codebase):
        codebase = make_codebase({"src/app.ts": _module("./ui"), "src/ui/index.tsx": _module()})
        assert DependencyAnalyzer(codebase).graph["src/app.ts"] == ["src/ui/index.tsx"]


class TestCycles:
    def test_no_cycles(self, make_codebase, sample_project: Path):
        assert DependencyAnalyzer(make_codebase()).find_cycles() == []

    def test_triangle_reported_once_from_smallest_node(self, make_codebase):
        analyzer = DependencyAnalyzer(make_codebase(TRIANGLE))
        assert analyzer.find_cycles() == [["src/a.ts", "src/b.ts", "src/c.ts"]]

    def test_rotation_is_stable(self, make_codebase):
        codebase = make_codebase({
            "src/m.ts": _module("./z"),
            "src/z.ts": _module("./n"),
            "src/n.ts": _module("./z"),
        })
        assert DependencyAnalyzer(codebase).find_cycles() == [["src/n.ts", "src/z.ts"]]

    def test_validate_reports_cycles(self, make_codebase):
        result = DependencyAnalyzer(make_codebase(TRIANGLE)).validate()
        assert [i.message for i in result.issues] == [
            "Circular dependency detected: src/a.ts -> src/b.ts -> src/c.ts -> src/a.ts"
        ]
        assert result.issues[0].severity == "warning"
        assert result.passed

    def test_cycle_detection_can_be_disabled(self, make_codebase):
        result = DependencyAnalyzer(make_codebase(TRIANGLE)).validate(detect_circular=False)
        assert result.issues == []


class TestDepth:
    def test_chain_depth(self, make_codebase):
        analyzer = DependencyAnalyzer(make_codebase(CHAIN))
        assert [analyzer.dependency_depth(p) for p in ("src/a.ts", "src/b.ts", "src/c.ts")] == [2, 1, 0]

    def test_depth_with_cycle_is_finite(self, make_codebase):
        analyzer = DependencyAnalyzer(make_codebase(TRIANGLE))
        assert analyzer.dependency_depth("src/a.ts") == 2
        assert analyzer.dependency_depth("src/b.ts") == 2

    def test_deep_chains_are_info(self, make_codebase, make_context, config):
        config.dependencies.max_depth = 1
        analyzer = DependencyAnalyzer(make_codebase(CHAIN), make_context(cfg=config))
        result = analyzer.validate()
        assert [(i.severity, i.location, i.metadata) for i in result.issues] == [
            ("info", "src/a.ts", {"depth": 2}),
        ]
        assert result.metrics.checks_performed == 3


HUB = {
    "src/hub.ts": _module("./m0", "./m1", "./m2", "./m3", "./m4"),
    **{f"src/m{i}.ts": _module() for i in range(5)},
}


class TestCriticalPath:
    def test_longest_chain(self, make_codebase):
        analyzer = DependencyAnalyzer(make_codebase({**CHAIN, "src/d.ts": _module()}))
        assert analyzer.critical_path() == ["src/a.ts", "src/b.ts", "src/c.ts"]

    def test_cycle_is_cut(self, make_codebase):
        analyzer = DependencyAnalyzer(make_codebase(TRIANGLE))
        assert analyzer.critical_path() == ["src/a.ts", "src/b.ts", "src/c.ts"]

    def test_only_paths_over_the_limit(self, make_codebase):
        analyzer = DependencyAnalyzer(make_codebase(CHAIN))
        assert analyzer.critical_paths(2) == [["src/a.ts", "src/b.ts", "src/c.ts"]]
        assert analyzer.critical_paths(3) == []

    def test_limit_defaults_to_config(self, make_codebase, make_context, config):
        config.dependencies.critical_path_length = 2
        analyzer = DependencyAnalyzer(make_codebase(CHAIN), make_context(cfg=config))
        assert len(analyzer.critical_paths()) == 1

    def test_empty_project(self, make_codebase):
        assert DependencyAnalyzer(make_codebase()).critical_paths(0) == []


class TestStructure:
    def test_transitive_dependencies(self, make_codebase):
        analyzer = DependencyAnalyzer(make_codebase(TRIANGLE))
        assert analyzer.transitive_dependencies("src/a.ts") == ["src/b.ts", "src/c.ts"]

    def test_clusters_skip_isolated_files(self, make_codebase):
        analyzer = DependencyAnalyzer(make_codebase({**CHAIN, "src/d.ts": _module()}))
        assert analyzer.clusters() == [["src/a.ts", "src/b.ts", "src/c.ts"]]

    def test_bidirectional_edges(self, make_codebase):
        codebase = make_codebase({"src/a.ts": _module("./b"), "src/b.ts": _module("./a"), "src/c.ts": _module("./a")})
        assert DependencyAnalyzer(codebase).bidirectional_edges() == [("src/a.ts", "src/b.ts")]


class TestOptimizations:
    def test_cycles_become_break_suggestions(self, make_codebase):
        suggestions = DependencyAnalyzer(make_codebase(TRIANGLE)).suggest_optimizations()
        assert [(s.type, s.effort) for s in suggestions] == [("break-circular", "medium")]
        assert suggestions[0].files == ["src/a.ts", "src/b.ts", "src/c.ts"]

    def test_heavy_and_deep_files(self, make_codebase, make_context, config):
        config.dependencies.heavy_threshold = 1
        config.dependencies.deep_threshold = 1
        analyzer = DependencyAnalyzer(make_codebase(CHAIN), make_context(cfg=config))
        suggestions = analyzer.suggest_optimizations()
        assert [(s.type, s.target, s.impact, s.effort) for s in suggestions] == [
            ("lazy-load", "src/a.ts", "medium", "low"),
            ("reduce-dependencies", "src/a.ts", "medium", "high"),
        ]

    def test_large_cluster_is_code_split(self, make_codebase):
        suggestions = DependencyAnalyzer(make_codebase(HUB)).suggest_optimizations()
        assert len(suggestions) == 1
        split = suggestions[0]
        assert (split.type, split.target, split.impact) == ("code-split", "cluster-0", "high")
        assert split.files[0] == "src/hub.ts"
        assert len(split.files) == 6
        assert split.to_dict()["type"] == "code-split"

    def test_clean_project_has_none(self, make_codebase, sample_project: Path):
        assert DependencyAnalyzer(make_codebase()).suggest_optimizations() == []


class TestArchitecture:
    def test_bidirectional_import_is_warning(self, make_codebase):
        codebase = make_codebase({"src/a.ts": _module("./b"), "src/b.ts": _module("./a")})
        result = DependencyAnalyzer(codebase).validate_architecture()
        assert [(i.type, i.severity, i.location) for i in result.issues] == [
            ("cross-reference-error", "warning", "dependencies.src/a.ts-src/b.ts"),
        ]
        assert result.passed

    def test_wide_interface_is_info(self, make_codebase):
        source = "\n".join(f"export const item{i} = {i};" for i in range(11)) + "\n"
        codebase = make_codebase({"src/wide.ts": source, "src/narrow.ts": _module()})
        result = DependencyAnalyzer(codebase).validate_architecture()
        assert [(i.severity, i.location, i.metadata) for i in result.issues] == [
            ("info", "src/wide.ts", {"exportCount": 11}),
        ]
        assert "focused" in result.issues[0].suggestion

    def test_code_split_is_info(self, make_codebase):
        result = DependencyAnalyzer(make_codebase(HUB)).validate_architecture()
        assert [(i.severity, i.location) for i in result.issues] == [("info", "cluster-0")]
        assert result.metrics.checks_performed == 6

    def test_sample_project_is_clean(self, make_codebase, sample_project: Path):
        assert DependencyAnalyzer(make_codebase()).validate_architecture().issues == []
