"""Tests for declared-path resolution."""

from pathlib import Path

from system_map_auditor.models import ComponentInfo, ParsedCodebase
from system_map_auditor.paths import PathResolver


class TestResolveSourceFile:
    def test_existing_path_is_kept(self, temp_dir: Path, write_project):
        write_project({"src/App.tsx": ""})
        assert PathResolver(temp_dir).resolve_source_file("./src/App.tsx") == "src/App.tsx"

    def test_common_source_dirs_are_tried(self, temp_dir: Path, write_project):
        write_project({"client/src/components/Foo.tsx": ""})
        resolver = PathResolver(temp_dir)
        assert resolver.resolve_source_file("components/Foo.tsx") == "client/src/components/Foo.tsx"

    def test_missing_path_falls_back_to_guess(self, temp_dir: Path):
        assert PathResolver(temp_dir).resolve_source_file("src/Nope.tsx") == "src/Nope.tsx"

    def test_absolute_path_becomes_relative(self, temp_dir: Path, write_project):
        write_project({"src/App.tsx": ""})
        resolver = PathResolver(temp_dir)
        assert resolver.resolve_source_file(str(temp_dir / "src" / "App.tsx")) == "src/App.tsx"


class TestComponentLocations:
    def test_conventional_locations(self, temp_dir: Path, write_project):
        write_project({
            "src/components/user-card.tsx": "",
            "src/components/UserCard/index.tsx": "",
        })
        found = PathResolver(temp_dir).find_component_locations("UserCard")
        assert found == ["src/components/UserCard/index.tsx", "src/components/user-card.tsx"]

    def test_index_exports_are_candidates(self, temp_dir: Path):
        codebase = ParsedCodebase(
            project_root=temp_dir,
            components={"src/widgets/Foo.tsx": ComponentInfo("src/widgets/Foo.tsx", exports=("Foo",))},
        )
        found = PathResolver(temp_dir).find_component_locations("Foo", codebase)
        assert found == ["src/widgets/Foo.tsx"]

    def test_nothing_found(self, temp_dir: Path):
        assert PathResolver(temp_dir).find_component_locations("Ghost") == []


class TestHandlers:
    def test_resolve_api_handler_tries_server_dir(self, temp_dir: Path, write_project):
        write_project({"server/routes.ts": ""})
        assert PathResolver(temp_dir).resolve_api_handler("routes.ts") == "server/routes.ts"

    def test_resolve_api_handler_adds_extension(self, temp_dir: Path, write_project):
        write_project({"server/routes/memories.ts": ""})
        assert PathResolver(temp_dir).resolve_api_handler("server/routes/memories") == "server/routes/memories.ts"

    def test_unresolvable_handler(self, temp_dir: Path):
        assert PathResolver(temp_dir).resolve_api_handler("server/missing.ts") is None

    def test_find_handler_locations_by_basename(self, temp_dir: Path, write_project):
        write_project({"server/routes/memories.ts": ""})
        found = PathResolver(temp_dir).find_handler_locations("server/old/memories.ts")
        assert found == ["server/routes/memories.ts"]


class TestResolveImport:
    known = ["src/components/Card.tsx", "src/lib/index.ts", "src/util.js"]

    def test_relative_file_with_extension(self):
        assert PathResolver.resolve_import("./Card", "src/components/List.tsx", self.known) == "src/components/Card.tsx"

    def test_directory_index(self):
        assert PathResolver.resolve_import("../lib", "src/components/List.tsx", self.known) == "src/lib/index.ts"

    def test_exact_path(self):
        assert PathResolver.resolve_import("../util.js", "src/components/List.tsx", self.known) == "src/util.js"

    def test_bare_specifier_is_ignored(self):
        assert PathResolver.resolve_import("react", "src/components/List.tsx", self.known) is None

    def test_unknown_target(self):
        assert PathResolver.resolve_import("./Missing", "src/components/List.tsx", self.known) is None
