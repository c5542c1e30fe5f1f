"""Declarative system map documents and their canonical in-memory model.

Two document shapes are accepted and normalized once at load time:

- **standard**: ``components`` (array or name-keyed map), ``apis`` array,
  ``flows`` array
- **feature-group**: ``featureGroups`` with nested ``features``, plus
  optional ``globalComponents``, ``components`` map, ``apiEndpoints`` map,
  ``integrationStatus`` and ``tableOfContents``

Anything else raises ``SystemMapError`` listing every schema problem.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Set, Tuple

from .config import SKIP_DIRS
from .errors import SystemMapError

logger = logging.getLogger(__name__)

MapShape = Literal["standard", "feature-group"]

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
FEATURE_STATUSES = ("active", "partial", "planned", "broken")

SYSTEM_MAP_DIRS = (".system-maps", "system-maps")


# ---------------------------------------------------------------------------
# Canonical model
# ---------------------------------------------------------------------------

@dataclass
class ComponentDef:
    name: str
    path: str
    type: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)
    uses: List[str] = field(default_factory=list)
    invalidates: List[str] = field(default_factory=list)
    depends_on: List[str] = field(default_factory=list)
    description: Optional[str] = None
    feature: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass
class ApiEndpoint:
    method: str
    path: str
    handler: Optional[str] = None
    description: Optional[str] = None
    request_schema: Any = None
    response_schema: Any = None
    handler_file: Optional[str] = None
    feature: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.method} {self.path}"


@dataclass
class FlowStep:
    action: str = ""
    component: Optional[str] = None
    api: Optional[str] = None
    description: str = ""


@dataclass
class UserFlow:
    name: str
    steps: List[FlowStep] = field(default_factory=list)
    description: Optional[str] = None
    feature: Optional[str] = None


@dataclass
class CacheDependencies:
    invalidates: List[str] = field(default_factory=list)
    refreshes_components: List[str] = field(default_factory=list)
    missing_invalidations: List[str] = field(default_factory=list)


@dataclass
class FeatureDef:
    name: str
    group: str
    description: str = ""
    components: List[str] = field(default_factory=list)
    user_flow: List[Any] = field(default_factory=list)
    system_flow: List[Any] = field(default_factory=list)
    flows: List[UserFlow] = field(default_factory=list)
    api_endpoints: List[str] = field(default_factory=list)
    cache_dependencies: Optional[CacheDependencies] = None


@dataclass
class IntegrationStatus:
    status: str
    last_verified: Optional[str] = None
    known_issues: List[str] = field(default_factory=list)


@dataclass
class SystemMap:
    """One audited document, normalized."""
    name: str
    path: str
    shape: MapShape = "standard"
    version: Optional[str] = None
    description: Optional[str] = None
    components: Dict[str, ComponentDef] = field(default_factory=dict)
    apis: List[ApiEndpoint] = field(default_factory=list)
    flows: List[UserFlow] = field(default_factory=list)
    features: Dict[str, FeatureDef] = field(default_factory=dict)
    integration_status: Dict[str, IntegrationStatus] = field(default_factory=dict)
    table_of_contents: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[Any] = field(default_factory=list)
    last_updated: Optional[str] = None

    def component_names(self) -> List[str]:
        return sorted(self.components)

    def all_flows(self) -> List[UserFlow]:
        flows = list(self.flows)
        for feature in self.features.values():
            flows.extend(feature.flows)
        return flows

    def component_references(self, include_cache: bool = True) -> Dict[str, List[str]]:
        """Component name -> JSON-pointer-ish locations that mention it."""
        refs: Dict[str, List[str]] = {}
        for feature in self.features.values():
            base = f"#/featureGroups/{feature.group}/features/{feature.name}"
            for name in feature.components:
                refs.setdefault(name, []).append(f"{base}/components")
            if include_cache and feature.cache_dependencies:
                for name in feature.cache_dependencies.refreshes_components:
                    refs.setdefault(name, []).append(f"{base}/apiIntegration/cacheDependencies")
        for section_name, section in self.table_of_contents.items():
            if isinstance(section, dict):
                for name in section.get("components") or []:
                    if isinstance(name, str):
                        refs.setdefault(name, []).append(f"#/tableOfContents/{section_name}")
        return refs

    def feature_component_usage(self) -> Dict[str, List[str]]:
        """Feature name -> component names it uses.

        A standard document counts as a single feature named after itself.
        """
        if self.features:
            return {name: list(f.components) for name, f in sorted(self.features.items())}
        return {self.name: sorted(self.components)}

    def restrict_to_feature(self, feature_name: str) -> "SystemMap":
        """A copy holding only what *feature_name* declares."""
        feature = self.features.get(feature_name)
        if feature is None:
            if feature_name == self.name:
                return self
            raise SystemMapError(f"Feature '{feature_name}' not found", self.path)
        wanted = set(feature.components)
        return SystemMap(
            name=feature_name,
            path=self.path,
            shape=self.shape,
            version=self.version,
            components={n: c for n, c in self.components.items() if n in wanted or c.feature == feature_name},
            apis=[a for a in self.apis if a.feature == feature_name or a.key in feature.api_endpoints],
            flows=list(feature.flows),
            features={feature_name: feature},
            integration_status={
                k: v for k, v in self.integration_status.items() if k == feature_name
            },
            last_updated=self.last_updated,
        )


# ---------------------------------------------------------------------------
# Structure validation
# ---------------------------------------------------------------------------

def classify(raw: Any) -> Optional[MapShape]:
    if not isinstance(raw, dict):
        return None
    if isinstance(raw.get("featureGroups"), dict):
        return "feature-group"
    if any(key in raw for key in ("components", "apis", "flows", "apiEndpoints", "globalComponents")):
        return "standard"
    return None


def validate_structure(raw: Any) -> List[str]:
    """Every schema problem in a raw document. Empty means well-formed."""
    if not isinstance(raw, dict):
        return ["document must be a JSON object"]

    problems: List[str] = []
    if classify(raw) is None:
        problems.append(
            "unsupported document shape: expected 'components'/'apis'/'flows' or 'featureGroups'"
        )

    components = raw.get("components")
    if components is not None:
        if isinstance(components, list):
            for index, comp in enumerate(components):
                if not isinstance(comp, dict) or not comp.get("name") or not comp.get("path"):
                    problems.append(f"components[{index}] missing required 'name' or 'path'")
        elif isinstance(components, dict):
            for name, comp in components.items():
                if not isinstance(comp, dict):
                    problems.append(f"components.{name} must be an object")
        else:
            problems.append("'components' must be an array or an object")

    for key in ("apis", "flows"):
        if key in raw and not isinstance(raw[key], list):
            problems.append(f"'{key}' must be an array")
    for key in ("globalComponents", "apiEndpoints", "tableOfContents"):
        if key in raw and not isinstance(raw[key], dict):
            problems.append(f"'{key}' must be an object")

    for index, api in enumerate(raw.get("apis") or [] if isinstance(raw.get("apis"), list) else []):
        if not isinstance(api, dict) or not api.get("path") or not api.get("method") or not api.get("handler"):
            problems.append(f"apis[{index}] missing required fields (path, method, handler)")
        elif str(api["method"]).upper() not in HTTP_METHODS:
            problems.append(f"apis[{index}] has unknown HTTP method '{api['method']}'")

    for index, flow in enumerate(raw.get("flows") or [] if isinstance(raw.get("flows"), list) else []):
        if not isinstance(flow, dict) or not isinstance(flow.get("steps", []), list):
            problems.append(f"flows[{index}] must be an object with a 'steps' array")

    groups = raw.get("featureGroups")
    if groups is not None:
        if not isinstance(groups, dict):
            problems.append("'featureGroups' must be an object")
        else:
            for group_name, group in groups.items():
                features = group.get("features") if isinstance(group, dict) else None
                if not isinstance(features, dict):
                    problems.append(f"featureGroups.{group_name}.features must be an object")
                    continue
                for feature_name, feature in features.items():
                    problems.extend(_feature_problems(f"featureGroups.{group_name}.features.{feature_name}", feature))

    status_map = raw.get("integrationStatus")
    if status_map is not None:
        if not isinstance(status_map, dict):
            problems.append("'integrationStatus' must be an object")
        else:
            for feature, status in status_map.items():
                if not isinstance(status, dict):
                    problems.append(f"integrationStatus.{feature} must be an object")
                    continue
                if status.get("status") not in FEATURE_STATUSES:
                    problems.append(
                        f"integrationStatus.{feature}.status must be one of {', '.join(FEATURE_STATUSES)}"
                    )
                if not isinstance(status.get("knownIssues", []), list):
                    problems.append(f"integrationStatus.{feature}.knownIssues must be an array")

    return problems


def _feature_problems(where: str, feature: Any) -> List[str]:
    if not isinstance(feature, dict):
        return [f"{where} must be an object"]

    problems: List[str] = []
    for key in ("components", "flows", "userFlow", "systemFlow"):
        if key in feature and not isinstance(feature[key], list):
            problems.append(f"{where}.{key} must be an array")
    if isinstance(feature.get("flows"), list):
        for index, flow in enumerate(feature["flows"]):
            if not isinstance(flow, dict) or not isinstance(flow.get("steps", []), list):
                problems.append(f"{where}.flows[{index}] must be an object with a 'steps' array")

    integration = feature.get("apiIntegration")
    if integration is None:
        return problems
    if not isinstance(integration, dict):
        problems.append(f"{where}.apiIntegration must be an object")
        return problems
    cache = integration.get("cacheDependencies")
    if cache is None:
        return problems
    if not isinstance(cache, dict):
        problems.append(f"{where}.apiIntegration.cacheDependencies must be an object")
        return problems
    for key in ("invalidates", "refreshesComponents", "missingInvalidations"):
        if key in cache and not isinstance(cache[key], list):
            problems.append(f"{where}.apiIntegration.cacheDependencies.{key} must be an array")
    return problems


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _component(name: str, data: Dict[str, Any], feature: Optional[str] = None) -> ComponentDef:
    return ComponentDef(
        name=name,
        path=str(data.get("path", "")),
        type=data.get("type"),
        dependencies=_str_list(data.get("dependencies")),
        uses=_str_list(data.get("uses")),
        invalidates=_str_list(data.get("invalidates")),
        depends_on=_str_list(data.get("dependsOn")),
        description=data.get("description"),
        feature=feature,
        raw=data,
    )


def _flow(data: Dict[str, Any], feature: Optional[str] = None, index: int = 0) -> UserFlow:
    steps = []
    for step in data.get("steps") or []:
        if isinstance(step, str):
            steps.append(FlowStep(action=step, description=step))
        elif isinstance(step, dict):
            steps.append(
                FlowStep(
                    action=str(step.get("action", "")),
                    component=step.get("component"),
                    api=step.get("api"),
                    description=str(step.get("description", "")),
                )
            )
    return UserFlow(
        name=str(data.get("name") or f"flow-{index}"),
        steps=steps,
        description=data.get("description"),
        feature=feature,
    )


def _split_endpoint_key(key: str, declared_method: Any) -> Tuple[str, str]:
    parts = key.split(" ", 1)
    if len(parts) == 2 and parts[0].upper() in HTTP_METHODS:
        return parts[0].upper(), parts[1].strip()
    return str(declared_method or "GET").upper(), key


def normalize(raw: Dict[str, Any], path: str) -> SystemMap:
    """Build the canonical model from an already validated raw document."""
    shape = classify(raw)
    name = raw.get("name")
    if not name or not isinstance(name, str):
        logger.warning("System map %s has no 'name'; using the file stem", path)
        name = Path(path).name.split(".")[0]

    system_map = SystemMap(
        name=name,
        path=path,
        shape=shape or "standard",
        version=raw.get("version"),
        description=raw.get("description"),
        table_of_contents=raw.get("tableOfContents") if isinstance(raw.get("tableOfContents"), dict) else {},
        dependencies=raw.get("dependencies") if isinstance(raw.get("dependencies"), list) else [],
        last_updated=raw.get("lastUpdated"),
    )

    components = raw.get("components")
    if isinstance(components, list):
        for comp in components:
            _add_component(system_map, _component(comp["name"], comp))
    elif isinstance(components, dict):
        for comp_name, comp in components.items():
            _add_component(system_map, _component(comp_name, comp))
    for comp_name, comp in (raw.get("globalComponents") or {}).items():
        if isinstance(comp, dict):
            _add_component(system_map, _component(comp_name, comp))

    for api in raw.get("apis") or []:
        system_map.apis.append(
            ApiEndpoint(
                method=str(api["method"]).upper(),
                path=api["path"],
                handler=api.get("handler"),
                description=api.get("description"),
                request_schema=api.get("requestSchema"),
                response_schema=api.get("responseSchema"),
            )
        )
    for key, api in (raw.get("apiEndpoints") or {}).items():
        api = api if isinstance(api, dict) else {}
        method, endpoint = _split_endpoint_key(key, api.get("method"))
        system_map.apis.append(
            ApiEndpoint(
                method=method,
                path=endpoint,
                handler=api.get("handler") or api.get("handlerFile"),
                description=api.get("description"),
                request_schema=api.get("requestSchema"),
                response_schema=api.get("responseSchema"),
                handler_file=api.get("handlerFile"),
                feature=api.get("feature"),
            )
        )

    for index, flow in enumerate(raw.get("flows") or []):
        system_map.flows.append(_flow(flow, index=index))

    for group_name, group in (raw.get("featureGroups") or {}).items():
        for feature_name, feature in (group.get("features") or {}).items():
            system_map.features[feature_name] = _feature(system_map, group_name, feature_name, feature)

    for feature_name, status in (raw.get("integrationStatus") or {}).items():
        system_map.integration_status[feature_name] = IntegrationStatus(
            status=status["status"],
            last_verified=status.get("lastVerified"),
            known_issues=_str_list(status.get("knownIssues")),
        )
    return system_map


def _add_component(system_map: SystemMap, component: ComponentDef) -> None:
    if component.name in system_map.components:
        logger.debug("Component %s declared twice in %s; keeping the last", component.name, system_map.path)
    system_map.components[component.name] = component


def _feature(system_map: SystemMap, group: str, name: str, data: Any) -> FeatureDef:
    data = data if isinstance(data, dict) else {}
    component_names: List[str] = []
    for comp in data.get("components") or []:
        if isinstance(comp, str):
            component_names.append(comp)
        elif isinstance(comp, dict) and comp.get("name"):
            component_names.append(comp["name"])
            if comp.get("path"):
                _add_component(system_map, _component(comp["name"], comp, feature=name))

    integration = data.get("apiIntegration") if isinstance(data.get("apiIntegration"), dict) else {}
    cache = integration.get("cacheDependencies")
    cache_deps = None
    if isinstance(cache, dict):
        cache_deps = CacheDependencies(
            invalidates=_str_list(cache.get("invalidates")),
            refreshes_components=_str_list(cache.get("refreshesComponents")),
            missing_invalidations=_str_list(cache.get("missingInvalidations")),
        )

    flows = [
        _flow(flow, feature=name, index=i)
        for i, flow in enumerate(data.get("flows") or [])
        if isinstance(flow, dict)
    ]
    return FeatureDef(
        name=name,
        group=group,
        description=str(data.get("description", "")),
        components=component_names,
        user_flow=list(data.get("userFlow") or []),
        system_flow=list(data.get("systemFlow") or []),
        flows=flows,
        api_endpoints=_str_list(integration.get("endpoints") or data.get("apiEndpoints")),
        cache_dependencies=cache_deps,
    )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class SystemMapLoader:
    """Loads documents from disk, resolving ``$ref`` pointers.

    Two reference forms are supported:

    - ``{"$ref": "other.map.json#/json/pointer"}`` anywhere in a document is
      replaced by the referenced value
    - a top-level ``references`` array of ``{"$ref": ...}`` whose targets'
      ``components``/``apis``/``flows``/``dependencies`` are merged in

    Cycles raise ``SystemMapError``.
    """

    def __init__(self, project_root: Path) -> None:
        self.project_root = Path(project_root).resolve()
        self.maps_dir = self.project_root / SYSTEM_MAP_DIRS[0]

    def load(self, path: Path) -> SystemMap:
        path = Path(path)
        raw = self.load_raw(path)
        problems = validate_structure(raw)
        if problems:
            raise SystemMapError("Malformed system map", path, problems)
        return normalize(raw, self._display(path))

    def load_raw(self, path: Path) -> Dict[str, Any]:
        """Read and fully resolve a document without normalizing it."""
        return self._load_resolved(Path(path).resolve(), [])

    def _display(self, path: Path) -> str:
        try:
            return Path(path).resolve().relative_to(self.project_root).as_posix()
        except ValueError:
            return str(path)

    def _read_json(self, path: Path) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise SystemMapError("System map file not found", path) from e
        except json.JSONDecodeError as e:
            raise SystemMapError(f"Invalid JSON ({e.msg} at line {e.lineno})", path) from e
        except UnicodeDecodeError as e:
            raise SystemMapError("File is not valid UTF-8", path) from e
        except OSError as e:
            raise SystemMapError(f"Cannot read file: {e}", path) from e

    def _enter(self, key: str, stack: List[str]) -> List[str]:
        if key in stack:
            chain = " -> ".join(Path(k.split("#")[0]).name for k in stack + [key])
            raise SystemMapError(f"Circular $ref detected: {chain}", stack[0].split("#")[0])
        return stack + [key]

    def _load_resolved(self, path: Path, stack: List[str]) -> Any:
        stack = self._enter(f"{path}#", stack)
        raw = self._read_json(path)
        document = self._resolve_node(raw, raw, path, stack)
        if isinstance(document, dict) and isinstance(document.get("references"), list):
            self._merge_references(document, path, stack)
        return document

    def _resolve_node(self, node: Any, root: Any, path: Path, stack: List[str]) -> Any:
        if isinstance(node, dict):
            if isinstance(node.get("$ref"), str) and set(node) <= {"$ref", "description"}:
                return self._dereference(node["$ref"], root, path, stack)
            # entries of the top-level "references" array are merged, not inlined
            return {
                k: v if k == "references" else self._resolve_node(v, root, path, stack)
                for k, v in node.items()
            }
        if isinstance(node, list):
            return [self._resolve_node(item, root, path, stack) for item in node]
        return node

    def _dereference(self, ref: str, root: Any, path: Path, stack: List[str]) -> Any:
        file_part, _, pointer = ref.partition("#")
        if file_part:
            target = self.resolve_ref_path(file_part, path)
            value = self._apply_pointer(self._load_resolved(target, stack), pointer, ref, path)
            return copy.deepcopy(value)
        local_stack = self._enter(f"{path}#{pointer}", stack)
        value = self._apply_pointer(root, pointer, ref, path)
        return self._resolve_node(copy.deepcopy(value), root, path, local_stack)

    @staticmethod
    def _apply_pointer(value: Any, pointer: str, ref: str, origin: Path) -> Any:
        if not pointer or pointer == "/":
            return value
        for token in pointer.lstrip("/").split("/"):
            token = token.replace("~1", "/").replace("~0", "~")
            if isinstance(value, dict) and token in value:
                value = value[token]
            elif isinstance(value, list) and token.isdigit() and int(token) < len(value):
                value = value[int(token)]
            else:
                raise SystemMapError(f"Unresolvable $ref '{ref}'", origin)
        return value

    def resolve_ref_path(self, ref: str, current: Path) -> Path:
        if ref.startswith("/"):
            return (self.maps_dir / ref[1:]).resolve()
        candidate = (current.parent / ref).resolve()
        if ref.startswith(".") or candidate.exists():
            return candidate
        return (self.maps_dir / ref).resolve()

    def _merge_references(self, document: Dict[str, Any], path: Path, stack: List[str]) -> None:
        for entry in document.get("references") or []:
            if not isinstance(entry, dict) or not isinstance(entry.get("$ref"), str):
                raise SystemMapError("Reference missing $ref field", path)
            referenced = self._dereference(entry["$ref"], document, path, stack)
            if not isinstance(referenced, dict):
                raise SystemMapError(f"Reference '{entry['$ref']}' is not a document", path)
            for key in ("components", "apis", "flows", "dependencies"):
                incoming = referenced.get(key)
                if incoming is None:
                    continue
                current = document.get(key)
                if current is None:
                    document[key] = copy.deepcopy(incoming)
                elif isinstance(current, list) and isinstance(incoming, list):
                    current.extend(copy.deepcopy(incoming))
                elif isinstance(current, dict) and isinstance(incoming, dict):
                    for k, v in incoming.items():
                        current.setdefault(k, copy.deepcopy(v))
                else:
                    raise SystemMapError(
                        f"Cannot merge '{key}' from '{entry['$ref']}': incompatible shapes", path
                    )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self) -> List[Path]:
        """Find system map files under the project root, sorted."""
        found: Set[Path] = set()
        for dirpath, dirnames, filenames in os.walk(self.project_root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS or d in SYSTEM_MAP_DIRS)
            rel_parts = Path(dirpath).relative_to(self.project_root).parts
            in_maps_dir = any(part in SYSTEM_MAP_DIRS for part in rel_parts)
            for filename in filenames:
                if not filename.endswith(".json"):
                    continue
                if in_maps_dir or filename.endswith(".map.json") or filename.startswith("system-map"):
                    found.add(Path(dirpath, filename))
        return sorted(found)
