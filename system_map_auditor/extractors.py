"""Source fact extraction for JavaScript/TypeScript files.

Validators never look at raw source directly for structural facts. They ask a
``FactExtractor``:

- ``RegexFactExtractor`` scans with regular expressions (fast, approximate)
- ``TreeSitterFactExtractor`` reads exports, imports and routes from a
  Tree-sitter concrete syntax tree and inherits the lexical scans

``create_extractor`` picks Tree-sitter when the grammars are installed and
falls back to the regex scanner otherwise.
"""

from __future__ import annotations

import importlib
import logging
import re
from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from .models import ImportInfo, MutationSite

logger = logging.getLogger(__name__)

HTTP_METHODS: Tuple[str, ...] = ("GET", "POST", "PUT", "PATCH", "DELETE")

Route = Tuple[str, str, Optional[str]]  # (METHOD, path, handler function)

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------
_NAMED_EXPORT = re.compile(
    r"export\s+(?:declare\s+)?(?:async\s+)?"
    r"(?:const|let|var|function\*?|class|abstract\s+class|interface|type|enum)\s+([A-Za-z_$][\w$]*)"
)
_EXPORT_LIST = re.compile(r"export\s+(?:type\s+)?\{([^}]*)\}")
_DEFAULT_EXPORT = re.compile(r"export\s+default\b")

_IMPORT_FROM = re.compile(
    r"import\s+(?:type\s+)?([\w$*{}\s,]+?)\s+from\s+['\"]([^'\"]+)['\"]", re.S
)
_SIDE_EFFECT_IMPORT = re.compile(r"import\s+['\"]([^'\"]+)['\"]")
_REQUIRE = re.compile(
    r"(?:const|let|var)\s+(?:\{([^}]*)\}|([\w$]+))\s*=\s*require\(\s*['\"]([^'\"]+)['\"]\s*\)"
)

_ROUTE = re.compile(
    r"\b(?:router|app)\.(get|post|put|delete|patch)\s*\(\s*['\"`]([^'\"`]+)['\"`]\s*(?:,\s*([\w$.]+))?"
)

_QUERY_KEY = re.compile(r"queryKey\s*:\s*\[\s*['\"`]([^'\"`]+)['\"`]")
_LEGACY_QUERY_KEY = re.compile(r"useQuery\s*\(\s*\[\s*['\"`]([^'\"`]+)['\"`]")
_INVALIDATION = re.compile(
    r"invalidateQueries\s*\(\s*(?:\{\s*queryKey\s*:\s*)?\[?\s*['\"`]([^'\"`]+)['\"`]"
)
_CLIENT_CALL = re.compile(
    r"\b(?:invalidateQueries|refetchQueries|cancelQueries|removeQueries|setQueryData|getQueryData)\s*(?:<[^>]*>)?\s*\("
)
_USE_QUERY = re.compile(r"useQuery\s*(?:<[^>]*>)?\s*\(\s*\{[^}]*?queryKey\s*:\s*\[\s*['\"`]([^'\"`]+)['\"`]", re.S)
_USE_MUTATION = re.compile(r"\buseMutation\s*(?:<[^>]*>)?\s*\(")
_MUTATION_FN = re.compile(r"mutationFn\s*:")
_MUTATION_ENDPOINT = re.compile(
    r"(?:apiRequest|fetch)\s*\(\s*"
    r"(?:['\"`](?:GET|POST|PUT|PATCH|DELETE)['\"`]\s*,\s*)?"
    r"['\"`]([^'\"`$]+)"
)

_LOADING = re.compile(r"\b(?:isLoading|isPending|isFetching|loading)\b")
_ERROR = re.compile(r"\b(?:isError|error)\b")
_CONSOLE_ERROR = re.compile(r"console\.error")
_TRIGGERS = re.compile(r"\b(refetch|invalidateQueries|refetchQueries)\b")
_CONDITIONAL_TRIGGERS = re.compile(r"\b(enabled|staleTime|refetchInterval|refetchOnWindowFocus)\s*:")
_OPTIMISTIC = re.compile(r"\bsetQueryData\s*\(")

_ENV_PATTERNS = (
    re.compile(r"process\.env\.([A-Z_][A-Z0-9_]*)"),
    re.compile(r"process\.env\[\s*['\"]([A-Z_][A-Z0-9_]*)['\"]\s*\]"),
    re.compile(r"import\.meta\.env\.([A-Z_][A-Z0-9_]*)"),
)
# Provided by the runtime or bundler rather than the deployment
_BUILTIN_ENV = {"NODE_ENV", "DEV", "PROD", "MODE", "SSR", "BASE_URL"}
_URL = re.compile(r"['\"`](https?://[^'\"`\s$]+)")
_LOCAL_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "www.w3.org"}

_EVENT_PROP = re.compile(r"\b(on[A-Z]\w*)\s*[=:]")
_HANDLER_FN = re.compile(r"\bhandle([A-Z]\w*)\b")
_NAVIGATION = re.compile(r"\b(?:navigate|setLocation|useNavigate|useLocation|router\.push|Link)\b")
_JSX = re.compile(r"<(?:[A-Z][\w.]*|div|span|form|button|section|main|ul|p|h[1-6])[\s/>]")

_OPEN_TO_CLOSE = {"(": ")", "{": "}", "[": "]"}
_CLOSERS = set(_OPEN_TO_CLOSE.values())


def line_of(source: str, offset: int) -> int:
    """0-based line number of character *offset*."""
    return source.count("\n", 0, offset)


def match_delimiter(source: str, open_index: int) -> int:
    """Index of the bracket closing the one at *open_index*.

    Skips string literals and comments. Returns ``len(source) - 1`` when the
    block is unterminated.
    """
    stack: List[str] = []
    i = open_index
    n = len(source)
    while i < n:
        ch = source[i]
        if ch in "'\"`":
            i += 1
            while i < n and source[i] != ch:
                if source[i] == "\\":
                    i += 1
                i += 1
        elif source.startswith("//", i):
            newline = source.find("\n", i)
            i = n if newline == -1 else newline
            continue
        elif source.startswith("/*", i):
            close = source.find("*/", i + 2)
            i = n if close == -1 else close + 2
            continue
        elif ch in _OPEN_TO_CLOSE:
            stack.append(_OPEN_TO_CLOSE[ch])
        elif ch in _CLOSERS:
            if stack and stack[-1] == ch:
                stack.pop()
                if not stack:
                    return i
        i += 1
    return n - 1


def _clean_specifier(raw: str) -> str:
    name = raw.strip()
    if name.startswith("type "):
        name = name[5:].strip()
    return name.split(" as ")[0].strip()


# ===================================================================
# Abstract Extractor Interface
# ===================================================================

class FactExtractor(ABC):
    """Capability interface for reading facts out of one source file."""

    name = "abstract"

    # Structural facts ------------------------------------------------

    @abstractmethod
    def exports(self, source: str, file_path: str = "") -> List[str]:
        """Exported names; a default export contributes ``"default"``."""
        ...

    @abstractmethod
    def imports(self, source: str, file_path: str = "") -> List[ImportInfo]:
        """ES module imports and ``require`` calls, in source order."""
        ...

    @abstractmethod
    def routes(self, source: str, file_path: str = "") -> List[Route]:
        """Express-style route registrations."""
        ...

    # Lexical facts ---------------------------------------------------

    @abstractmethod
    def query_keys(self, source: str) -> List[Tuple[str, int]]:
        """(key, line) for every query key read."""
        ...

    @abstractmethod
    def invalidation_keys(self, source: str) -> List[Tuple[str, int]]:
        """(key, line) for every ``invalidateQueries`` call."""
        ...

    @abstractmethod
    def mutations(self, source: str) -> List[MutationSite]:
        ...

    @abstractmethod
    def queries(self, source: str) -> List[str]:
        """Keys of ``useQuery`` calls."""
        ...

    @abstractmethod
    def ui_signals(self, source: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def refresh_triggers(self, source: str) -> List[Tuple[str, int]]:
        """(trigger, line) for every refetch or invalidation call."""
        ...

    @abstractmethod
    def capabilities(self, source: str) -> List[str]:
        ...

    @abstractmethod
    def env_vars(self, source: str) -> List[str]:
        ...

    @abstractmethod
    def external_apis(self, source: str) -> List[str]:
        ...

    @abstractmethod
    def infer_type(self, file_path: str, source: str) -> str:
        ...


# ===================================================================
# Regex Extractor
# ===================================================================

class RegexFactExtractor(FactExtractor):
    """Pattern-matching extractor. Approximate, but needs no grammar."""

    name = "regex"

    def exports(self, source: str, file_path: str = "") -> List[str]:
        names: List[str] = []
        for match in _NAMED_EXPORT.finditer(source):
            names.append(match.group(1))
        for match in _EXPORT_LIST.finditer(source):
            for raw in match.group(1).split(","):
                raw = raw.strip()
                if not raw:
                    continue
                if raw.startswith("type "):
                    raw = raw[5:].strip()
                alias = raw.split(" as ")[-1].strip()
                names.append(alias)
        if _DEFAULT_EXPORT.search(source):
            names.append("default")
        return list(dict.fromkeys(names))

    def imports(self, source: str, file_path: str = "") -> List[ImportInfo]:
        found: List[Tuple[int, ImportInfo]] = []
        for match in _IMPORT_FROM.finditer(source):
            found.append((match.start(), self._parse_import_clause(match.group(1), match.group(2))))
        for match in _SIDE_EFFECT_IMPORT.finditer(source):
            found.append((match.start(), ImportInfo(module=match.group(1))))
        for match in _REQUIRE.finditer(source):
            destructured, binding, module = match.groups()
            if destructured:
                specs = tuple(
                    s.split(":")[0].strip() for s in destructured.split(",") if s.strip()
                )
                found.append((match.start(), ImportInfo(module=module, specifiers=specs)))
            else:
                found.append(
                    (match.start(), ImportInfo(module=module, specifiers=(binding,), is_default=True))
                )
        found.sort(key=lambda item: item[0])
        return [info for _, info in found]

    @staticmethod
    def _parse_import_clause(clause: str, module: str) -> ImportInfo:
        specifiers: List[str] = []
        remainder = clause
        named = re.search(r"\{([^}]*)\}", clause)
        if named:
            remainder = remainder.replace(named.group(0), "")
        namespace = re.search(r"\*\s*as\s+([\w$]+)", remainder)
        if namespace:
            remainder = remainder.replace(namespace.group(0), "")
        default = remainder.strip().strip(",").strip()
        if default:
            specifiers.append(default)
        if namespace:
            specifiers.append(namespace.group(1))
        if named:
            specifiers.extend(
                _clean_specifier(s) for s in named.group(1).split(",") if s.strip()
            )
        return ImportInfo(module=module, specifiers=tuple(specifiers), is_default=bool(default))

    def routes(self, source: str, file_path: str = "") -> List[Route]:
        routes: List[Route] = []
        for match in _ROUTE.finditer(source):
            method, path, handler = match.groups()
            if handler in (None, "async", "function"):
                handler = None
            routes.append((method.upper(), path, handler))
        return routes

    def query_keys(self, source: str) -> List[Tuple[str, int]]:
        # keys passed to invalidateQueries and friends are not reads
        client_calls = [
            (match.start(), match_delimiter(source, match.end() - 1))
            for match in _CLIENT_CALL.finditer(source)
        ]
        keys = []
        for pattern in (_QUERY_KEY, _LEGACY_QUERY_KEY):
            for match in pattern.finditer(source):
                if any(start <= match.start() <= end for start, end in client_calls):
                    continue
                keys.append((match.start(), match.group(1)))
        keys.sort()
        return [(key, line_of(source, pos)) for pos, key in keys]

    def invalidation_keys(self, source: str) -> List[Tuple[str, int]]:
        return [
            (match.group(1), line_of(source, match.start()))
            for match in _INVALIDATION.finditer(source)
        ]

    def mutations(self, source: str) -> List[MutationSite]:
        sites: List[MutationSite] = []
        covered: List[Tuple[int, int]] = []
        for match in _USE_MUTATION.finditer(source):
            open_index = match.end() - 1
            close = match_delimiter(source, open_index)
            block = source[match.start():close + 1]
            fn = _MUTATION_FN.search(block)
            anchor = match.start() + (fn.start() if fn else 0)
            endpoint = _MUTATION_ENDPOINT.search(block)
            sites.append(
                MutationSite(
                    endpoint=endpoint.group(1) if endpoint else None,
                    line=line_of(source, anchor),
                    start=match.start(),
                    end=close + 1,
                    block=block,
                )
            )
            covered.append((match.start(), close + 1))

        # mutationFn declared outside a useMutation call, e.g. shared options
        for match in _MUTATION_FN.finditer(source):
            if any(start <= match.start() < end for start, end in covered):
                continue
            line = line_of(source, match.start())
            lines = source.split("\n")
            end_line = min(len(lines), line + 20)
            end = sum(len(l) + 1 for l in lines[:end_line])
            block = source[match.start():end]
            endpoint = _MUTATION_ENDPOINT.search(block.split("\n", 1)[0]) or _MUTATION_ENDPOINT.search(block)
            sites.append(
                MutationSite(
                    endpoint=endpoint.group(1) if endpoint else None,
                    line=line,
                    start=match.start(),
                    end=end,
                    block=block,
                )
            )
        sites.sort(key=lambda s: s.start)
        return sites

    def queries(self, source: str) -> List[str]:
        return [match.group(1) for match in _USE_QUERY.finditer(source)]

    def ui_signals(self, source: str) -> Dict[str, Any]:
        without_console = _CONSOLE_ERROR.sub("", source)
        triggers = sorted(set(_TRIGGERS.findall(source)))
        conditional = sorted(set(_CONDITIONAL_TRIGGERS.findall(source)))
        return {
            "has_loading_state": bool(_LOADING.search(source)),
            "has_error_state": bool(_ERROR.search(without_console)),
            "refresh_triggers": triggers,
            "conditional_triggers": conditional,
            "has_optimistic_update": bool(_OPTIMISTIC.search(source)),
        }

    def refresh_triggers(self, source: str) -> List[Tuple[str, int]]:
        return [
            (match.group(1), line_of(source, match.start()))
            for match in _TRIGGERS.finditer(source)
        ]

    def capabilities(self, source: str) -> List[str]:
        caps = set()
        if _JSX.search(source):
            caps.add("render")
        caps.update(_EVENT_PROP.findall(source))
        caps.update(f"on{name}" for name in _HANDLER_FN.findall(source))
        if _NAVIGATION.search(source):
            caps.add("navigate")
        return sorted(caps)

    def env_vars(self, source: str) -> List[str]:
        names = set()
        for pattern in _ENV_PATTERNS:
            names.update(pattern.findall(source))
        return sorted(names - _BUILTIN_ENV)

    def external_apis(self, source: str) -> List[str]:
        origins = set()
        for url in _URL.findall(source):
            parsed = urlparse(url)
            if not parsed.hostname or parsed.hostname in _LOCAL_HOSTS:
                continue
            origins.add(f"{parsed.scheme}://{parsed.netloc}")
        return sorted(origins)

    def infer_type(self, file_path: str, source: str) -> str:
        lowered = file_path.lower()
        stem = PurePosixPath(file_path).stem
        if "/hooks/" in lowered or "hook" in PurePosixPath(lowered).name or re.match(r"use[A-Z]", stem):
            return "hook"
        if "service" in lowered or "/api/" in lowered or PurePosixPath(lowered).stem.startswith("api"):
            return "service"
        if lowered.endswith((".tsx", ".jsx")) and (_JSX.search(source) or "React" in source):
            return "component"
        if "return (" in source and "<" in source:
            return "component"
        return "utility"


# ===================================================================
# Tree-sitter Extractor
# ===================================================================

class TreeSitterFactExtractor(RegexFactExtractor):
    """Reads structural facts from a Tree-sitter CST.

    Lexical facts (query keys, UI signals and so on) are inherited from the
    regex scanner. Files whose grammar is unavailable are delegated to the
    regex implementation as a whole.
    """

    name = "tree-sitter"

    # extension -> (grammar module, language function)
    _GRAMMARS: Dict[str, Tuple[str, str]] = {
        ".ts": ("tree_sitter_typescript", "language_typescript"),
        ".tsx": ("tree_sitter_typescript", "language_tsx"),
        ".js": ("tree_sitter_javascript", "language"),
        ".jsx": ("tree_sitter_javascript", "language"),
    }

    _DECLARATION_TYPES = {
        "function_declaration",
        "generator_function_declaration",
        "class_declaration",
        "abstract_class_declaration",
        "interface_declaration",
        "type_alias_declaration",
        "enum_declaration",
    }

    def __init__(self) -> None:
        self._parsers: Dict[str, Any] = {}
        self._init_parsers()

    def _init_parsers(self) -> None:
        try:
            from tree_sitter import Language, Parser as TSParser  # type: ignore[import-untyped]
        except ImportError:
            logger.warning(
                "tree-sitter is not installed -- AST extraction unavailable. "
                "Install with: pip install tree-sitter tree-sitter-typescript"
            )
            return

        for ext, (mod_name, func_name) in self._GRAMMARS.items():
            try:
                mod = importlib.import_module(mod_name)
                ts_lang = Language(getattr(mod, func_name)())
                self._parsers[ext] = TSParser(ts_lang)
                logger.debug("Loaded tree-sitter grammar for %s", ext)
            except ImportError:
                logger.warning(
                    "Grammar package '%s' not installed for '%s' files. Install with: pip install %s",
                    mod_name, ext, mod_name.replace("_", "-"),
                )
            except (AttributeError, TypeError, ValueError) as exc:
                logger.warning("Failed to load grammar for '%s': %s", ext, exc)

    def supports(self, file_path: str) -> bool:
        return PurePosixPath(file_path).suffix in self._parsers

    @property
    def available(self) -> bool:
        return bool(self._parsers)

    # ------------------------------------------------------------------
    # CST helpers
    # ------------------------------------------------------------------

    def _tree(self, source: str, file_path: str) -> Optional[Any]:
        parser = self._parsers.get(PurePosixPath(file_path).suffix)
        if parser is None:
            return None
        return parser.parse(source.encode("utf-8")).root_node

    @staticmethod
    def _walk(root: Any):
        stack = [root]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    @staticmethod
    def _text(node: Any) -> str:
        return node.text.decode("utf-8", errors="replace")

    @classmethod
    def _string_value(cls, node: Any) -> str:
        return cls._text(node).strip("'\"`")

    # ------------------------------------------------------------------
    # Structural facts
    # ------------------------------------------------------------------

    def exports(self, source: str, file_path: str = "") -> List[str]:
        root = self._tree(source, file_path)
        if root is None:
            return super().exports(source, file_path)

        names: List[str] = []
        has_default = False
        for node in self._walk(root):
            if node.type != "export_statement":
                continue
            if any(child.type == "default" for child in node.children):
                has_default = True
                continue
            declaration = node.child_by_field_name("declaration")
            if declaration is not None:
                names.extend(self._declared_names(declaration))
            for child in node.named_children:
                if child.type == "export_clause":
                    for spec in child.named_children:
                        if spec.type != "export_specifier":
                            continue
                        target = spec.child_by_field_name("alias") or spec.child_by_field_name("name")
                        if target is not None:
                            names.append(self._text(target))
        if has_default:
            names.append("default")
        return list(dict.fromkeys(names))

    def _declared_names(self, declaration: Any) -> List[str]:
        if declaration.type in self._DECLARATION_TYPES:
            name = declaration.child_by_field_name("name")
            return [self._text(name)] if name is not None else []
        if declaration.type in ("lexical_declaration", "variable_declaration"):
            names = []
            for child in declaration.named_children:
                if child.type == "variable_declarator":
                    name = child.child_by_field_name("name")
                    if name is not None and name.type == "identifier":
                        names.append(self._text(name))
            return names
        return []

    def imports(self, source: str, file_path: str = "") -> List[ImportInfo]:
        root = self._tree(source, file_path)
        if root is None:
            return super().imports(source, file_path)

        found: List[Tuple[int, ImportInfo]] = []
        for node in self._walk(root):
            if node.type == "import_statement":
                info = self._import_statement(node)
                if info is not None:
                    found.append((node.start_byte, info))
            elif node.type == "variable_declarator":
                info = self._require_declarator(node)
                if info is not None:
                    found.append((node.start_byte, info))
        found.sort(key=lambda item: item[0])
        return [info for _, info in found]

    def _import_statement(self, node: Any) -> Optional[ImportInfo]:
        source_node = node.child_by_field_name("source")
        if source_node is None:
            return None
        module = self._string_value(source_node)
        default: Optional[str] = None
        namespace: List[str] = []
        named: List[str] = []
        for clause in node.named_children:
            if clause.type != "import_clause":
                continue
            for part in clause.named_children:
                if part.type == "identifier":
                    default = self._text(part)
                elif part.type == "namespace_import":
                    namespace.extend(
                        self._text(c) for c in part.named_children if c.type == "identifier"
                    )
                elif part.type == "named_imports":
                    for spec in part.named_children:
                        if spec.type == "import_specifier":
                            name = spec.child_by_field_name("name")
                            if name is not None:
                                named.append(self._text(name))
        specifiers = ([default] if default else []) + namespace + named
        return ImportInfo(module=module, specifiers=tuple(specifiers), is_default=default is not None)

    def _require_declarator(self, node: Any) -> Optional[ImportInfo]:
        value = node.child_by_field_name("value")
        if value is None or value.type != "call_expression":
            return None
        function = value.child_by_field_name("function")
        if function is None or self._text(function) != "require":
            return None
        arguments = value.child_by_field_name("arguments")
        if arguments is None or not arguments.named_children:
            return None
        first = arguments.named_children[0]
        if first.type != "string":
            return None
        module = self._string_value(first)
        name = node.child_by_field_name("name")
        if name is not None and name.type == "identifier":
            return ImportInfo(module=module, specifiers=(self._text(name),), is_default=True)
        specs = []
        if name is not None:
            for child in name.named_children:
                if child.type == "shorthand_property_identifier_pattern":
                    specs.append(self._text(child))
                elif child.type == "pair_pattern":
                    key = child.child_by_field_name("key")
                    if key is not None:
                        specs.append(self._text(key))
        return ImportInfo(module=module, specifiers=tuple(specs))

    def routes(self, source: str, file_path: str = "") -> List[Route]:
        root = self._tree(source, file_path)
        if root is None:
            return super().routes(source, file_path)

        routes: List[Route] = []
        for node in self._walk(root):
            if node.type != "call_expression":
                continue
            function = node.child_by_field_name("function")
            if function is None or function.type != "member_expression":
                continue
            obj = function.child_by_field_name("object")
            prop = function.child_by_field_name("property")
            if obj is None or prop is None or self._text(obj) not in ("router", "app"):
                continue
            method = self._text(prop).upper()
            if method not in HTTP_METHODS:
                continue
            arguments = node.child_by_field_name("arguments")
            args = arguments.named_children if arguments is not None else []
            if not args or args[0].type not in ("string", "template_string"):
                continue
            handler = None
            if len(args) > 1 and args[-1].type in ("identifier", "member_expression"):
                handler = self._text(args[-1])
            routes.append((method, self._string_value(args[0]), handler))
        return routes


# ===================================================================
# Selection
# ===================================================================

def create_extractor(prefer_ast: bool = False) -> FactExtractor:
    """Return the Tree-sitter extractor when requested and usable, else regex."""
    if prefer_ast:
        extractor = TreeSitterFactExtractor()
        if extractor.available:
            logger.info("Using Tree-sitter fact extraction")
            return extractor
        logger.info("Tree-sitter grammars unavailable, falling back to regex extraction")
    return RegexFactExtractor()
