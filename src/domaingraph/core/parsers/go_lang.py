"""Go source parser using tree-sitter.

Go code is organised in packages (directories), but each ``.go`` file
becomes its own node so that identifiers stay unique and map one-to-one to
source files: ``internal/user/service.go`` -> ``internal.user.service``.
Importing an in-module package creates a dependency on every file of that
package.
"""

from __future__ import annotations

from collections.abc import Set
from dataclasses import dataclass, field
from pathlib import Path

import tree_sitter_go as tsgo
from tree_sitter import Language, Node, Parser

from domaingraph.config.ignore import is_ignored_file
from domaingraph.core.graph.model import NodeKind
from domaingraph.core.ingestion.walker import read_source
from domaingraph.core.parsers.base import (
    SourceParser,
    StaticMethodInfo,
    iter_descendants,
    node_text,
    path_to_identifier,
    strip_quotes,
)

GO_LANGUAGE = Language(tsgo.language())

ROUTE_REGISTRATION_CALLS = frozenset(
    {
        "GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS",
        "Get", "Post", "Put", "Delete", "Patch",
        "Handle", "HandleFunc", "Group", "Route", "Any",
    }
)

HANDLER_PARAMETER_TYPES = (
    "http.ResponseWriter",
    "http.Request",
    "gin.Context",
    "echo.Context",
    "fiber.Ctx",
)

# Checked in order; a directory (or file) name containing any of the words
# decides the kind.
DIRECTORY_KINDS: tuple[tuple[tuple[str, ...], NodeKind], ...] = (
    (("handler", "controller", "api", "transport", "http", "rest", "grpc", "endpoint"),
     NodeKind.CONTROLLER),
    (("service", "usecase", "application"), NodeKind.SERVICE),
    (("repository", "repo", "store", "storage", "dao", "persistence", "database"),
     NodeKind.REPOSITORY),
    (("model", "entity", "domain"), NodeKind.ENTITY),
    (("dto", "request", "response", "payload", "schema"), NodeKind.DTO),
    (("config", "cfg", "configuration"), NodeKind.CONFIGURATION),
    (("listener", "consumer", "subscriber", "worker", "queue"), NodeKind.LISTENER),
    (("util", "utils", "helper", "helpers", "middleware", "interceptor", "pkg"),
     NodeKind.UTILITY),
)


@dataclass
class _GoFunction:
    name: str
    line: int
    parameter_types: list[str]
    panics: bool

    @property
    def is_handler(self) -> bool:
        return any(
            handler in param for param in self.parameter_types for handler in HANDLER_PARAMETER_TYPES
        )


@dataclass
class _GoFile:
    package: str = ""
    # alias (or last path segment) -> import path
    imports: dict[str, str] = field(default_factory=dict)
    functions: list[_GoFunction] = field(default_factory=list)
    declared_types: list[str] = field(default_factory=list)
    registers_routes: bool = False


class GoSourceParser(SourceParser):
    """Parses Go modules using tree-sitter."""

    language = "go"
    extensions = frozenset({".go"})
    excluded_dirs = frozenset({"vendor", "testdata", "third_party", "tools"})

    def __init__(self) -> None:
        super().__init__()
        self._parser = Parser(GO_LANGUAGE)

    def source_root(self, repo_path: Path) -> Path:
        return repo_path

    def module_path(self, source_root: Path) -> str:
        """Return the module path declared in ``go.mod`` (empty when absent)."""
        return self._cached("module", source_root, _read_module_path)

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def extract_dependencies(
        self, file_path: Path, source_root: Path, known: Set[str]
    ) -> set[str]:
        go_file = self._analyze(file_path)
        module = self.module_path(source_root)
        own = path_to_identifier(file_path, source_root)

        deps: set[str] = set()
        for import_path in go_file.imports.values():
            package = _package_prefix(import_path, module)
            if package is None:
                continue
            deps.update(k for k in known if k.rpartition(".")[0] == package)
        deps.discard(own)
        return deps

    def is_entry_point(self, file_path: Path) -> bool:
        go_file = self._analyze(file_path)
        if go_file.package == "main" and any(f.name == "main" for f in go_file.functions):
            return True
        return go_file.registers_routes

    def infer_class_type(self, file_path: Path) -> NodeKind:
        go_file = self._analyze(file_path)
        if any(f.is_handler for f in go_file.functions):
            return NodeKind.CONTROLLER
        for name in (file_path.parent.name.lower(), file_path.stem.lower()):
            for words, kind in DIRECTORY_KINDS:
                if any(word in name for word in words):
                    return kind
        return NodeKind.OTHER

    def extract_methods(self, file_path: Path) -> list[StaticMethodInfo]:
        methods: list[StaticMethodInfo] = []
        for function in self._analyze(file_path).functions:
            handler = function.is_handler
            methods.append(
                StaticMethodInfo(
                    name=function.name,
                    line_number=function.line,
                    http_method="GET" if handler else None,
                    http_path="" if handler else None,
                    exceptions=["panic"] if function.panics else [],
                )
            )
        return methods

    def extract_method_parameters(
        self, file_path: Path, source_root: Path, known: Set[str]
    ) -> dict[str, list[str]]:
        go_file = self._analyze(file_path)
        module = self.module_path(source_root)
        result: dict[str, list[str]] = {}

        for function in go_file.functions:
            targets: list[str] = []
            for raw_type in function.parameter_types:
                resolved = self._resolve_type(raw_type, file_path, go_file, module, source_root)
                if resolved is not None and resolved in known:
                    targets.append(resolved)
            if targets:
                result[function.name] = targets
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_type(
        self,
        raw_type: str,
        file_path: Path,
        go_file: _GoFile,
        module: str,
        source_root: Path,
    ) -> str | None:
        type_name = raw_type.lstrip("*[]").removeprefix("...").lstrip("*")
        if "[" in type_name:
            type_name = type_name.split("[", 1)[0]

        qualifier, dot, simple = type_name.rpartition(".")
        if dot:
            import_path = go_file.imports.get(qualifier)
            if import_path is None:
                return None
            package = _package_prefix(import_path, module)
            if package is None:
                return None
            package_dir = source_root.joinpath(*package.split(".")) if package else source_root
        else:
            simple = type_name
            package_dir = file_path.parent

        return self._package_types(package_dir, source_root).get(simple)

    def _package_types(self, package_dir: Path, source_root: Path) -> dict[str, str]:
        def build(directory: Path) -> dict[str, str]:
            types: dict[str, str] = {}
            if not directory.is_dir():
                return types
            for candidate in sorted(directory.glob("*.go")):
                if is_ignored_file(candidate.name):
                    continue
                identifier = path_to_identifier(candidate, source_root)
                for type_name in self._analyze(candidate).declared_types:
                    types.setdefault(type_name, identifier)
            return types

        return self._cached("package-types", package_dir, build)

    def _analyze(self, file_path: Path) -> _GoFile:
        return self._cached("go", file_path, self._parse_file)

    def _parse_file(self, file_path: Path) -> _GoFile:
        content = read_source(file_path)
        tree = self._parser.parse(bytes(content, "utf8"))
        result = _GoFile()

        for child in tree.root_node.named_children:
            match child.type:
                case "package_clause":
                    for sub in child.named_children:
                        result.package = node_text(sub)
                case "import_declaration":
                    for spec in iter_descendants(child, frozenset({"import_spec"})):
                        _add_import(spec, result)
                case "function_declaration" | "method_declaration":
                    result.functions.append(_extract_function(child))
                    body = child.child_by_field_name("body")
                    if body is not None and _registers_routes(body):
                        result.registers_routes = True
                case "type_declaration":
                    for spec in child.named_children:
                        if spec.type in ("type_spec", "type_alias"):
                            result.declared_types.append(
                                node_text(spec.child_by_field_name("name"))
                            )
        return result


def _read_module_path(source_root: Path) -> str:
    go_mod = source_root / "go.mod"
    if not go_mod.is_file():
        return ""
    for line in go_mod.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line.startswith("module "):
            return strip_quotes(line[len("module ") :].strip())
    return ""


def _package_prefix(import_path: str, module: str) -> str | None:
    """Return the dotted directory prefix of an in-module import, else ``None``."""
    if not module:
        return None
    if import_path == module:
        return ""
    if not import_path.startswith(module + "/"):
        return None
    return import_path[len(module) + 1 :].replace("/", ".")


def _add_import(spec: Node, result: _GoFile) -> None:
    import_path = strip_quotes(node_text(spec.child_by_field_name("path")))
    if not import_path:
        return
    alias = node_text(spec.child_by_field_name("name"))
    if alias in ("_", "."):
        alias = ""
    result.imports[alias or import_path.rsplit("/", 1)[-1]] = import_path


def _extract_function(node: Node) -> _GoFunction:
    name = node_text(node.child_by_field_name("name"))
    receiver = node.child_by_field_name("receiver")
    if receiver is not None:
        receiver_type = ""
        for param in receiver.named_children:
            if param.type == "parameter_declaration":
                receiver_type = node_text(param.child_by_field_name("type"))
        receiver_type = receiver_type.lstrip("*").split("[", 1)[0]
        if receiver_type:
            name = f"{receiver_type}.{name}"

    parameter_types: list[str] = []
    parameters = node.child_by_field_name("parameters")
    if parameters is not None:
        for param in parameters.named_children:
            if param.type in ("parameter_declaration", "variadic_parameter_declaration"):
                type_text = node_text(param.child_by_field_name("type"))
                names = param.children_by_field_name("name")
                parameter_types.extend([type_text] * max(1, len(names)))

    body = node.child_by_field_name("body")
    return _GoFunction(
        name=name,
        line=node.start_point[0] + 1,
        parameter_types=parameter_types,
        panics=body is not None and _calls_panic(body),
    )


def _calls_panic(body: Node) -> bool:
    for call in iter_descendants(body, frozenset({"call_expression"})):
        function = call.child_by_field_name("function")
        if function is not None and function.type == "identifier" and node_text(function) == "panic":
            return True
    return False


def _registers_routes(body: Node) -> bool:
    for call in iter_descendants(body, frozenset({"call_expression"})):
        function = call.child_by_field_name("function")
        if function is None or function.type != "selector_expression":
            continue
        if node_text(function.child_by_field_name("field")) in ROUTE_REGISTRATION_CALLS:
            return True
    return False
