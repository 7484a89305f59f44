"""Python module parser using tree-sitter.

Identifiers are dotted module paths under the source root (``src`` when
present); a package's ``__init__.py`` maps to the package itself.  Both
absolute and relative imports are resolved against the known module set.
FastAPI / Flask route decorators mark HTTP endpoints.
"""

from __future__ import annotations

import re
from collections.abc import Set
from dataclasses import dataclass, field
from pathlib import Path

import tree_sitter_python as tspython
from tree_sitter import Language, Node, Parser

from domaingraph.config.languages import PROJECT_MARKERS
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

PY_LANGUAGE = Language(tspython.language())

ROUTE_DECORATOR_METHODS: dict[str, str] = {
    "get": "GET",
    "post": "POST",
    "put": "PUT",
    "delete": "DELETE",
    "patch": "PATCH",
}

# Checked in order against each dotted part of the module identifier.
MODULE_NAME_KINDS: tuple[tuple[frozenset[str], NodeKind], ...] = (
    (frozenset({"views", "routes", "routers", "api", "endpoints", "controllers"}),
     NodeKind.CONTROLLER),
    (frozenset({"services", "service"}), NodeKind.SERVICE),
    (frozenset({"repositories", "repository", "dao", "crud"}), NodeKind.REPOSITORY),
    (frozenset({"models", "entities"}), NodeKind.ENTITY),
    (frozenset({"schemas", "dto", "serializers"}), NodeKind.DTO),
    (frozenset({"settings", "config", "conf"}), NodeKind.CONFIGURATION),
    (frozenset({"consumers", "listeners", "tasks", "handlers"}), NodeKind.LISTENER),
    (frozenset({"exceptions", "errors"}), NodeKind.EXCEPTION),
    (frozenset({"utils", "helpers", "common"}), NodeKind.UTILITY),
)

_OPTIONAL = re.compile(r"^Optional\[(.+)\]$")


@dataclass
class _PyFunction:
    name: str
    line: int
    parameter_types: list[str]
    exceptions: list[str]
    http_method: str | None = None
    http_path: str | None = None


@dataclass
class _PyModule:
    # local name -> dotted module path the name was imported from (or as)
    imports: dict[str, str] = field(default_factory=dict)
    # raw module references, relative ones keep their leading dots
    modules: list[str] = field(default_factory=list)
    functions: list[_PyFunction] = field(default_factory=list)
    has_main_guard: bool = False


class PythonSourceParser(SourceParser):
    """Parses Python packages using tree-sitter."""

    language = "python"
    extensions = frozenset({".py"})
    excluded_dirs = frozenset({"migrations", "docs", "scripts"})

    def __init__(self) -> None:
        super().__init__()
        self._parser = Parser(PY_LANGUAGE)

    def source_root(self, repo_path: Path) -> Path:
        src = repo_path / "src"
        return src if src.is_dir() else repo_path

    def extract_identifier(self, file_path: Path, source_root: Path) -> str:
        identifier = path_to_identifier(file_path, source_root)
        if identifier.endswith(".__init__"):
            return identifier[: -len(".__init__")]
        return identifier

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def extract_dependencies(
        self, file_path: Path, source_root: Path, known: Set[str]
    ) -> set[str]:
        module = self._analyze(file_path)
        own = self.extract_identifier(file_path, source_root)
        deps: set[str] = set()
        for raw in module.modules + list(module.imports.values()):
            resolved = self._resolve_module(raw, file_path, source_root, known)
            if resolved is not None:
                deps.add(resolved)
        deps.discard(own)
        return deps

    def is_entry_point(self, file_path: Path) -> bool:
        module = self._analyze(file_path)
        return module.has_main_guard or any(f.http_method for f in module.functions)

    def infer_class_type(self, file_path: Path) -> NodeKind:
        module = self._analyze(file_path)
        if any(f.http_method for f in module.functions):
            return NodeKind.CONTROLLER
        parts = [p.lower() for p in self._module_parts(file_path)]
        for part in reversed(parts[-3:]):
            for names, kind in MODULE_NAME_KINDS:
                if part in names:
                    return kind
        return NodeKind.OTHER

    def extract_methods(self, file_path: Path) -> list[StaticMethodInfo]:
        return [
            StaticMethodInfo(
                name=f.name,
                line_number=f.line,
                http_method=f.http_method,
                http_path=f.http_path,
                exceptions=list(f.exceptions),
            )
            for f in self._analyze(file_path).functions
        ]

    def extract_method_parameters(
        self, file_path: Path, source_root: Path, known: Set[str]
    ) -> dict[str, list[str]]:
        module = self._analyze(file_path)
        result: dict[str, list[str]] = {}
        for function in module.functions:
            targets: list[str] = []
            for type_name in function.parameter_types:
                head = type_name.split(".", 1)[0]
                origin = module.imports.get(head)
                if origin is None:
                    continue
                resolved = self._resolve_module(origin, file_path, source_root, known)
                if resolved is not None:
                    targets.append(resolved)
            if targets:
                result[function.name] = targets
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_module(
        self, raw: str, file_path: Path, source_root: Path, known: Set[str]
    ) -> str | None:
        """Resolve an absolute or dot-relative module path to a known identifier.

        ``pkg.mod.Name`` falls back to ``pkg.mod`` when the full path is not a
        module, so imported symbols resolve to the module defining them.
        """
        dotted = raw
        if raw.startswith("."):
            level = len(raw) - len(raw.lstrip("."))
            base = self.extract_identifier(file_path, source_root).split(".")
            if file_path.name != "__init__.py":
                base = base[:-1]
            if level > 1:
                base = base[: len(base) - (level - 1)]
            rest = raw.lstrip(".")
            dotted = ".".join([*base, rest] if rest else base)

        while dotted:
            if dotted in known:
                return dotted
            dotted = dotted.rpartition(".")[0]
        return None

    def _module_parts(self, file_path: Path) -> list[str]:
        """Return the dotted parts of *file_path*'s module name.

        The name is taken relative to the source root of the nearest enclosing
        Python project, so directories above the repository never count.
        Without a project marker the enclosing regular packages bound it.
        """
        markers = dict(PROJECT_MARKERS)["python"]
        for parent in file_path.parents:
            if any((parent / marker).is_file() for marker in markers):
                return self.extract_identifier(file_path, self.source_root(parent)).split(".")

        parts = [] if file_path.stem == "__init__" else [file_path.stem]
        directory = file_path.parent
        while (directory / "__init__.py").is_file():
            parts.insert(0, directory.name)
            directory = directory.parent
        return parts

    def _analyze(self, file_path: Path) -> _PyModule:
        return self._cached("python", file_path, self._parse_file)

    def _parse_file(self, file_path: Path) -> _PyModule:
        content = read_source(file_path)
        tree = self._parser.parse(bytes(content, "utf8"))
        result = _PyModule()

        for child in tree.root_node.named_children:
            match child.type:
                case "import_statement":
                    _extract_import(child, result)
                case "import_from_statement":
                    _extract_import_from(child, result)
                case "function_definition" | "decorated_definition" | "class_definition":
                    _extract_definition(child, result, class_name="")
                case "if_statement":
                    condition = node_text(child.child_by_field_name("condition"))
                    if "__name__" in condition and "__main__" in condition:
                        result.has_main_guard = True
        return result


def _extract_import(node: Node, result: _PyModule) -> None:
    for name in node.children_by_field_name("name"):
        if name.type == "aliased_import":
            module = node_text(name.child_by_field_name("name"))
            result.imports[node_text(name.child_by_field_name("alias"))] = module
        else:
            module = node_text(name)
            result.imports[module.split(".", 1)[0]] = module.split(".", 1)[0]
        result.modules.append(module)


def _extract_import_from(node: Node, result: _PyModule) -> None:
    module = node_text(node.child_by_field_name("module_name"))
    if not module:
        return
    result.modules.append(module)
    separator = "" if module.endswith(".") else "."
    for name in node.children_by_field_name("name"):
        if name.type == "aliased_import":
            imported = node_text(name.child_by_field_name("name"))
            local = node_text(name.child_by_field_name("alias"))
        else:
            imported = local = node_text(name)
        result.imports[local] = f"{module}{separator}{imported}"


def _extract_definition(node: Node, result: _PyModule, class_name: str) -> None:
    decorators: list[Node] = []
    definition = node
    if node.type == "decorated_definition":
        decorators = [c for c in node.children if c.type == "decorator"]
        definition = node.child_by_field_name("definition") or node

    if definition.type == "class_definition":
        name = node_text(definition.child_by_field_name("name"))
        body = definition.child_by_field_name("body")
        if body is not None:
            for member in body.named_children:
                if member.type in ("function_definition", "decorated_definition"):
                    _extract_definition(member, result, class_name=name)
        return

    if definition.type != "function_definition":
        return

    name = node_text(definition.child_by_field_name("name"))
    http_method, http_path = _route_from_decorators(decorators)
    body = definition.child_by_field_name("body")
    result.functions.append(
        _PyFunction(
            name=f"{class_name}.{name}" if class_name else name,
            line=definition.start_point[0] + 1,
            parameter_types=_parameter_types(definition.child_by_field_name("parameters")),
            exceptions=_raised_exceptions(body) if body is not None else [],
            http_method=http_method,
            http_path=http_path,
        )
    )


def _route_from_decorators(decorators: list[Node]) -> tuple[str | None, str | None]:
    for decorator in decorators:
        call = next((c for c in decorator.named_children if c.type == "call"), None)
        if call is None:
            continue
        function = call.child_by_field_name("function")
        if function is None or function.type != "attribute":
            continue
        attr = node_text(function.child_by_field_name("attribute"))
        arguments = call.child_by_field_name("arguments")
        path = None
        methods: list[str] = []
        if arguments is not None:
            for arg in arguments.named_children:
                if arg.type == "string" and path is None:
                    path = _string_value(arg)
                elif arg.type == "keyword_argument":
                    if node_text(arg.child_by_field_name("name")) == "methods":
                        value = arg.child_by_field_name("value")
                        if value is not None:
                            methods = [
                                _string_value(s).upper()
                                for s in value.named_children
                                if s.type == "string"
                            ]
        if attr in ROUTE_DECORATOR_METHODS:
            return ROUTE_DECORATOR_METHODS[attr], path
        if attr == "route":
            return (methods[0] if methods else "GET"), path
    return None, None


def _string_value(node: Node) -> str:
    for child in node.named_children:
        if child.type == "string_content":
            return node_text(child)
    return strip_quotes(node_text(node).lstrip("rbfuRBFU"))


def _parameter_types(parameters: Node | None) -> list[str]:
    if parameters is None:
        return []
    types: list[str] = []
    for param in parameters.named_children:
        if param.type not in ("typed_parameter", "typed_default_parameter"):
            continue
        type_text = node_text(param.child_by_field_name("type")).strip()
        types.append(_normalize_annotation(type_text))
    return [t for t in types if t]


def _normalize_annotation(annotation: str) -> str:
    annotation = strip_quotes(annotation)
    match = _OPTIONAL.match(annotation)
    if match:
        annotation = match.group(1)
    annotation = annotation.split("|", 1)[0].strip()
    return annotation.split("[", 1)[0].strip()


def _raised_exceptions(body: Node) -> list[str]:
    exceptions: list[str] = []
    for statement in iter_descendants(body, frozenset({"raise_statement"})):
        for child in statement.named_children:
            target = child
            if child.type == "call":
                target = child.child_by_field_name("function") or child
            if target.type in ("identifier", "attribute"):
                name = node_text(target)
                if name not in exceptions:
                    exceptions.append(name)
            break
    return exceptions
