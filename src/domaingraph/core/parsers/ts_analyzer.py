"""Per-file analysis of TypeScript / JavaScript modules.

The module parser delegates AST work to a :class:`FileAnalyzer` that honours
a fixed request/response contract:

* request: ``{content, filePath, frameworkName}``
* response: ``{classType, entryPoint, methods: [{name, lineNumber, httpMethod,
  httpPath, parameterTypes}], imports: [{importedName, localName, source}]}``

Two implementations ship here: :class:`TreeSitterFileAnalyzer` runs in
process on tree-sitter grammars, and :class:`SubprocessFileAnalyzer` speaks
the same contract as newline-delimited JSON to an external command (for
example a Node.js script wrapping a Babel-based extractor).
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Protocol, runtime_checkable

import tree_sitter_javascript as tsjavascript
import tree_sitter_typescript as tstypescript
from tree_sitter import Language, Node, Parser

from domaingraph.core.errors import ParseFailure
from domaingraph.core.graph.model import NodeKind
from domaingraph.core.parsers.base import node_text, strip_quotes

logger = logging.getLogger(__name__)

TS_LANGUAGE = Language(tstypescript.language_typescript())
TSX_LANGUAGE = Language(tstypescript.language_tsx())
JS_LANGUAGE = Language(tsjavascript.language())

_LANGUAGE_BY_SUFFIX: dict[str, Language] = {
    ".ts": TS_LANGUAGE,
    ".tsx": TSX_LANGUAGE,
    ".js": JS_LANGUAGE,
    ".jsx": JS_LANGUAGE,
}

DECORATOR_HTTP_METHODS: dict[str, str] = {
    "Get": "GET",
    "Post": "POST",
    "Put": "PUT",
    "Delete": "DELETE",
    "Patch": "PATCH",
}

NEXTJS_HTTP_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"})

EXPRESS_RECEIVERS = frozenset({"app", "router"})
EXPRESS_METHODS = frozenset({"get", "post", "put", "delete", "patch", "all", "use"})

ENTRY_POINT_FILENAMES = frozenset(
    {"main.ts", "main.js", "index.ts", "index.js", "app.ts", "app.js", "server.ts", "server.js"}
)

# Checked in order against the lower-cased file name.
FILENAME_KINDS: tuple[tuple[str, NodeKind], ...] = (
    (".controller.", NodeKind.CONTROLLER),
    (".service.", NodeKind.SERVICE),
    (".repository.", NodeKind.REPOSITORY),
    (".entity.", NodeKind.ENTITY),
    (".dto.", NodeKind.DTO),
    (".config.", NodeKind.CONFIGURATION),
    (".middleware.", NodeKind.UTILITY),
    (".guard.", NodeKind.UTILITY),
    (".interceptor.", NodeKind.UTILITY),
    (".pipe.", NodeKind.UTILITY),
    (".filter.", NodeKind.UTILITY),
    (".exception.", NodeKind.EXCEPTION),
    (".listener.", NodeKind.LISTENER),
    (".module.", NodeKind.CONFIGURATION),
)

_FUNCTION_VALUES = frozenset({"arrow_function", "function_expression", "function"})
_CLASS_NODES = frozenset({"class_declaration", "abstract_class_declaration", "class"})
_NEXT_DYNAMIC_SEGMENT = re.compile(r"\[([^\]]+)\]")


# ---------------------------------------------------------------------------
# Contract types
# ---------------------------------------------------------------------------


@dataclass
class FrameworkInfo:
    """Framework detected from ``package.json``."""

    name: str = "unknown"
    source_root: str = "src"
    features: dict[str, str] = field(default_factory=dict)


@dataclass
class AnalyzedMethod:
    name: str
    line_number: int | None = None
    http_method: str | None = None
    http_path: str | None = None
    parameter_types: list[str] = field(default_factory=list)


@dataclass
class RawImport:
    imported_name: str
    local_name: str
    source: str


@dataclass
class FileAnalysis:
    """Analyzer output for one file."""

    kind: NodeKind = NodeKind.OTHER
    entry_point: bool = False
    methods: list[AnalyzedMethod] = field(default_factory=list)
    imports: list[RawImport] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "classType": self.kind.name,
            "entryPoint": self.entry_point,
            "methods": [
                {
                    "name": m.name,
                    "lineNumber": m.line_number,
                    "httpMethod": m.http_method,
                    "httpPath": m.http_path,
                    "parameterTypes": list(m.parameter_types),
                }
                for m in self.methods
            ],
            "imports": [
                {"importedName": i.imported_name, "localName": i.local_name, "source": i.source}
                for i in self.imports
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileAnalysis:
        return cls(
            kind=NodeKind.from_string(data.get("classType")),
            entry_point=bool(data.get("entryPoint")),
            methods=[
                AnalyzedMethod(
                    name=m["name"],
                    line_number=m.get("lineNumber"),
                    http_method=m.get("httpMethod"),
                    http_path=m.get("httpPath"),
                    parameter_types=list(m.get("parameterTypes") or []),
                )
                for m in data.get("methods", [])
            ],
            imports=[
                RawImport(
                    imported_name=i.get("importedName", ""),
                    local_name=i.get("localName", ""),
                    source=i.get("source", ""),
                )
                for i in data.get("imports", [])
            ],
        )


@runtime_checkable
class FileAnalyzer(Protocol):
    """Analyzes one module at a time; acquired once per parse run."""

    def analyze(self, content: str, file_path: str, framework_name: str) -> FileAnalysis:
        """Analyze *content* of the repo-relative *file_path*."""
        ...

    def close(self) -> None:
        """Release the analyzer's resources."""
        ...


# ---------------------------------------------------------------------------
# Framework detection
# ---------------------------------------------------------------------------

# Checked in order; first dependency present wins.
_FRAMEWORKS: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("@nestjs/core",), "nestjs", "src"),
    (("next",), "nextjs", "src"),
    (("nuxt", "nuxt3"), "nuxt", "src"),
    (("@angular/core",), "angular", "src"),
    (("vue",), "vue", "src"),
    (("@remix-run/node", "@remix-run/react"), "remix", "app"),
    (("@sveltejs/kit",), "sveltekit", "src"),
    (("astro",), "astro", "src"),
    (("fastify",), "fastify", "src"),
    (("express",), "express", "src"),
)


def detect_framework(package_json: str) -> FrameworkInfo:
    """Detect the framework and source root from ``package.json`` content."""
    try:
        pkg = json.loads(package_json)
    except ValueError:
        return FrameworkInfo()
    if not isinstance(pkg, dict):
        return FrameworkInfo()

    deps: dict[str, Any] = {}
    deps.update(pkg.get("dependencies") or {})
    deps.update(pkg.get("devDependencies") or {})

    features: dict[str, str] = {}
    if "typescript" in deps:
        features["typescript"] = "true"

    for markers, name, source_root in _FRAMEWORKS:
        if any(marker in deps for marker in markers):
            if name in ("nestjs", "angular"):
                features["decorators"] = "true"
            return FrameworkInfo(name=name, source_root=source_root, features=features)
    return FrameworkInfo(features=features)


# ---------------------------------------------------------------------------
# In-process analyzer
# ---------------------------------------------------------------------------


class TreeSitterFileAnalyzer:
    """Implements the per-file contract with tree-sitter grammars."""

    def __init__(self) -> None:
        self._parsers: dict[str, Parser] = {}

    def close(self) -> None:
        self._parsers.clear()

    def _parser_for(self, file_path: str) -> Parser:
        suffix = PurePosixPath(file_path).suffix
        language = _LANGUAGE_BY_SUFFIX.get(suffix, TS_LANGUAGE)
        parser = self._parsers.get(suffix)
        if parser is None:
            parser = Parser(language)
            self._parsers[suffix] = parser
        return parser

    def analyze(self, content: str, file_path: str, framework_name: str) -> FileAnalysis:
        tree = self._parser_for(file_path).parse(content.encode("utf-8"))
        result = FileAnalysis()
        is_route_file = framework_name == "nextjs" and "route." in file_path

        stack = [tree.root_node]
        while stack:
            node = stack.pop()
            if not node.is_named:
                continue
            match node.type:
                case "import_statement":
                    result.imports.extend(_extract_imports(node))
                case t if t in _CLASS_NODES:
                    _apply_class_decorators(node, result)
                case "method_definition" | "public_field_definition" | "field_definition":
                    method = _extract_class_member(node)
                    if method is not None:
                        result.methods.append(method)
                case "function_declaration" | "generator_function_declaration":
                    name = node_text(node.child_by_field_name("name"))
                    if name:
                        result.methods.append(
                            _function_method(name, node, node, file_path, is_route_file)
                        )
                case "variable_declarator":
                    _extract_declarator(node, file_path, is_route_file, result)
                case "pair":
                    method = _extract_object_property(node)
                    if method is not None:
                        result.methods.append(method)
                case "call_expression":
                    if _is_express_route(node):
                        result.entry_point = True
                        if result.kind is NodeKind.OTHER:
                            result.kind = NodeKind.CONTROLLER
            stack.extend(reversed(node.children))

        if any(m.http_method for m in result.methods):
            result.entry_point = True
        if result.kind is NodeKind.OTHER:
            result.kind = kind_from_filename(file_path)
        if not result.entry_point:
            result.entry_point = PurePosixPath(file_path).name in ENTRY_POINT_FILENAMES
        return result


def kind_from_filename(file_path: str) -> NodeKind:
    filename = PurePosixPath(file_path).name.lower()
    for marker, kind in FILENAME_KINDS:
        if marker in filename:
            return kind
    return NodeKind.OTHER


def nextjs_route_path(file_path: str) -> str | None:
    """Map ``.../app/users/[id]/route.ts`` to ``/users/:id``."""
    index = file_path.find("app/")
    if index < 0:
        return None
    after_app = file_path[index + 4 :]
    route_index = after_app.rfind("/route.")
    if route_index < 0:
        return None
    return _NEXT_DYNAMIC_SEGMENT.sub(r":\1", "/" + after_app[:route_index])


def _string_value(node: Node) -> str:
    for child in node.children:
        if child.type == "string_fragment":
            return node_text(child)
    return strip_quotes(node_text(node))


def _extract_imports(node: Node) -> list[RawImport]:
    source_node = node.child_by_field_name("source")
    if source_node is None:
        return []
    source = _string_value(source_node)

    imports: list[RawImport] = []
    for child in node.children:
        if child.type != "import_clause":
            continue
        for clause_child in child.children:
            match clause_child.type:
                case "identifier":
                    imports.append(RawImport("default", node_text(clause_child), source))
                case "namespace_import":
                    for ns_child in clause_child.children:
                        if ns_child.type == "identifier":
                            imports.append(RawImport("*", node_text(ns_child), source))
                case "named_imports":
                    for spec in clause_child.named_children:
                        if spec.type != "import_specifier":
                            continue
                        name = node_text(spec.child_by_field_name("name"))
                        alias = node_text(spec.child_by_field_name("alias"))
                        imports.append(RawImport(name, alias or name, source))
    return imports


def _decorator_name_and_path(decorator: Node) -> tuple[str, str | None]:
    for child in decorator.named_children:
        if child.type == "call_expression":
            name = node_text(child.child_by_field_name("function"))
            path = None
            arguments = child.child_by_field_name("arguments")
            if arguments is not None:
                for arg in arguments.named_children:
                    if arg.type in ("string", "template_string"):
                        path = _string_value(arg)
                    break
            return name, path
        if child.type in ("identifier", "member_expression"):
            return node_text(child), None
    return "", None


def _decorators_of(node: Node) -> list[Node]:
    """Return decorators attached to *node*, wherever the grammar put them."""
    decorators = [c for c in node.children if c.type == "decorator"]

    sibling = node.prev_named_sibling
    while sibling is not None and sibling.type == "decorator":
        decorators.insert(0, sibling)
        sibling = sibling.prev_named_sibling

    parent = node.parent
    if parent is not None and parent.type == "export_statement":
        decorators.extend(c for c in parent.children if c.type == "decorator")
    return decorators


def _apply_class_decorators(node: Node, result: FileAnalysis) -> None:
    for decorator in _decorators_of(node):
        name, _ = _decorator_name_and_path(decorator)
        match name:
            case "Controller":
                result.kind = NodeKind.CONTROLLER
                result.entry_point = True
            case "Injectable":
                if result.kind is NodeKind.OTHER:
                    result.kind = NodeKind.SERVICE
            case "Component" | "Directive" | "Pipe":
                result.kind = NodeKind.UTILITY
            case "NgModule":
                result.kind = NodeKind.CONFIGURATION


def _parameter_types(params: Node | None) -> list[str]:
    if params is None:
        return []
    types: list[str] = []
    for param in params.named_children:
        if param.type not in ("required_parameter", "optional_parameter"):
            continue
        for child in param.children:
            if child.type != "type_annotation":
                continue
            type_name = _type_reference_name(child)
            if type_name:
                types.append(type_name)
    return types


def _type_reference_name(annotation: Node) -> str:
    for child in annotation.named_children:
        if child.type == "type_identifier":
            return node_text(child)
        if child.type == "generic_type":
            name = child.child_by_field_name("name")
            if name is not None and name.type == "type_identifier":
                return node_text(name)
    return ""


def _extract_class_member(node: Node) -> AnalyzedMethod | None:
    if node.type == "method_definition":
        function = node
    else:
        function = node.child_by_field_name("value")
        if function is None or function.type not in _FUNCTION_VALUES:
            return None

    name_node = node.child_by_field_name("name") or node.child_by_field_name("property")
    name = node_text(name_node)
    if not name:
        return None

    http_method = http_path = None
    for decorator in _decorators_of(node):
        decorator_name, path = _decorator_name_and_path(decorator)
        verb = DECORATOR_HTTP_METHODS.get(decorator_name)
        if verb is not None:
            http_method, http_path = verb, path
            break

    return AnalyzedMethod(
        name=name,
        line_number=node.start_point[0] + 1,
        http_method=http_method,
        http_path=http_path,
        parameter_types=_parameter_types(function.child_by_field_name("parameters")),
    )


def _function_method(
    name: str, anchor: Node, function: Node, file_path: str, is_route_file: bool
) -> AnalyzedMethod:
    http_method = name if is_route_file and name in NEXTJS_HTTP_METHODS else None
    return AnalyzedMethod(
        name=name,
        line_number=anchor.start_point[0] + 1,
        http_method=http_method,
        http_path=nextjs_route_path(file_path) if http_method else None,
        parameter_types=_parameter_types(function.child_by_field_name("parameters")),
    )


def _extract_declarator(
    node: Node, file_path: str, is_route_file: bool, result: FileAnalysis
) -> None:
    name_node = node.child_by_field_name("name")
    value = node.child_by_field_name("value")
    if name_node is None or name_node.type != "identifier" or value is None:
        return
    name = node_text(name_node)

    if value.type in _FUNCTION_VALUES:
        result.methods.append(_function_method(name, node, value, file_path, is_route_file))
        return

    if value.type != "call_expression":
        return
    callee = node_text(value.child_by_field_name("function"))
    arguments = value.child_by_field_name("arguments")
    first_arg = arguments.named_children[0] if arguments and arguments.named_children else None
    if first_arg is None:
        return
    if callee == "require" and first_arg.type == "string":
        result.imports.append(RawImport("default", name, _string_value(first_arg)))
    elif first_arg.type in _FUNCTION_VALUES:
        result.methods.append(_function_method(name, node, first_arg, file_path, is_route_file))


def _extract_object_property(node: Node) -> AnalyzedMethod | None:
    key = node.child_by_field_name("key")
    value = node.child_by_field_name("value")
    if key is None or key.type != "property_identifier" or value is None:
        return None
    if value.type not in _FUNCTION_VALUES:
        return None
    return AnalyzedMethod(
        name=node_text(key),
        line_number=node.start_point[0] + 1,
        parameter_types=_parameter_types(value.child_by_field_name("parameters")),
    )


def _is_express_route(node: Node) -> bool:
    function = node.child_by_field_name("function")
    if function is None or function.type != "member_expression":
        return False
    receiver = function.child_by_field_name("object")
    prop = function.child_by_field_name("property")
    return (
        receiver is not None
        and receiver.type == "identifier"
        and node_text(receiver) in EXPRESS_RECEIVERS
        and node_text(prop) in EXPRESS_METHODS
    )


# ---------------------------------------------------------------------------
# External analyzer
# ---------------------------------------------------------------------------


class SubprocessFileAnalyzer:
    """Runs an external analyzer process speaking newline-delimited JSON.

    Each request is one JSON object per line on the process's stdin; the
    process answers with one :meth:`FileAnalysis.to_dict`-shaped object per
    line on stdout, or ``{"error": "..."}``.  The process is started lazily
    on the first request and terminated by :meth:`close`.
    """

    def __init__(self, command: list[str], timeout: float = 5.0) -> None:
        if not command:
            raise ValueError("Analyzer command must not be empty")
        self._command = command
        self._timeout = timeout
        self._process: subprocess.Popen[str] | None = None

    def _ensure_process(self) -> subprocess.Popen[str]:
        if self._process is None or self._process.poll() is not None:
            logger.debug("Starting analyzer process: %s", " ".join(self._command))
            self._process = subprocess.Popen(
                self._command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                text=True,
                encoding="utf-8",
            )
        return self._process

    def analyze(self, content: str, file_path: str, framework_name: str) -> FileAnalysis:
        process = self._ensure_process()
        request = {"content": content, "filePath": file_path, "frameworkName": framework_name}
        assert process.stdin is not None and process.stdout is not None
        try:
            process.stdin.write(json.dumps(request) + "\n")
            process.stdin.flush()
            line = process.stdout.readline()
        except OSError as exc:
            raise ParseFailure(file_path, f"analyzer process failed: {exc}") from exc

        if not line:
            raise ParseFailure(file_path, "analyzer process closed its output")
        try:
            payload = json.loads(line)
        except ValueError as exc:
            raise ParseFailure(file_path, f"invalid analyzer response: {exc}") from exc
        if "error" in payload:
            raise ParseFailure(file_path, str(payload["error"]))
        return FileAnalysis.from_dict(payload)

    def close(self) -> None:
        process, self._process = self._process, None
        if process is None:
            return
        if process.stdin is not None:
            process.stdin.close()
        try:
            process.wait(timeout=self._timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Analyzer process did not exit; killing it")
            process.kill()
            process.wait()
        if process.stdout is not None:
            process.stdout.close()
