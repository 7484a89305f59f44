"""Java source parser using tree-sitter.

Identifiers are fully-qualified class names derived from the path under
``src/main/java``.  Dependencies come from import declarations plus
same-package type references; entry points, node kinds and HTTP endpoints
come from Spring stereotype and mapping annotations.
"""

from __future__ import annotations

import re
from collections.abc import Set
from dataclasses import dataclass, field
from pathlib import Path

import tree_sitter_java as tsjava
from tree_sitter import Language, Node, Parser

from domaingraph.core.graph.model import NodeKind
from domaingraph.core.ingestion.walker import read_source
from domaingraph.core.parsers.base import (
    SourceParser,
    StaticMethodInfo,
    iter_descendants,
    node_text,
    strip_quotes,
)

JAVA_LANGUAGE = Language(tsjava.language())

SOURCE_ROOTS = ("src/main/java", "src")

ENTRY_POINT_ANNOTATIONS = frozenset(
    {
        "RestController",
        "Controller",
        "KafkaListener",
        "Scheduled",
        "EventListener",
        "SpringBootApplication",
    }
)

ANNOTATION_KINDS: dict[str, NodeKind] = {
    "RestController": NodeKind.CONTROLLER,
    "Controller": NodeKind.CONTROLLER,
    "Service": NodeKind.SERVICE,
    "Repository": NodeKind.REPOSITORY,
    "Configuration": NodeKind.CONFIGURATION,
    "Entity": NodeKind.ENTITY,
    "KafkaListener": NodeKind.LISTENER,
    "EventListener": NodeKind.LISTENER,
}

LISTENER_METHOD_ANNOTATIONS = frozenset({"KafkaListener", "EventListener"})

HTTP_METHOD_ANNOTATIONS: dict[str, str] = {
    "GetMapping": "GET",
    "PostMapping": "POST",
    "PutMapping": "PUT",
    "DeleteMapping": "DELETE",
    "PatchMapping": "PATCH",
}

# Checked in order against the simple class name when no annotation decides.
NAME_SUFFIX_KINDS: tuple[tuple[tuple[str, ...], NodeKind], ...] = (
    (("Exception", "Error"), NodeKind.EXCEPTION),
    (("Dto", "DTO", "Request", "Response"), NodeKind.DTO),
    (("Config", "Configuration"), NodeKind.CONFIGURATION),
    (("Util", "Utils", "Helper", "Helpers"), NodeKind.UTILITY),
    (("Controller", "Resource"), NodeKind.CONTROLLER),
    (("Service", "ServiceImpl"), NodeKind.SERVICE),
    (("Repository", "Dao"), NodeKind.REPOSITORY),
    (("Listener", "Consumer"), NodeKind.LISTENER),
)

_TYPE_DECLARATIONS = frozenset(
    {
        "class_declaration",
        "interface_declaration",
        "enum_declaration",
        "record_declaration",
        "annotation_type_declaration",
    }
)

_GENERICS = re.compile(r"<.*>")


@dataclass
class _Annotation:
    name: str
    arguments: dict[str, str] = field(default_factory=dict)


@dataclass
class _JavaMethod:
    name: str
    line: int
    annotations: list[_Annotation]
    parameter_types: list[str]
    exceptions: list[str]


@dataclass
class _JavaImport:
    name: str
    is_static: bool = False
    is_wildcard: bool = False


@dataclass
class _JavaFile:
    package: str = ""
    imports: list[_JavaImport] = field(default_factory=list)
    type_name: str = ""
    annotations: list[_Annotation] = field(default_factory=list)
    methods: list[_JavaMethod] = field(default_factory=list)
    type_references: set[str] = field(default_factory=set)


class JavaSourceParser(SourceParser):
    """Parses Java sources using tree-sitter."""

    language = "java"
    extensions = frozenset({".java"})

    def __init__(self) -> None:
        super().__init__()
        self._parser = Parser(JAVA_LANGUAGE)

    def source_root(self, repo_path: Path) -> Path:
        for candidate in SOURCE_ROOTS:
            if (repo_path / candidate).is_dir():
                return repo_path / candidate
        return repo_path

    def extract_dependencies(
        self, file_path: Path, source_root: Path, known: Set[str]
    ) -> set[str]:
        java_file = self._analyze(file_path)
        own = self._qualified(java_file, java_file.type_name or file_path.stem)
        deps: set[str] = set()

        for imp in java_file.imports:
            if imp.is_wildcard:
                continue
            target = imp.name.rsplit(".", 1)[0] if imp.is_static else imp.name
            if target in known:
                deps.add(target)

        for simple in java_file.type_references:
            candidate = self._qualified(java_file, simple)
            if candidate in known:
                deps.add(candidate)

        deps.discard(own)
        return deps

    def is_entry_point(self, file_path: Path) -> bool:
        java_file = self._analyze(file_path)
        if any(a.name in ENTRY_POINT_ANNOTATIONS for a in java_file.annotations):
            return True
        return any(
            a.name in ENTRY_POINT_ANNOTATIONS
            for method in java_file.methods
            for a in method.annotations
        )

    def infer_class_type(self, file_path: Path) -> NodeKind:
        java_file = self._analyze(file_path)
        for annotation in java_file.annotations:
            kind = ANNOTATION_KINDS.get(annotation.name)
            if kind is not None:
                return kind

        for method in java_file.methods:
            if any(a.name in LISTENER_METHOD_ANNOTATIONS for a in method.annotations):
                return NodeKind.LISTENER

        name = java_file.type_name or file_path.stem
        for suffixes, kind in NAME_SUFFIX_KINDS:
            if name.endswith(suffixes):
                return kind
        return NodeKind.OTHER

    def extract_methods(self, file_path: Path) -> list[StaticMethodInfo]:
        java_file = self._analyze(file_path)
        prefix = None
        for annotation in java_file.annotations:
            if annotation.name == "RequestMapping":
                prefix = _mapping_path(annotation)

        methods: list[StaticMethodInfo] = []
        for method in java_file.methods:
            http_method, http_path = _http_mapping(method.annotations)
            if http_method is not None:
                http_path = _join_paths(prefix, http_path)
            methods.append(
                StaticMethodInfo(
                    name=method.name,
                    line_number=method.line,
                    http_method=http_method,
                    http_path=http_path,
                    exceptions=list(method.exceptions),
                )
            )
        return methods

    def extract_method_parameters(
        self, file_path: Path, source_root: Path, known: Set[str]
    ) -> dict[str, list[str]]:
        java_file = self._analyze(file_path)
        import_map = {
            imp.name.rsplit(".", 1)[-1]: imp.name
            for imp in java_file.imports
            if not imp.is_static and not imp.is_wildcard
        }

        result: dict[str, list[str]] = {}
        for method in java_file.methods:
            targets = []
            for raw_type in method.parameter_types:
                resolved = self._resolve_type(raw_type, java_file, import_map, known)
                if resolved is not None:
                    targets.append(resolved)
            if targets:
                result[method.name] = targets
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_type(
        self,
        raw_type: str,
        java_file: _JavaFile,
        import_map: dict[str, str],
        known: Set[str],
    ) -> str | None:
        type_name = _normalize_type(raw_type)
        if not type_name:
            return None
        if "." in type_name and type_name in known:
            return type_name
        imported = import_map.get(type_name)
        if imported is not None and imported in known:
            return imported
        same_package = self._qualified(java_file, type_name)
        if same_package in known:
            return same_package
        return None

    @staticmethod
    def _qualified(java_file: _JavaFile, simple: str) -> str:
        return f"{java_file.package}.{simple}" if java_file.package else simple

    def _analyze(self, file_path: Path) -> _JavaFile:
        return self._cached("java", file_path, self._parse_file)

    def _parse_file(self, file_path: Path) -> _JavaFile:
        content = read_source(file_path)
        tree = self._parser.parse(bytes(content, "utf8"))
        result = _JavaFile()

        declarations: list[Node] = []
        for child in tree.root_node.named_children:
            match child.type:
                case "package_declaration":
                    result.package = _declared_name(child)
                case "import_declaration":
                    result.imports.append(_extract_import(child))
                case t if t in _TYPE_DECLARATIONS:
                    declarations.append(child)

        primary = _primary_declaration(declarations, file_path.stem)
        if primary is not None:
            result.type_name = node_text(primary.child_by_field_name("name"))
            result.annotations = _annotations(primary)
            result.methods = _extract_methods(primary)

        result.type_references = {
            node_text(n) for n in iter_descendants(tree.root_node, frozenset({"type_identifier"}))
        }
        return result


def _declared_name(node: Node) -> str:
    for child in node.named_children:
        if child.type in ("scoped_identifier", "identifier"):
            return node_text(child)
    return ""


def _extract_import(node: Node) -> _JavaImport:
    child_types = {child.type for child in node.children}
    return _JavaImport(
        name=_declared_name(node),
        is_static="static" in child_types,
        is_wildcard="asterisk" in child_types,
    )


def _primary_declaration(declarations: list[Node], stem: str) -> Node | None:
    for declaration in declarations:
        if node_text(declaration.child_by_field_name("name")) == stem:
            return declaration
    return declarations[0] if declarations else None


def _annotations(declaration: Node) -> list[_Annotation]:
    annotations: list[_Annotation] = []
    for child in declaration.children:
        if child.type != "modifiers":
            continue
        for modifier in child.named_children:
            if modifier.type not in ("marker_annotation", "annotation"):
                continue
            name = node_text(modifier.child_by_field_name("name")).rsplit(".", 1)[-1]
            annotations.append(
                _Annotation(name=name, arguments=_annotation_arguments(modifier))
            )
    return annotations


def _annotation_arguments(annotation: Node) -> dict[str, str]:
    arguments = annotation.child_by_field_name("arguments")
    if arguments is None:
        return {}
    values: dict[str, str] = {}
    for child in arguments.named_children:
        if child.type == "element_value_pair":
            key = node_text(child.child_by_field_name("key"))
            values[key] = _annotation_value(child.child_by_field_name("value"))
        elif child.type not in ("line_comment", "block_comment"):
            values["value"] = _annotation_value(child)
    return values


def _annotation_value(node: Node | None) -> str:
    if node is None:
        return ""
    if node.type == "element_value_array_initializer":
        elements = node.named_children
        return _annotation_value(elements[0]) if elements else ""
    if node.type == "string_literal":
        return strip_quotes(node_text(node))
    return node_text(node)


def _extract_methods(declaration: Node) -> list[_JavaMethod]:
    body = declaration.child_by_field_name("body")
    if body is None:
        return []

    methods: list[_JavaMethod] = []
    for member in body.named_children:
        if member.type not in ("method_declaration", "constructor_declaration"):
            continue
        methods.append(
            _JavaMethod(
                name=node_text(member.child_by_field_name("name")),
                line=member.start_point[0] + 1,
                annotations=_annotations(member),
                parameter_types=_parameter_types(member.child_by_field_name("parameters")),
                exceptions=_thrown_types(member),
            )
        )
    return methods


def _parameter_types(parameters: Node | None) -> list[str]:
    if parameters is None:
        return []
    types: list[str] = []
    for param in parameters.named_children:
        match param.type:
            case "formal_parameter":
                types.append(node_text(param.child_by_field_name("type")))
            case "spread_parameter":
                for child in param.named_children:
                    if child.type not in ("modifiers", "variable_declarator"):
                        types.append(node_text(child))
                        break
    return types


def _thrown_types(method: Node) -> list[str]:
    for child in method.children:
        if child.type == "throws":
            return [node_text(t) for t in child.named_children]
    return []


def _normalize_type(raw_type: str) -> str:
    type_name = _GENERICS.sub("", raw_type)
    type_name = type_name.replace("...", "").replace("[]", "")
    return type_name.strip()


def _mapping_path(annotation: _Annotation) -> str | None:
    for key in ("value", "path"):
        if key in annotation.arguments:
            return annotation.arguments[key]
    return None


def _http_mapping(annotations: list[_Annotation]) -> tuple[str | None, str | None]:
    for annotation in annotations:
        verb = HTTP_METHOD_ANNOTATIONS.get(annotation.name)
        if verb is not None:
            return verb, _mapping_path(annotation)
        if annotation.name == "RequestMapping":
            method = annotation.arguments.get("method")
            verb = method.rsplit(".", 1)[-1].upper() if method else "GET"
            return verb, _mapping_path(annotation)
    return None, None


def _join_paths(prefix: str | None, path: str | None) -> str | None:
    if not prefix:
        return path
    if not path:
        return prefix
    return prefix.rstrip("/") + "/" + path.lstrip("/")
