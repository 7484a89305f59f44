"""Map a stack trace onto a project graph.

:func:`parse_stack_trace` pulls frames out of Java, Python, Node.js and Go
traces.  :func:`build_context` resolves each frame to a graph node and
method, records the frames that could not be resolved, and lists the graph
neighbours of every matched node as related context.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.model import MethodInfo

_JAVA_FRAME = re.compile(r"^\s*at\s+([\w$.]+)\.([\w$<>]+)\(([^:)]*)(?::(\d+))?\)")
_PYTHON_FRAME = re.compile(r'^\s*File "([^"]+)", line (\d+), in (\S+)')
_NODE_FRAME = re.compile(r"^\s*at\s+(?:(?:async\s+)?(\S+)\s+\()?([^()\s]+?):(\d+):\d+\)?\s*$")
_GO_FUNCTION = re.compile(r"^([\w./-]+?)\.(?:\(\*?(\w+)\)\.)?(\w+)\(.*\)\s*$")
_GO_LOCATION = re.compile(r"^\s+(\S+\.go):(\d+)")


@dataclass(frozen=True)
class StackFrame:
    class_name: str
    method_name: str
    line_number: int | None = None
    file_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "className": self.class_name,
            "methodName": self.method_name,
            "lineNumber": self.line_number,
            "filePath": self.file_path,
        }


@dataclass
class ContextEntry:
    order: int
    class_name: str
    method_name: str | None
    class_type: str | None = None
    description: str | None = None
    business_logic: list[str] = field(default_factory=list)
    http_endpoint: str | None = None
    found: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "className": self.class_name,
            "methodName": self.method_name,
            "classType": self.class_type,
            "description": self.description,
            "businessLogic": list(self.business_logic),
            "httpEndpoint": self.http_endpoint,
            "found": self.found,
        }


@dataclass
class CodeContext:
    execution_path: list[ContextEntry] = field(default_factory=list)
    missing: list[StackFrame] = field(default_factory=list)
    related: list[ContextEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "executionPath": [e.to_dict() for e in self.execution_path],
            "missingContext": [f.to_dict() for f in self.missing],
            "relatedDependencies": [e.to_dict() for e in self.related],
        }


def parse_stack_trace(text: str) -> list[StackFrame]:
    """Extract frames from a stack trace, innermost first as printed.

    Lines that are not frames (exception messages, ``Caused by``, Go
    goroutine headers) are ignored.
    """
    frames: list[StackFrame] = []
    lines = text.splitlines()
    for index, line in enumerate(lines):
        java = _JAVA_FRAME.match(line)
        if java:
            class_name = java.group(1).split("$", 1)[0]
            frames.append(
                StackFrame(
                    class_name=class_name,
                    method_name=java.group(2),
                    line_number=int(java.group(4)) if java.group(4) else None,
                    file_path=java.group(3) or None,
                )
            )
            continue

        python = _PYTHON_FRAME.match(line)
        if python:
            frames.append(
                StackFrame(
                    class_name="",
                    method_name=python.group(3),
                    line_number=int(python.group(2)),
                    file_path=python.group(1),
                )
            )
            continue

        node = _NODE_FRAME.match(line)
        if node:
            function = node.group(1) or ""
            owner, _, method = function.rpartition(".")
            frames.append(
                StackFrame(
                    class_name=owner,
                    method_name=method,
                    line_number=int(node.group(3)),
                    file_path=node.group(2),
                )
            )
            continue

        go = _GO_FUNCTION.match(line)
        if go and index + 1 < len(lines):
            location = _GO_LOCATION.match(lines[index + 1])
            if location:
                frames.append(
                    StackFrame(
                        class_name=go.group(2) or go.group(1).rpartition("/")[2],
                        method_name=go.group(3),
                        line_number=int(location.group(2)),
                        file_path=location.group(1),
                    )
                )
    return frames


def match_frame(graph: ProjectGraph, frame: StackFrame) -> str | None:
    """Return the identifier a frame belongs to, or ``None``.

    Tries the frame's class name as an identifier, then the longest node
    source file that the frame's file path ends with.
    """
    if frame.class_name and graph.contains(frame.class_name):
        return frame.class_name

    if frame.file_path:
        path = frame.file_path.replace("\\", "/")
        best: str | None = None
        best_length = 0
        for identifier, source_file in graph.iter_nodes():
            if (path == source_file or path.endswith("/" + source_file)) and len(source_file) > best_length:
                best, best_length = identifier, len(source_file)
        if best is not None:
            return best
        # Java frames only carry the bare file name.
        name = PurePosixPath(path).name
        if frame.class_name and name.endswith(".java"):
            simple = frame.class_name.rpartition(".")[2]
            for identifier in graph.identifiers():
                if identifier.rpartition(".")[2] == simple:
                    return identifier
    return None


def _find_method(graph: ProjectGraph, identifier: str, name: str) -> MethodInfo | None:
    for method in graph.methods(identifier):
        if method.name == name or method.name.endswith("." + name):
            return method
    return None


def _entry(order: int, graph: ProjectGraph, identifier: str, method: MethodInfo | None) -> ContextEntry:
    info = graph.node_info(identifier)
    return ContextEntry(
        order=order,
        class_name=identifier,
        method_name=method.name if method is not None else None,
        class_type=info.kind.name if info is not None else None,
        description=method.description if method is not None else graph.description(identifier),
        business_logic=list(method.business_logic) if method is not None else [],
        http_endpoint=method.http_endpoint if method is not None else None,
        found=True,
    )


def build_context(graph: ProjectGraph, frames: list[StackFrame]) -> CodeContext:
    context = CodeContext()
    matched: list[str] = []

    for order, frame in enumerate(frames, start=1):
        identifier = match_frame(graph, frame)
        if identifier is None:
            context.missing.append(frame)
            context.execution_path.append(
                ContextEntry(order=order, class_name=frame.class_name, method_name=frame.method_name)
            )
            continue

        method = _find_method(graph, identifier, frame.method_name)
        if method is None:
            context.missing.append(frame)
            context.execution_path.append(
                ContextEntry(
                    order=order,
                    class_name=identifier,
                    method_name=frame.method_name,
                    class_type=graph.kind(identifier).name,
                )
            )
            continue

        context.execution_path.append(_entry(order, graph, identifier, method))
        if identifier not in matched:
            matched.append(identifier)

    neighbours: set[str] = set()
    for identifier in matched:
        neighbours |= graph.resolve(identifier)
    neighbours -= set(matched)

    order = 1
    for identifier in graph.identifiers():
        if identifier not in neighbours:
            continue
        methods = graph.methods(identifier)
        if not methods:
            context.related.append(_entry(order, graph, identifier, None))
            order += 1
        for method in methods:
            context.related.append(_entry(order, graph, identifier, method))
            order += 1
    return context
