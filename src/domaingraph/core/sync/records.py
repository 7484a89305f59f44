"""Conversions between graph metadata and store records.

Shared by fresh analysis and incremental sync, which both stage records from
a freshly extracted graph and write enrichment output back to the store.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace

from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.model import MethodInfo, NodeInfo
from domaingraph.core.storage.base import (
    ClassRecord,
    ClassStore,
    MethodRecord,
    ParameterLinkRecord,
)
from domaingraph.core.sync.enrichment import EnrichmentResult

logger = logging.getLogger(__name__)


def method_records(store: ClassStore, class_id: str, methods: list[MethodInfo]) -> list[MethodRecord]:
    return [
        MethodRecord(
            id=store.new_id(),
            class_id=class_id,
            name=m.name,
            description=m.description,
            business_logic=list(m.business_logic),
            exceptions=list(m.exceptions),
            http_method=m.http_method,
            http_path=m.http_path,
            line_number=m.line_number,
        )
        for m in methods
    ]


def method_info(record: MethodRecord) -> MethodInfo:
    return MethodInfo(
        name=record.name,
        description=record.description,
        business_logic=list(record.business_logic),
        exceptions=list(record.exceptions),
        http_method=record.http_method,
        http_path=record.http_path,
        line_number=record.line_number,
    )


def link_records(graph: ProjectGraph, identifier: str) -> list[ParameterLinkRecord]:
    """Return the persisted form of *identifier*'s parameter links.

    Links whose owner or target has no bound record id are not persisted.
    """
    owner = graph.class_id(identifier)
    if owner is None:
        return []
    records: list[ParameterLinkRecord] = []
    for method_name, links in graph.method_parameters(identifier).items():
        for link in links:
            target = graph.class_id(link.target)
            if target is not None:
                records.append(
                    ParameterLinkRecord(
                        class_id=owner,
                        method_name=method_name,
                        position=link.position,
                        target_class_id=target,
                    )
                )
    return records


def restore_from_store(
    graph: ProjectGraph,
    store: ClassStore,
    record: ClassRecord,
    identifiers_by_class_id: dict[str, str],
) -> None:
    """Copy a persisted node's kind, description, methods and links into *graph*."""
    graph.bind_class_id(record.identifier, record.id)
    graph.set_node_info(record.identifier, NodeInfo(kind=record.kind, description=record.description))
    graph.set_methods(record.identifier, [method_info(m) for m in store.methods_for(record.id)])
    graph.clear_method_parameters(record.identifier)
    for link in store.parameter_links_for(record.id):
        target = identifiers_by_class_id.get(link.target_class_id)
        if target is not None:
            graph.add_method_parameter(record.identifier, link.method_name, link.position, target)


def apply_enrichment_result(
    graph: ProjectGraph,
    store: ClassStore,
    identifier: str,
    result: EnrichmentResult,
) -> bool:
    """Apply one enrichment answer to the graph and write it through to the store."""
    if not graph.apply_enrichment(
        identifier, result.corrected_kind, result.description, result.method_enrichments()
    ):
        return False

    class_id = graph.class_id(identifier)
    if class_id is None:
        return True
    record = store.get_class(class_id)
    if record is not None:
        store.save_classes(
            [replace(record, kind=graph.kind(identifier), description=graph.description(identifier))]
        )

    by_name = {m.name: m for m in graph.methods(identifier)}
    updated = [
        replace(m, description=by_name[m.name].description, business_logic=list(by_name[m.name].business_logic))
        for m in store.methods_for(class_id)
        if m.name in by_name
    ]
    if updated:
        store.save_methods(updated)
    return True


def write_back_enrichment(
    graph: ProjectGraph,
    store: ClassStore,
    answers: Mapping[str, EnrichmentResult],
) -> list[str]:
    """Apply every answer in *answers*, one unit at a time.

    A unit whose write-back raises is logged and its graph metadata and
    records are put back as they were; the others are unaffected.

    Returns:
        The identifiers whose write-back failed.
    """
    failed: list[str] = []
    for identifier, answer in answers.items():
        info = graph.node_info(identifier)
        methods = [replace(m, business_logic=list(m.business_logic)) for m in graph.methods(identifier)]
        class_id = graph.class_id(identifier)
        record = store.get_class(class_id) if class_id is not None else None
        method_rows = store.methods_for(class_id) if class_id is not None else []
        try:
            apply_enrichment_result(graph, store, identifier, answer)
        except Exception:
            logger.warning("Could not store enrichment of %s", identifier, exc_info=True)
            failed.append(identifier)
            if info is not None:
                graph.set_node_info(identifier, info)
            graph.set_methods(identifier, methods)
            if record is None:
                continue
            try:
                store.save_classes([record])
                store.save_methods(method_rows)
            except Exception:
                logger.error("Could not restore records of %s", identifier, exc_info=True)
    return failed


@dataclass
class ProjectSnapshot:
    """Every record a project owns, as read at one point in time."""

    project: str
    classes: list[ClassRecord]
    methods: list[MethodRecord]
    links: list[ParameterLinkRecord]


def snapshot_project(store: ClassStore, project: str) -> ProjectSnapshot:
    classes = store.find_by_project(project)
    return ProjectSnapshot(
        project=project,
        classes=classes,
        methods=[m for record in classes for m in store.methods_for(record.id)],
        links=[link for record in classes for link in store.parameter_links_for(record.id)],
    )


def restore_project(store: ClassStore, snapshot: ProjectSnapshot) -> None:
    """Replace the project's records in *store* with those in *snapshot*."""
    current = store.find_by_project(snapshot.project)
    if current:
        store.delete_classes([r.id for r in current])
    store.save_classes(snapshot.classes)
    store.save_methods(snapshot.methods)
    store.save_parameter_links(snapshot.links)
