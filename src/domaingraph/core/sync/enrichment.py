"""Enrichment collaborator contract and bounded-concurrency batch runner.

An :class:`Enricher` turns source text plus statically extracted facts into
a human description, an optional kind correction and per-method business
logic.  Units are sent in batches; batches run concurrently on a thread
pool.  A failing batch marks only its own units as failed.
"""

from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from domaingraph.config.settings import ENRICHMENT_BATCH_SIZE, MAX_CONCURRENT_ENRICHMENTS
from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.model import MethodEnrichment, NodeKind

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentInput:
    identifier: str
    source_text: str
    language: str
    kind: NodeKind
    method_names: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "sourceText": self.source_text,
            "language": self.language,
            "staticallyInferredKind": self.kind.name,
            "methodNames": list(self.method_names),
        }


@dataclass
class MethodEnrichmentResult:
    method_name: str
    description: str | None = None
    logic_steps: list[str] = field(default_factory=list)


@dataclass
class EnrichmentResult:
    description: str | None = None
    kind_correction: str | None = None
    methods: list[MethodEnrichmentResult] = field(default_factory=list)

    @property
    def corrected_kind(self) -> NodeKind | None:
        """Return the corrected kind, or ``None`` to keep the inferred one."""
        value = (self.kind_correction or "").strip()
        if not value or value.lower() == "null":
            return None
        return NodeKind.from_string(value)

    def method_enrichments(self) -> dict[str, MethodEnrichment]:
        """Map normalized method names to their enrichment."""
        return {
            normalize_method_name(m.method_name): MethodEnrichment(
                description=m.description, business_logic=list(m.logic_steps)
            )
            for m in self.methods
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EnrichmentResult:
        return cls(
            description=data.get("description"),
            kind_correction=data.get("kindCorrection"),
            methods=[
                MethodEnrichmentResult(
                    method_name=m["methodName"],
                    description=m.get("description"),
                    logic_steps=list(m.get("logicSteps") or []),
                )
                for m in data.get("methods", [])
            ],
        )


@runtime_checkable
class Enricher(Protocol):
    """Enriches a batch of units; missing identifiers in the answer count as failed."""

    def enrich(self, units: Sequence[EnrichmentInput]) -> Mapping[str, EnrichmentResult]:
        ...


@dataclass
class EnrichmentOutcome:
    succeeded: dict[str, EnrichmentResult] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)


def normalize_method_name(name: str) -> str:
    """Strip a trailing parenthetical qualifier: ``"save(Order)"`` -> ``"save"``."""
    return name.split("(", 1)[0].strip()


def build_enrichment_input(
    graph: ProjectGraph, repo_path: Path, identifier: str, language: str
) -> EnrichmentInput | None:
    """Collect the enrichment request for one node, or ``None`` if its file is gone."""
    source_file = graph.source_file(identifier)
    if source_file is None:
        return None
    try:
        source_text = (repo_path / source_file).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        logger.warning("Cannot read %s for enrichment", source_file)
        return None
    return EnrichmentInput(
        identifier=identifier,
        source_text=source_text,
        language=language,
        kind=graph.kind(identifier),
        method_names=[m.name for m in graph.methods(identifier)],
    )


def run_enrichment(
    enricher: Enricher,
    units: Sequence[EnrichmentInput],
    batch_size: int = ENRICHMENT_BATCH_SIZE,
    max_workers: int = MAX_CONCURRENT_ENRICHMENTS,
) -> EnrichmentOutcome:
    """Enrich *units* in batches of *batch_size*, at most *max_workers* at a time.

    Never raises for collaborator failures; they are logged and reported in
    :attr:`EnrichmentOutcome.failed`.
    """
    outcome = EnrichmentOutcome()
    if not units:
        return outcome

    batches = [list(units[i : i + batch_size]) for i in range(0, len(units), batch_size)]
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(enricher.enrich, batch): batch for batch in batches}
        for future in as_completed(futures):
            batch = futures[future]
            try:
                answers = future.result()
            except Exception:
                logger.warning("Enrichment batch of %d unit(s) failed", len(batch), exc_info=True)
                outcome.failed.extend(u.identifier for u in batch)
                continue
            for unit in batch:
                result = answers.get(unit.identifier)
                if result is None:
                    outcome.failed.append(unit.identifier)
                else:
                    outcome.succeeded[unit.identifier] = result

    logger.info(
        "Enrichment finished: %d succeeded, %d failed",
        len(outcome.succeeded),
        len(outcome.failed),
    )
    return outcome


class CommandEnricher:
    """Runs an external command per batch, exchanging JSON on stdin/stdout.

    The command receives ``{"units": [...]}`` and must print
    ``{"<identifier>": {description, kindCorrection, methods: [...]}, ...}``.
    """

    def __init__(self, command: list[str], timeout: float = 300.0) -> None:
        if not command:
            raise ValueError("Enricher command must not be empty")
        self._command = command
        self._timeout = timeout

    def enrich(self, units: Sequence[EnrichmentInput]) -> dict[str, EnrichmentResult]:
        payload = json.dumps({"units": [u.to_dict() for u in units]})
        try:
            completed = subprocess.run(
                self._command,
                input=payload,
                capture_output=True,
                text=True,
                check=True,
                timeout=self._timeout,
            )
        except subprocess.CalledProcessError as exc:
            raise RuntimeError(f"Enricher exited with {exc.returncode}: {exc.stderr.strip()}") from exc
        answers = json.loads(completed.stdout or "{}")
        return {key: EnrichmentResult.from_dict(value) for key, value in answers.items()}
