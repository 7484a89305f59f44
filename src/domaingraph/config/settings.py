"""Tunable defaults shared by the CLI and the core engine."""

from __future__ import annotations

STATE_DIR_NAME = ".domaingraph"

# Files above this size are skipped during discovery.
MAX_FILE_SIZE_BYTES = 5 * 1024 * 1024

ENRICHMENT_BATCH_SIZE = 20
MAX_CONCURRENT_ENRICHMENTS = 5

STATE_DIR_ENV = "DOMAINGRAPH_STATE_DIR"
ANALYZER_CMD_ENV = "DOMAINGRAPH_ANALYZER_CMD"
ENRICHER_CMD_ENV = "DOMAINGRAPH_ENRICHER_CMD"
