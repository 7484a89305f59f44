"""domaingraph: cross-file dependency graphs with incremental git sync."""

__version__ = "0.1.0"
