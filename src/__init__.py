"""factgraph: document ingestion into a knowledge graph of entities and facts."""

from factgraph.version import __version__

__all__ = ["__version__"]
