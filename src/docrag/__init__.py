"""docrag - retrieval-augmented question answering over a single document."""

__version__ = "0.1.0"
