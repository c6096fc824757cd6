"""storyrag: hybrid retrieval and ingestion core for long-form document translation."""

__version__ = "0.1.0"
