"""Document ingestion and cited question answering for the student dashboard."""

__version__ = "0.1.0"
