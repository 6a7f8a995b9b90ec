"""Content Guardian ingestion core: scheduling, change detection and analysis hand-off."""

__version__ = "0.1.0"
