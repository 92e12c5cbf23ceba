from .python_ingest import IngestResult, ingest_path, ingest_source, iter_python_paths

__all__ = [
    "IngestResult",
    "ingest_path",
    "ingest_source",
    "iter_python_paths",
]
