"""Library Import - finalize reconciled candidates into the component library.

Usage:
    from library_import import ImportPipeline

    pipeline = ImportPipeline(extractor, matcher, repository)
    pipeline.extract(path)
    session = await pipeline.match()
    result = pipeline.finalize()
"""

from library_import.models import ImportFailure, ImportProgress, ImportResult, ImportStep
from library_import.finalizer import ComponentRepository, Finalizer
from library_import.pipeline import ImportPipeline

__all__ = [
    "ComponentRepository",
    "Finalizer",
    "ImportFailure",
    "ImportPipeline",
    "ImportProgress",
    "ImportResult",
    "ImportStep",
]
