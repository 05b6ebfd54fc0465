"""Core module - shared models, configuration, storage and observability.

This module contains the canonical data models, error types, artifact
storage and logging/metrics used by every other package. It has no
knowledge of matching, reconciliation or persistence rules.
"""

__version__ = "1.0.0"
