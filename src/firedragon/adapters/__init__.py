"""Source and sink adapters.

Importing this package registers every bundled adapter.
"""

from firedragon.adapters.base import (
    AdapterError,
    SinkAdapter,
    SinkError,
    SourceAdapter,
    SourceError,
    create_sink,
    create_source,
    register_sink,
    register_source,
)
from firedragon.adapters import etherscan, firefly, json_file, null  # noqa: F401

__all__ = [
    "AdapterError",
    "SinkAdapter",
    "SinkError",
    "SourceAdapter",
    "SourceError",
    "create_sink",
    "create_source",
    "register_sink",
    "register_source",
]
