"""Conversion backends."""

from converter_api.conversion.backends.base import (
    PROFILE_LADDER,
    PROFILES,
    ConversionBackend,
    ConversionResult,
    PerformanceProfile,
    ProgressCallback,
    degrade,
    get_profile,
)
from converter_api.conversion.backends.factory import BackendFactory, create_backend
from converter_api.conversion.backends.local_pipeline import LocalPipelineBackend
from converter_api.conversion.backends.remote_api import RemoteApiBackend

__all__ = [
    "PROFILE_LADDER",
    "PROFILES",
    "BackendFactory",
    "ConversionBackend",
    "ConversionResult",
    "LocalPipelineBackend",
    "PerformanceProfile",
    "ProgressCallback",
    "RemoteApiBackend",
    "create_backend",
    "degrade",
    "get_profile",
]
