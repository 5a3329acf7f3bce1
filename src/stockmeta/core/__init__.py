"""
Core functionality for stockmeta package.

This package contains the credential pool and rotation policy, the
single-item generator, the batch orchestrator and the metadata
processing and export helpers.
"""

from .batch import BatchOrchestrator
from .credentials import (
    CredentialNotFoundError,
    CredentialPool,
    CredentialRotator,
    InvalidCredentialError,
)
from .export import ExportError, build_platform_csv, write_platform_csv
from .generation import (
    ExhaustedRetriesError,
    GenerationError,
    MetadataGenerator,
    NoCredentialError,
)
from .metadata import parse_response, post_process
from .state import KeyStateError, load_key_state, save_key_state

__all__ = [
    "BatchOrchestrator",
    "CredentialPool",
    "CredentialRotator",
    "CredentialNotFoundError",
    "InvalidCredentialError",
    "MetadataGenerator",
    "GenerationError",
    "NoCredentialError",
    "ExhaustedRetriesError",
    "ExportError",
    "build_platform_csv",
    "write_platform_csv",
    "parse_response",
    "post_process",
    "KeyStateError",
    "load_key_state",
    "save_key_state",
]
