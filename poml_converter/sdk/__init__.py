"""
SDK for the POML converter.

Provides the remote conversion client and the identity provider hook.
"""

from .auth import AuthProvider, Provider, StaticAuthProvider
from .gemini_client import Failure, FailureKind, GeminiConversionClient, Success

__all__ = [
    "AuthProvider",
    "Failure",
    "FailureKind",
    "GeminiConversionClient",
    "Provider",
    "StaticAuthProvider",
    "Success",
]
