"""
CaseGate Integrations Package

Clients for the case-management authority, the generation engine and the
federated identity provider.
"""

from .authority_client import CaseAuthorityClient
from .base import CaseAuthority, GenerationEngine

__all__ = [
    "CaseAuthority",
    "CaseAuthorityClient",
    "GenerationEngine",
]
