"""
Adapters package for the ICP lookup service.

Contains the HTTP client for the upstream ICP filing service. The adapter
encapsulates:

- Base URL, auth key derivation and request shapes
- Circuit breaking
- Mapping upstream answers to UpstreamError, flagged cachable only for
  deterministic, domain-specific failures
"""

from .icp_client import IcpClient

__all__ = ["IcpClient"]
