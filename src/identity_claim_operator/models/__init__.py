"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- IdentityClaim specifications and status
- cert-manager Certificate desired spec and observed status
- Shared metadata and status conditions
"""
