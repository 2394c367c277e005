"""
Tests package - Test suite for the IdentityClaim operator.

Contains:
- unit/: Unit tests for individual components, run against in-memory
  fakes of the Kubernetes API
"""
