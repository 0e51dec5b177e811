"""GitHub integration modules.

Split into:
  - api.py  : all HTTP calls to the GitHub REST API
  - types.py: small shared data structures

The pipeline's reporter and event loader act as the orchestration layer.
"""
