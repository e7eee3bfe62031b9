"""Test package for geowhisper.

This package contains:
- Unit tests per component (geo, clustering, towers, activity, proximity, stores)
- Service-level tests (test_service.py)
- Test configuration (conftest.py)
"""
