"""
KIRINUKI RG test suite

Structure:
- unit/: resolver, rules, stores, helpers, metadata client
- integration/: FastAPI app through TestClient
- conftest.py: temporary asset trees and settings
"""
