"""
Pytest fixtures for the relay test suite.

Fixtures are organized by concern:
- http_mocking: stub upstreams, response builders and failing transports
"""
