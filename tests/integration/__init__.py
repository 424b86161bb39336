"""
Integration tests.

These run against a real Redis (see test_redis_roundtrip.py) and are skipped
when no test database is configured.
"""
