"""
Admin API

FastAPI router, models, dependencies and middleware for cache administration.
"""
