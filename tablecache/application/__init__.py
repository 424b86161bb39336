"""
Application Layer

HTTP surface for cache administration.
"""
