"""
Infrastructure Module

Storage backends and the cache facade.
"""
