"""
tablecache

Two-tier (Redis + local disk) stale-while-revalidate cache for the table-store
admin application.
"""

__version__ = "1.0.0"
