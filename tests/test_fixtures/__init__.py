"""
Test fixture factories.
"""
