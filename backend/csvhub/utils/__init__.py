"""
Utility helpers for csvhub.
"""
