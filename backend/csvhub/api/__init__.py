"""
HTTP API for csvhub.
"""
