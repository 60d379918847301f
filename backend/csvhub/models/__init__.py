"""
Pydantic models for the csvhub API.
"""
