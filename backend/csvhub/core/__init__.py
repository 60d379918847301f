"""
Core configuration and security for csvhub.
"""
