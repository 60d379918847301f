"""
Command line tools for csvhub.
"""
