"""
Database layer for the csvhub record store.
"""
