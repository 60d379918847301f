"""
Business services for csvhub.
"""
