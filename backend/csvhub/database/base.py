"""
Declarative base for the record store models.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
