"""
Database models package for csvhub.
"""

from .csv_data import CSVData
from .csv_file import CSVFile
from .file_id_sequence import FileIdSequence
from .user import User

__all__ = [
    "User",
    "CSVFile",
    "CSVData",
    "FileIdSequence",
]
