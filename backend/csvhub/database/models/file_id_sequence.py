"""
Shared file id sequence.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from ..base import Base


class FileIdSequence(Base):
    """One row per minted file id, whichever backend ends up holding the file."""
    __tablename__ = "file_id_sequence"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    backend = Column(String(32), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<FileIdSequence(id={self.id}, backend={self.backend})>"
