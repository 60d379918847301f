"""
CSV file metadata model.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from ..base import Base


class CSVFile(Base):
    """Metadata for a CSV file held in the record store."""
    __tablename__ = "csv_files"

    # Assigned by the shared file id allocator, never by autoincrement
    id = Column(Integer, primary_key=True, autoincrement=False)

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    filename = Column(String(500), nullable=False)  # stored name under the upload dir
    original_name = Column(String(500), nullable=False)
    row_count = Column(Integer, nullable=False, default=0)
    upload_date = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="csv_files")
    rows = relationship("CSVData", back_populates="csv_file", passive_deletes=True)

    __table_args__ = (
        Index("idx_csv_files_user_uploaded", "user_id", "upload_date"),
    )

    def __repr__(self):
        return f"<CSVFile(id={self.id}, user_id={self.user_id}, name={self.original_name}, rows={self.row_count})>"
