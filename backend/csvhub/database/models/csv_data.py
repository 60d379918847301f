"""
CSV row model.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import relationship

from ..base import Base


class CSVData(Base):
    """A single CSV record; row 0 is the header."""
    __tablename__ = "csv_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(Integer, ForeignKey("csv_files.id", ondelete="CASCADE"), nullable=False)
    row_number = Column(Integer, nullable=False)
    row_data = Column(Text, nullable=False)  # JSON array of strings
    is_header = Column(Boolean, nullable=False, default=False)

    # Relationships
    csv_file = relationship("CSVFile", back_populates="rows")

    # Indexes
    __table_args__ = (
        Index("idx_csv_data_file_id", "file_id"),
        Index("idx_csv_data_row_number", "file_id", "row_number"),
        Index("idx_csv_data_header", "file_id", "is_header"),
    )

    def __repr__(self):
        return f"<CSVData(file_id={self.file_id}, row_number={self.row_number}, header={self.is_header})>"
