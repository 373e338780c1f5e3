# File: database/models/history_model.py
from sqlalchemy import Column, Integer, String, JSON, Text, DateTime, UniqueConstraint, func
from database.db import Base


class AnalysisHistory(Base):
    __tablename__ = "analysis_history"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Public id handed to clients
    entry_id = Column(String(64), nullable=False, unique=True, index=True)

    user_id = Column(String(255), nullable=False, index=True)

    # History is de-duplicated by title per user
    title = Column(String(500), nullable=False)
    file_name = Column(String(500), nullable=False, default="")

    # Complete AnalysisResult dict
    result = Column(JSON, nullable=False, default=dict)
    document_text = Column(Text, nullable=False, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "title", name="uq_history_user_title"),
    )
