from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from suggestion_relay.core.database import Base


class LindyRequestLog(Base):
    __tablename__ = "lindy_request_logs"

    id = Column(Integer, primary_key=True)
    business_id = Column(String(64), index=True, nullable=True)
    question_id = Column(String(32), nullable=True)
    direction = Column(String(16), nullable=False)  # outgoing / incoming
    endpoint = Column(String(1024), nullable=False)
    method = Column(String(8), nullable=False, default="POST")
    payload_json = Column(Text, nullable=True)
    response_status = Column(Integer, nullable=True)
    response_body_json = Column(Text, nullable=True)
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


Index("ix_lindy_request_logs_business_created", LindyRequestLog.business_id, LindyRequestLog.created_at)
