from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from suggestion_relay.core.database import Base


class LindyResponse(Base):
    __tablename__ = "lindy_responses"

    id = Column(Integer, primary_key=True)
    business_id = Column(String(64), nullable=False)
    question_id = Column(String(32), nullable=False)
    role = Column(String(32), nullable=False, default="external-agent")
    content_json = Column(Text, nullable=False)
    suggestions_json = Column(Text, nullable=False)
    idempotency_key = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


Index(
    "ix_lindy_responses_business_question_created",
    LindyResponse.business_id,
    LindyResponse.question_id,
    LindyResponse.created_at,
)
