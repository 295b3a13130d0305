from sqlalchemy import Column, DateTime, String, Text, func

from suggestion_relay.core.database import Base


class Business(Base):
    __tablename__ = "businesses"

    id = Column(String(64), primary_key=True)
    organization_id = Column(String(64), index=True, nullable=True)
    name = Column(String(255), nullable=False)
    website_url = Column(String(512), nullable=True)
    website_context = Column(Text, nullable=True)
    industry = Column(String(255), nullable=True)
    business_type = Column(String(64), nullable=True)
    linkedin_url = Column(String(512), nullable=True)
    # lista JSON; linhas antigas guardam como string
    files_uploaded = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
