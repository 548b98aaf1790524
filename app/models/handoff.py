from sqlalchemy import Column, String, Integer, Boolean, ForeignKey
from .base import BaseModel


class AgentHandoff(BaseModel):
    __tablename__ = 'agent_handoffs'

    cleaner_id = Column(Integer, ForeignKey('cleaners.id'), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey('owners.id'))
    conversation_id = Column(String(64), index=True)
    reason = Column(String(1000), nullable=False)
    resolved = Column(Boolean, default=False, nullable=False)
