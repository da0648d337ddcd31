from sqlalchemy import Column, DateTime, Integer, String

from core.db import Base
from tool_models import utcnow


class CallRecord(Base):
    __tablename__ = 'call_records'
    id = Column(Integer, primary_key=True, index=True)
    identity = Column(String(255), nullable=False, index=True)
    called_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<CallRecord(identity='{self.identity}', called_at={self.called_at})>"
