from sqlalchemy import Column, DateTime, String, Text

from core.db import Base
from tool_models import HealthStatus, utcnow


def tool_id_for(package_name: str, export_name: str) -> str:
    return f"{package_name}::{export_name}"


class HealthRecord(Base):
    __tablename__ = 'health_records'
    tool_id = Column(String(512), primary_key=True)
    package_name = Column(String(255), nullable=False, index=True)
    export_name = Column(String(255), nullable=False)
    import_health = Column(String(16), default=HealthStatus.UNKNOWN.value, nullable=False)
    execution_health = Column(String(16), default=HealthStatus.UNKNOWN.value, nullable=False)
    last_error = Column(Text, nullable=True)
    last_checked_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return (f"<HealthRecord(tool_id='{self.tool_id}', import={self.import_health}, "
                f"execution={self.execution_health})>")
