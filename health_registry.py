import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from health_classifier import classify_outcome
from models.health_record import HealthRecord, tool_id_for
from tool_models import HealthStatus, utcnow

logger = logging.getLogger(__name__)


class HealthRegistry:
    """Last-write-wins store of per-tool health, keyed by ``package::export``."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_record(self, package_name: str, export_name: str) -> Optional[HealthRecord]:
        result = await self.db.execute(
            select(HealthRecord).where(HealthRecord.tool_id == tool_id_for(package_name, export_name))
        )
        return result.scalars().first()

    async def list_records(self, package_name: Optional[str] = None) -> List[HealthRecord]:
        query = select(HealthRecord)
        if package_name:
            query = query.where(HealthRecord.package_name == package_name)
        result = await self.db.execute(query.order_by(HealthRecord.tool_id))
        return result.scalars().all()

    async def _upsert(self, package_name: str, export_name: str, **fields) -> HealthRecord:
        record = await self.get_record(package_name, export_name)
        if record is None:
            record = HealthRecord(
                tool_id=tool_id_for(package_name, export_name),
                package_name=package_name,
                export_name=export_name,
                import_health=HealthStatus.UNKNOWN.value,
                execution_health=HealthStatus.UNKNOWN.value,
            )
            self.db.add(record)
        self._apply(record, fields)
        try:
            await self.db.commit()
        except IntegrityError:
            # 동시 요청이 먼저 INSERT한 경우: 롤백 후 기존 레코드에 덮어씀
            await self.db.rollback()
            logger.info(f"Concurrent insert for {tool_id_for(package_name, export_name)}, applying as update")
            record = await self.get_record(package_name, export_name)
            self._apply(record, fields)
            await self.db.commit()
        return record

    @staticmethod
    def _apply(record: HealthRecord, fields: dict) -> None:
        for attr, value in fields.items():
            setattr(record, attr, value)
        record.last_checked_at = utcnow()

    async def report(self, package_name: str, export_name: str, success: bool,
                     error: Optional[str] = None, kind: Optional[str] = None) -> HealthRecord:
        """Classify one execution outcome and store it as execution health."""
        status, retained_error = classify_outcome(success, error, kind)
        if not success and status == HealthStatus.HEALTHY:
            logger.info(f"{package_name}/{export_name} failed due to config issue (not broken): {error}")
        record = await self._upsert(
            package_name, export_name,
            execution_health=status.value,
            last_error=retained_error,
        )
        logger.info(f"Health updated for {package_name}/{export_name}: {status.value}")
        return record

    async def record_check(self, package_name: str, export_name: str, import_health: HealthStatus,
                           execution_health: HealthStatus, error: Optional[str] = None) -> HealthRecord:
        record = await self._upsert(
            package_name, export_name,
            import_health=import_health.value,
            execution_health=execution_health.value,
            last_error=error,
        )
        logger.info(f"Health check stored for {record.tool_id}: import={import_health.value}, "
                    f"execution={execution_health.value}")
        return record
