from pydantic import BaseModel, Field, StrictStr
from typing import Optional
from datetime import datetime

from tool_models import HealthStatus


class ReportHealthRequest(BaseModel):
    package_name: StrictStr = Field(alias="packageName", min_length=1)
    export_name: StrictStr = Field(alias="exportName", min_length=1)
    success: bool
    error: Optional[str] = None
    error_kind: Optional[str] = Field(default=None, alias="errorKind")

    class Config:
        populate_by_name = True


class HealthReportData(BaseModel):
    tool_id: str = Field(alias="toolId")
    health_status: HealthStatus = Field(alias="healthStatus")
    health_error: Optional[str] = Field(default=None, alias="healthError")

    class Config:
        populate_by_name = True


class ReportHealthResponse(BaseModel):
    success: bool = True
    data: HealthReportData


class HealthRecordRead(BaseModel):
    tool_id: str = Field(alias="toolId")
    package_name: str = Field(alias="packageName")
    export_name: str = Field(alias="exportName")
    import_health: HealthStatus = Field(alias="importHealth")
    execution_health: HealthStatus = Field(alias="executionHealth")
    last_error: Optional[str] = Field(default=None, alias="lastError")
    last_checked_at: datetime = Field(alias="lastCheckedAt")

    class Config:
        from_attributes = True
        populate_by_name = True
