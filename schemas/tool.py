from pydantic import BaseModel, Field, StrictStr, model_validator
from typing import Optional, Dict, Any, List

from tool_models import ToolReference


class ExecuteToolRequest(BaseModel):
    package_name: StrictStr = Field(alias="packageName")
    name: Optional[StrictStr] = None
    export_name: Optional[StrictStr] = Field(default=None, alias="exportName")
    version: str = "latest"
    import_url: Optional[str] = Field(default=None, alias="importUrl")
    params: Dict[str, Any] = Field(default_factory=dict)
    env: Optional[Dict[str, str]] = None
    timeout_ms: Optional[int] = Field(default=None, alias="timeoutMs", gt=0)
    mode: Optional[str] = None

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def _require_export(self):
        if not (self.name or self.export_name):
            raise ValueError("Missing required field: name")
        return self

    def to_ref(self) -> ToolReference:
        return ToolReference(
            package_name=self.package_name,
            export_name=self.name or self.export_name,
            version=self.version,
            import_url=self.import_url,
        )


class DescribeToolRequest(BaseModel):
    package_name: StrictStr = Field(alias="packageName")
    export_name: StrictStr = Field(alias="exportName")
    version: str = "latest"
    import_url: Optional[str] = Field(default=None, alias="importUrl")
    env: Optional[Dict[str, str]] = None

    class Config:
        populate_by_name = True

    def to_ref(self) -> ToolReference:
        return ToolReference(
            package_name=self.package_name,
            export_name=self.export_name,
            version=self.version,
            import_url=self.import_url,
        )


class ExecuteToolResponse(BaseModel):
    success: bool
    output: Any = None
    error: Optional[str] = None
    execution_time_ms: int = Field(alias="executionTimeMs")

    class Config:
        populate_by_name = True


class ToolDescriptionRead(BaseModel):
    export_name: str = Field(alias="exportName")
    description: str
    input_schema: Dict[str, Any] = Field(alias="inputSchema")

    class Config:
        populate_by_name = True


class DescribeToolResponse(BaseModel):
    success: bool = True
    tool: ToolDescriptionRead


class CacheStatsResponse(BaseModel):
    success: bool = True
    cache_size: int = Field(alias="cacheSize")
    cached_tools: List[str] = Field(alias="cachedTools")

    class Config:
        populate_by_name = True


class CacheClearResponse(BaseModel):
    success: bool = True
    cleared: int
    message: str
