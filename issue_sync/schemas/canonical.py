from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class CanonicalProject(BaseModel):
    """Template-rendered project shape consumed by the project mapper."""
    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    issue_key: Optional[str] = Field(default=None, alias="issueKey")
    project_name: Optional[str] = Field(default=None, alias="projectName")
    description: Optional[str] = None
    status: Optional[str] = None
    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    custom_fields: Optional[Dict[str, Any]] = Field(default=None, alias="customFields")
    labels: Optional[List[Any]] = None
    components: Optional[List[Any]] = None
