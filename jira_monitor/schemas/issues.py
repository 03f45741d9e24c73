from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# Une issue résumée, telle que renvoyée par /monitor/fetch
class IssueSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str
    title: str = Field(alias="summary")
    status: str
    created: Optional[str] = None  # ISO 8601 tel que fourni par Jira
    assignee: Optional[str] = None
    reporter: Optional[str] = None
    priority: Optional[str] = None
    age_days: int = Field(default=0, alias="timeOpenDays")


class ProcessedIssues(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int = 0
    items: List[IssueSummary] = Field(default_factory=list, alias="issues")
    counts_by_status: Dict[str, int] = Field(default_factory=dict, alias="statusCounts")
