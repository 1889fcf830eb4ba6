"""
Compact summary of remaining work.

Incomplete tasks are listed in full; completed work is reduced to its titles.
Keeps agent context small when planning new tasks against an existing VTM.
"""

import json
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from .reader import VTMReader
from .schema import RiskLevel, TaskStatus, TestStrategy


class IncompleteTask(BaseModel):
    id: str
    title: str
    description: str
    status: TaskStatus
    estimated_hours: float
    risk: RiskLevel
    test_strategy: TestStrategy
    dependencies: Optional[List[str]] = None   # Omitted when empty


class VTMSummary(BaseModel):
    incomplete_tasks: List[IncompleteTask] = Field(default_factory=list)
    completed_capabilities: List[str] = Field(default_factory=list)


class VTMSummarizer:
    def __init__(self, vtm_path: Union[str, Path] = "vtm.json", reader: Optional[VTMReader] = None):
        self.reader = reader or VTMReader(vtm_path)

    def generate_summary(self) -> VTMSummary:
        vtm = self.reader.load()
        incomplete = [
            IncompleteTask(
                id=t.id,
                title=t.title,
                description=t.description,
                status=t.status,
                estimated_hours=t.estimated_hours,
                risk=t.risk,
                test_strategy=t.test_strategy,
                dependencies=list(t.dependencies) or None,
            )
            for t in vtm.tasks
            if t.status != TaskStatus.COMPLETED
        ]
        completed = [t.title for t in vtm.tasks if t.status == TaskStatus.COMPLETED]
        return VTMSummary(incomplete_tasks=incomplete, completed_capabilities=completed)

    def to_json(self, summary: VTMSummary) -> str:
        return json.dumps(summary.model_dump(mode="json", exclude_none=True), indent=2)

    def generate_summary_json(self) -> str:
        return self.to_json(self.generate_summary())
