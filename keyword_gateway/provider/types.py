"""
Provider wire types: credentials, the response envelope and result pages.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

from pydantic import BaseModel, Field

STATUS_OK = 20000


@dataclass(frozen=True)
class ProviderCredentials:
    """Basic-auth credentials for the provider account."""

    login: str
    password: str = field(repr=False)


class ProviderTask(BaseModel):
    """One task inside a provider response"""
    id: Optional[str] = None
    status_code: int
    status_message: str = ""
    cost: float = 0.0
    result_count: Optional[int] = None
    path: List[str] = Field(default_factory=list)
    data: Optional[Any] = None
    result: Optional[List[Any]] = None


class ProviderResponse(BaseModel):
    """Top-level provider response envelope"""
    status_code: int
    status_message: str = ""
    time: Optional[str] = None
    cost: float = 0.0
    tasks_count: int = 0
    tasks_error: int = 0
    tasks: List[ProviderTask] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status_code == STATUS_OK

    def first_task_results(self) -> List[Any]:
        if not self.tasks:
            return []
        return list(self.tasks[0].result or [])


@dataclass
class ProviderPage:
    """One page of provider results and the offset to request the next page from."""

    results: List[Any]
    offset: int
    next_offset: int
    cost: float = 0.0
    status_code: int = STATUS_OK

    def __len__(self) -> int:
        return len(self.results)
