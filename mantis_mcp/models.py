"""Shapes of the records exchanged with Mantis, and the filters used to query them."""

from dataclasses import dataclass, field
from typing import List, Optional, TypedDict


class NamedRef(TypedDict):
    id: int
    name: str


class PersonRef(TypedDict):
    id: int
    name: str
    email: str


class CustomFieldValue(TypedDict):
    field: NamedRef
    value: str


class Issue(TypedDict, total=False):
    id: int
    summary: str
    description: str
    status: NamedRef
    project: NamedRef
    category: NamedRef
    reporter: PersonRef
    handler: PersonRef
    priority: NamedRef
    severity: NamedRef
    custom_fields: List[CustomFieldValue]
    created_at: str
    updated_at: str


class User(TypedDict, total=False):
    id: int
    name: str
    email: str
    real_name: str
    access_level: NamedRef
    enabled: bool


class Project(TypedDict, total=False):
    id: int
    name: str
    description: str
    enabled: bool
    status: NamedRef


# Default REST page size; the tool layer uses its own smaller default.
DEFAULT_PAGE_SIZE = 50


@dataclass
class IssueFilter:
    """Query for the REST issue listing."""
    project_id: Optional[int] = None
    status_id: Optional[int] = None
    handler_id: Optional[int] = None
    reporter_id: Optional[int] = None
    priority: Optional[int] = None
    severity: Optional[int] = None
    search: Optional[str] = None
    select: List[str] = field(default_factory=list)
    filter_id: Optional[int] = None
    sort: Optional[str] = None
    dir: Optional[str] = None
    page_size: int = DEFAULT_PAGE_SIZE
    page: int = 1

    def query_params(self) -> dict:
        """Wire parameters; only fields that are set are sent."""
        params = {
            "page": self.page or 1,
            "page_size": self.page_size or DEFAULT_PAGE_SIZE,
        }
        optional = {
            "project_id": self.project_id,
            "status_id": self.status_id,
            "handler_id": self.handler_id,
            "reporter_id": self.reporter_id,
            "priority": self.priority,
            "severity": self.severity,
            "search": self.search,
            "filter_id": self.filter_id,
            "select": ",".join(self.select) if self.select else None,
            "sort": self.sort,
            "dir": self.dir,
        }
        params.update({k: v for k, v in optional.items() if v})
        return params


@dataclass
class SearchFilter:
    """Query for the SOAP full-text search. ``page`` is 1-based."""
    search: Optional[str] = None
    project_id: Optional[int] = None
    status_id: Optional[int] = None
    handler_id: Optional[int] = None
    reporter_id: Optional[int] = None
    sort: Optional[str] = None
    sort_direction: Optional[str] = None
    page_size: int = DEFAULT_PAGE_SIZE
    page: int = 1
