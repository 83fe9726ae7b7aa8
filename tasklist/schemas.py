from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any, Literal

from tasklist.models import TaskStatus, TaskPriority, AttributeType


# Tag schemas
class TagBase(BaseModel):
    name: str
    color: Optional[str] = None
    parent_id: Optional[int] = None


class TagCreate(TagBase):
    pass


class TagUpdate(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None
    parent_id: Optional[int] = None


class TagRef(BaseModel):
    id: int
    name: str
    color: Optional[str] = None

    class Config:
        from_attributes = True


class Tag(TagBase):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True


class TagSummary(Tag):
    """Tag with derived hierarchy fields and usage counts."""
    path: List[str] = []
    depth: int = 0
    task_count: int = 0
    list_count: int = 0
    children: List["TagSummary"] = []


class TagUsage(BaseModel):
    id: int
    name: str
    color: Optional[str] = None
    usage_count: int


# Task list schemas
class TaskListBase(BaseModel):
    name: str
    description: Optional[str] = None
    parent_list_id: Optional[int] = None


class TaskListCreate(TaskListBase):
    pass


class TaskListUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    parent_list_id: Optional[int] = None


class TaskList(TaskListBase):
    id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TaskListSummary(TaskList):
    """List with derived path, depth and counts; children only in hierarchical mode."""
    path: List[str] = []
    depth: int = 0
    parent_name: Optional[str] = None
    task_count: int = 0
    child_count: int = 0
    children: List["TaskListSummary"] = []


# Task schemas
class TaskBase(BaseModel):
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.pending
    priority: TaskPriority = TaskPriority.normal
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = None


class TaskCreate(TaskBase):
    list_id: int


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = None


class TaskMove(BaseModel):
    target_list_id: Optional[int] = None


class Task(TaskBase):
    id: int
    list_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    tags: List[TagRef] = []

    class Config:
        from_attributes = True


# Attribute schemas
class AttributeDefinitionCreate(BaseModel):
    name: str
    type: AttributeType
    is_required: bool = False
    default_value: Optional[str] = None
    validation_rules: Optional[Dict[str, Any]] = None


class AttributeDefinition(AttributeDefinitionCreate):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True


class AttributeValueSet(BaseModel):
    value: str


class AttributeValue(BaseModel):
    definition_id: int
    name: str
    type: AttributeType
    value: str
    created_at: datetime
    updated_at: datetime


class AttributeCompleteness(BaseModel):
    """Result of an explicit required-attribute check. Never enforced on writes."""
    entity_id: int
    scope: Literal["task", "list"]
    is_complete: bool
    missing: List[str] = []


# Template schemas
class TemplateTaskBase(BaseModel):
    title: str
    description: Optional[str] = None
    estimated_hours: Optional[float] = None
    priority: TaskPriority = TaskPriority.normal


class TemplateTask(TemplateTaskBase):
    id: int
    order_index: int

    class Config:
        from_attributes = True


class TemplateCreate(BaseModel):
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    tasks: List[TemplateTaskBase] = []


class TemplateFromList(BaseModel):
    list_id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None


class TemplateApply(BaseModel):
    list_name: str
    description: Optional[str] = None
    parent_list_id: Optional[int] = None


class Template(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime
    tasks: List[TemplateTask] = []

    class Config:
        from_attributes = True


# Search schemas
SortField = Literal["relevance", "created", "due", "priority", "title", "updated"]


class SearchFilter(BaseModel):
    """Compound filter; every given field narrows the result (AND)."""
    query: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    list_id: Optional[int] = None
    tags: List[str] = []
    due_from: Optional[datetime] = None
    due_to: Optional[datetime] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    attributes: Dict[str, str] = {}
    include_completed: bool = True
    include_cancelled: bool = False
    limit: Optional[int] = Field(default=None, ge=1)
    sort_by: SortField = "relevance"
    sort_desc: bool = True


class TaskAnalytics(BaseModel):
    total_tasks: int
    completed_tasks: int
    active_tasks: int
    completion_rate: float
    active_rate: float
    status_counts: Dict[TaskStatus, int]
    top_tags: List[TagUsage] = []
