from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Enum, Numeric, Boolean, JSON
from sqlalchemy.orm import relationship
import enum

from tasklist.database import Base
from tasklist.time_utils import utc_now


class TaskStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    blocked = "blocked"


class TaskPriority(str, enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    critical = "critical"


# Sort rank, low < normal < high < critical
PRIORITY_RANK = {
    TaskPriority.low: 0,
    TaskPriority.normal: 1,
    TaskPriority.high: 2,
    TaskPriority.critical: 3,
}


class AttributeType(str, enum.Enum):
    text = "text"
    integer = "integer"
    decimal = "decimal"
    date = "date"
    datetime = "datetime"
    boolean = "boolean"
    single_choice = "single_choice"
    multiple_choice = "multiple_choice"
    url = "url"
    file_reference = "file_reference"


class TaskList(Base):
    __tablename__ = "task_lists"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    parent_list_id = Column(Integer, ForeignKey("task_lists.id"), index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    # Relationships
    parent = relationship("TaskList", remote_side=[id])
    tasks = relationship("Task", back_populates="task_list")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(Enum(TaskStatus), default=TaskStatus.pending, nullable=False, index=True)
    priority = Column(Enum(TaskPriority), default=TaskPriority.normal, nullable=False)
    list_id = Column(Integer, ForeignKey("task_lists.id"), index=True)
    due_date = Column(DateTime(timezone=True))
    estimated_hours = Column(Numeric(10, 2))
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    # Relationships
    task_list = relationship("TaskList", back_populates="tasks")
    tags = relationship("Tag", secondary="task_tags", order_by="Tag.name", viewonly=True)


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    color = Column(String(20))
    parent_id = Column(Integer, ForeignKey("tags.id"), index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    # Relationships
    parent = relationship("Tag", remote_side=[id])


class TaskTag(Base):
    __tablename__ = "task_tags"

    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class ListTag(Base):
    __tablename__ = "list_tags"

    list_id = Column(Integer, ForeignKey("task_lists.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class AttributeDefinition(Base):
    __tablename__ = "attribute_definitions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    type = Column(Enum(AttributeType), nullable=False)
    is_required = Column(Boolean, default=False, nullable=False)
    default_value = Column(Text)
    validation_rules = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class TaskAttribute(Base):
    __tablename__ = "task_attributes"

    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    definition_id = Column(
        Integer, ForeignKey("attribute_definitions.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    value = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    # Relationships
    definition = relationship("AttributeDefinition")


class ListAttribute(Base):
    __tablename__ = "list_attributes"

    list_id = Column(Integer, ForeignKey("task_lists.id", ondelete="CASCADE"), primary_key=True)
    definition_id = Column(
        Integer, ForeignKey("attribute_definitions.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    value = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    # Relationships
    definition = relationship("AttributeDefinition")


class Template(Base):
    __tablename__ = "templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    category = Column(String(100), index=True)
    version = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    # Relationships
    tasks = relationship(
        "TemplateTask",
        back_populates="template",
        order_by="TemplateTask.order_index",
        cascade="all, delete-orphan",
    )


class TemplateTask(Base):
    __tablename__ = "template_tasks"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("templates.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    order_index = Column(Integer, nullable=False)
    estimated_hours = Column(Numeric(10, 2))
    priority = Column(Enum(TaskPriority), default=TaskPriority.normal, nullable=False)

    # Relationships
    template = relationship("Template", back_populates="tasks")
