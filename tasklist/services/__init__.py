from tasklist.services.attributes import AttributeService
from tasklist.services.lists import ListService
from tasklist.services.search import SearchService
from tasklist.services.tags import TagService
from tasklist.services.tasks import TaskService
from tasklist.services.templates import TemplateService

__all__ = [
    "AttributeService",
    "ListService",
    "SearchService",
    "TagService",
    "TaskService",
    "TemplateService",
]
