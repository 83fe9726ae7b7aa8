from fastapi import APIRouter, FastAPI, HTTPException, Depends, Header, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Dict, List, Optional
import logging
import secrets

from tasklist import config, schemas
from tasklist.database import get_db, init_db
from tasklist.errors import TaskListError
from tasklist.models import TaskStatus
from tasklist.services import (
    AttributeService,
    ListService,
    SearchService,
    TagService,
    TaskService,
    TemplateService,
)

# Configure logging
logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task List API",
    description="Hierarchical task lists with tags, custom attributes, templates and search",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_BY_KIND = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "cycle": status.HTTP_409_CONFLICT,
    "structural_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "store_error": status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.exception_handler(TaskListError)
async def task_list_error_handler(request: Request, exc: TaskListError):
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind, "detail": exc.message, "context": jsonable_encoder(exc.context)},
    )


@app.on_event("startup")
def create_tables():
    init_db()


def verify_api_key(x_api_key: Optional[str] = Header(None)):
    """Require X-API-Key when TASKLIST_API_KEY is configured."""
    if config.API_KEY is None:
        return
    if not x_api_key or not secrets.compare_digest(x_api_key, config.API_KEY):
        logger.info("Rejected request with missing or invalid API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )


api = APIRouter(prefix="/api", dependencies=[Depends(verify_api_key)])


# Health check
@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "unreachable"})
    return {"status": "healthy", "database": "ok"}


# ============== Lists ==============

@api.get("/lists", response_model=List[schemas.TaskListSummary])
def list_lists(hierarchical: bool = False, db: Session = Depends(get_db)):
    """All non-deleted lists, flat or nested."""
    return ListService(db).get_all_lists(hierarchical=hierarchical)


@api.post("/lists", response_model=schemas.TaskList, status_code=201)
def create_list(task_list: schemas.TaskListCreate, db: Session = Depends(get_db)):
    return ListService(db).create_list(
        task_list.name, description=task_list.description, parent_list_id=task_list.parent_list_id
    )


@api.get("/lists/{list_id}", response_model=schemas.TaskListSummary)
def get_list(list_id: int, db: Session = Depends(get_db)):
    return ListService(db).get_list_details(list_id)


@api.put("/lists/{list_id}", response_model=schemas.TaskList)
def update_list(list_id: int, changes: schemas.TaskListUpdate, db: Session = Depends(get_db)):
    """Partial update; only fields present in the body are changed."""
    return ListService(db).update_list(list_id, **changes.model_dump(exclude_unset=True))


@api.delete("/lists/{list_id}")
def delete_list(list_id: int, cascade: bool = False, db: Session = Depends(get_db)):
    if not ListService(db).delete_list(list_id, cascade=cascade):
        raise HTTPException(status_code=404, detail="List not found")
    return {"message": "List deleted", "cascade": cascade}


@api.get("/lists/{list_id}/tags", response_model=List[schemas.TagRef])
def get_list_tags(list_id: int, db: Session = Depends(get_db)):
    return TagService(db).get_list_tags(list_id)


@api.post("/lists/{list_id}/tags/{tag_id}")
def add_list_tag(list_id: int, tag_id: int, db: Session = Depends(get_db)):
    return {"success": TagService(db).add_tag_to_list(list_id, tag_id)}


@api.delete("/lists/{list_id}/tags/{tag_id}")
def remove_list_tag(list_id: int, tag_id: int, db: Session = Depends(get_db)):
    return {"removed": TagService(db).remove_tag_from_list(list_id, tag_id)}


@api.get("/lists/{list_id}/attributes", response_model=List[schemas.AttributeValue])
def get_list_attributes(list_id: int, db: Session = Depends(get_db)):
    return AttributeService(db).get_list_attributes(list_id)


@api.get("/lists/{list_id}/attributes/check", response_model=schemas.AttributeCompleteness)
def check_list_attributes(list_id: int, db: Session = Depends(get_db)):
    return AttributeService(db).check_required_attributes("list", list_id)


@api.put("/lists/{list_id}/attributes/{definition_id}", response_model=schemas.AttributeValue)
def set_list_attribute(
    list_id: int, definition_id: int, body: schemas.AttributeValueSet, db: Session = Depends(get_db)
):
    return AttributeService(db).set_list_attribute(list_id, definition_id, body.value)


@api.delete("/lists/{list_id}/attributes/{definition_id}")
def remove_list_attribute(list_id: int, definition_id: int, db: Session = Depends(get_db)):
    return {"removed": AttributeService(db).remove_list_attribute(list_id, definition_id)}


# ============== Tasks ==============

@api.get("/tasks", response_model=List[schemas.Task])
def list_tasks(
    list_id: Optional[int] = None,
    status: Optional[TaskStatus] = None,
    limit: Optional[int] = Query(None, ge=1),
    offset: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db)
):
    return TaskService(db).list_tasks(list_id=list_id, status=status, limit=limit, offset=offset)


@api.post("/tasks", response_model=schemas.Task, status_code=201)
def create_task(task: schemas.TaskCreate, db: Session = Depends(get_db)):
    return TaskService(db).create_task(
        task.title,
        task.list_id,
        description=task.description,
        due_date=task.due_date,
        priority=task.priority,
        estimated_hours=task.estimated_hours,
        status=task.status,
    )


@api.get("/tasks/{task_id}", response_model=schemas.Task)
def get_task(task_id: int, db: Session = Depends(get_db)):
    return TaskService(db).get_task(task_id)


@api.put("/tasks/{task_id}", response_model=schemas.Task)
def update_task(task_id: int, changes: schemas.TaskUpdate, db: Session = Depends(get_db)):
    return TaskService(db).update_task(task_id, **changes.model_dump(exclude_unset=True))


@api.delete("/tasks/{task_id}")
def delete_task(task_id: int, db: Session = Depends(get_db)):
    if not TaskService(db).delete_task(task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"message": "Task deleted"}


@api.post("/tasks/{task_id}/move", response_model=schemas.Task)
def move_task(task_id: int, move: schemas.TaskMove, db: Session = Depends(get_db)):
    """Move a task to another list; a null target_list_id unassigns it."""
    ListService(db).move_task(task_id, move.target_list_id)
    return TaskService(db).get_task(task_id)


@api.get("/tasks/{task_id}/tags", response_model=List[schemas.TagRef])
def get_task_tags(task_id: int, db: Session = Depends(get_db)):
    return TagService(db).get_task_tags(task_id)


@api.post("/tasks/{task_id}/tags/{tag_id}")
def add_task_tag(task_id: int, tag_id: int, db: Session = Depends(get_db)):
    return {"success": TagService(db).add_tag_to_task(task_id, tag_id)}


@api.delete("/tasks/{task_id}/tags/{tag_id}")
def remove_task_tag(task_id: int, tag_id: int, db: Session = Depends(get_db)):
    return {"removed": TagService(db).remove_tag_from_task(task_id, tag_id)}


@api.get("/tasks/{task_id}/attributes", response_model=List[schemas.AttributeValue])
def get_task_attributes(task_id: int, db: Session = Depends(get_db)):
    return AttributeService(db).get_task_attributes(task_id)


@api.get("/tasks/{task_id}/attributes/check", response_model=schemas.AttributeCompleteness)
def check_task_attributes(task_id: int, db: Session = Depends(get_db)):
    return AttributeService(db).check_required_attributes("task", task_id)


@api.put("/tasks/{task_id}/attributes/{definition_id}", response_model=schemas.AttributeValue)
def set_task_attribute(
    task_id: int, definition_id: int, body: schemas.AttributeValueSet, db: Session = Depends(get_db)
):
    return AttributeService(db).set_task_attribute(task_id, definition_id, body.value)


@api.delete("/tasks/{task_id}/attributes/{definition_id}")
def remove_task_attribute(task_id: int, definition_id: int, db: Session = Depends(get_db)):
    return {"removed": AttributeService(db).remove_task_attribute(task_id, definition_id)}


# ============== Tags ==============

@api.get("/tags", response_model=List[schemas.TagSummary])
def list_tags(hierarchical: bool = False, db: Session = Depends(get_db)):
    return TagService(db).get_all_tags(hierarchical=hierarchical)


@api.post("/tags", response_model=schemas.Tag, status_code=201)
def create_tag(tag: schemas.TagCreate, db: Session = Depends(get_db)):
    return TagService(db).create_tag(tag.name, color=tag.color, parent_id=tag.parent_id)


@api.get("/tags/{tag_id}", response_model=schemas.Tag)
def get_tag(tag_id: int, db: Session = Depends(get_db)):
    return TagService(db).get_tag(tag_id)


@api.put("/tags/{tag_id}", response_model=schemas.Tag)
def update_tag(tag_id: int, changes: schemas.TagUpdate, db: Session = Depends(get_db)):
    return TagService(db).update_tag(tag_id, **changes.model_dump(exclude_unset=True))


@api.delete("/tags/{tag_id}")
def delete_tag(tag_id: int, db: Session = Depends(get_db)):
    """Hard delete; associations go with the tag."""
    TagService(db).delete_tag(tag_id)
    return {"message": "Tag deleted"}


# ============== Attribute definitions ==============

@api.get("/attributes", response_model=List[schemas.AttributeDefinition])
def list_attribute_definitions(db: Session = Depends(get_db)):
    return AttributeService(db).get_all_attribute_definitions()


@api.post("/attributes", response_model=schemas.AttributeDefinition, status_code=201)
def create_attribute_definition(definition: schemas.AttributeDefinitionCreate, db: Session = Depends(get_db)):
    return AttributeService(db).create_attribute_definition(
        definition.name,
        definition.type,
        is_required=definition.is_required,
        default_value=definition.default_value,
        validation_rules=definition.validation_rules,
    )


@api.get("/attributes/{definition_id}", response_model=schemas.AttributeDefinition)
def get_attribute_definition(definition_id: int, db: Session = Depends(get_db)):
    return AttributeService(db).get_attribute_definition(definition_id)


@api.delete("/attributes/{definition_id}")
def delete_attribute_definition(definition_id: int, db: Session = Depends(get_db)):
    if not AttributeService(db).delete_attribute_definition(definition_id):
        raise HTTPException(status_code=404, detail="Attribute definition not found")
    return {"message": "Attribute definition deleted"}


# ============== Templates ==============

@api.get("/templates", response_model=List[schemas.Template])
def list_templates(category: Optional[str] = None, db: Session = Depends(get_db)):
    return TemplateService(db).list_templates(category=category)


@api.post("/templates", response_model=schemas.Template, status_code=201)
def create_template(template: schemas.TemplateCreate, db: Session = Depends(get_db)):
    return TemplateService(db).create_template(
        template.name,
        description=template.description,
        category=template.category,
        tasks=[task.model_dump() for task in template.tasks],
    )


@api.post("/templates/from-list", response_model=schemas.Template, status_code=201)
def create_template_from_list(body: schemas.TemplateFromList, db: Session = Depends(get_db)):
    return TemplateService(db).create_template_from_list(
        body.list_id, body.name, description=body.description, category=body.category
    )


@api.get("/templates/{template_id}", response_model=schemas.Template)
def get_template(template_id: int, db: Session = Depends(get_db)):
    return TemplateService(db).get_template(template_id)


@api.put("/templates/{template_id}", response_model=schemas.Template)
def update_template(template_id: int, changes: schemas.TemplateUpdate, db: Session = Depends(get_db)):
    return TemplateService(db).update_template(template_id, **changes.model_dump(exclude_unset=True))


@api.post("/templates/{template_id}/apply", response_model=schemas.TaskList, status_code=201)
def apply_template(template_id: int, body: schemas.TemplateApply, db: Session = Depends(get_db)):
    return TemplateService(db).apply_template(
        template_id, body.list_name, description=body.description, parent_list_id=body.parent_list_id
    )


@api.delete("/templates/{template_id}")
def delete_template(template_id: int, db: Session = Depends(get_db)):
    if not TemplateService(db).delete_template(template_id):
        raise HTTPException(status_code=404, detail="Template not found")
    return {"message": "Template deleted"}


# ============== Search & Analytics ==============

@api.post("/search/tasks", response_model=List[schemas.Task])
def search_tasks(search_filter: schemas.SearchFilter, db: Session = Depends(get_db)):
    return SearchService(db).search_tasks(search_filter)


@api.post("/search/lists", response_model=List[schemas.TaskList])
def search_lists(search_filter: schemas.SearchFilter, db: Session = Depends(get_db)):
    return SearchService(db).search_lists(search_filter)


@api.get("/search/suggestions", response_model=List[str])
def search_suggestions(q: str = "", limit: int = Query(10, ge=1, le=50), db: Session = Depends(get_db)):
    return SearchService(db).get_search_suggestions(q, max_suggestions=limit)


@api.get("/analytics", response_model=schemas.TaskAnalytics)
def task_analytics(list_id: Optional[int] = None, db: Session = Depends(get_db)):
    return SearchService(db).get_task_analytics(list_id=list_id)


@api.get("/analytics/status-counts", response_model=Dict[TaskStatus, int])
def status_counts(list_id: Optional[int] = None, db: Session = Depends(get_db)):
    return SearchService(db).get_task_count_by_status(list_id=list_id)


@api.get("/analytics/top-tags", response_model=List[schemas.TagUsage])
def top_tags(limit: int = Query(20, ge=1, le=100), db: Session = Depends(get_db)):
    return SearchService(db).get_most_used_tags(max_results=limit)


app.include_router(api)


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("tasklist.main:app", host=config.HOST, port=config.PORT)
