#!/usr/bin/env python3
"""
Task List MCP Server - STDIO Mode

Exposes the task list operations as MCP tools for desktop assistants.
Every tool forwards to the HTTP API (TASKLIST_API_URL) and returns the JSON
response as text content.
"""

import json
import asyncio
import logging
from typing import Any, Optional
import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from tasklist import config

logger = logging.getLogger(__name__)

# Initialize MCP server
server = Server("task-list")

# HTTP client for API calls
http_client: Optional[httpx.AsyncClient] = None

PRIORITIES = ["low", "normal", "high", "critical"]
STATUSES = ["pending", "in_progress", "completed", "cancelled", "blocked"]
ATTRIBUTE_TYPES = [
    "text", "integer", "decimal", "date", "datetime", "boolean",
    "single_choice", "multiple_choice", "url", "file_reference",
]
SORT_FIELDS = ["relevance", "created", "due", "priority", "title", "updated"]


async def get_client() -> httpx.AsyncClient:
    global http_client
    if http_client is None:
        headers = {}
        if config.API_KEY:
            headers["X-API-Key"] = config.API_KEY
        http_client = httpx.AsyncClient(base_url=config.API_URL, timeout=30.0, headers=headers)
    return http_client


async def api_request(method: str, endpoint: str, data: dict = None) -> Any:
    """Make an API request to the backend."""
    client = await get_client()
    try:
        if method == "GET":
            response = await client.get(endpoint, params=data)
        elif method == "POST":
            response = await client.post(endpoint, json=data)
        elif method == "PUT":
            response = await client.put(endpoint, json=data)
        elif method == "DELETE":
            response = await client.delete(endpoint, params=data)
        else:
            return {"error": f"Unsupported method: {method}"}

        if response.status_code >= 400:
            return {"error": f"API error: {response.status_code}", "detail": response.text}

        if response.status_code == 204 or not response.text:
            return {"success": True}

        return response.json()
    except httpx.RequestError as e:
        logger.error(f"Request to {endpoint} failed: {e}")
        return {"error": f"Request failed: {str(e)}"}
    except json.JSONDecodeError:
        return {"error": "Invalid JSON response from API"}


def pick(arguments: dict, *fields: str) -> dict:
    """Copy the given keys that are present in the tool arguments."""
    return {field: arguments[field] for field in fields if field in arguments}


def schema(properties: dict, required: list = None) -> dict:
    return {"type": "object", "properties": properties, "required": required or []}


ID = {"type": "integer"}


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    return [
        # Lists
        Tool(name="list_lists", description="List all task lists with path, depth and counts",
             inputSchema=schema({
                 "hierarchical": {"type": "boolean", "description": "Nest child lists under their parents"}
             })),
        Tool(name="create_list", description="Create a task list, optionally under a parent list",
             inputSchema=schema({
                 "name": {"type": "string", "description": "List name (max 200 characters)"},
                 "description": {"type": "string", "description": "List description"},
                 "parent_list_id": {**ID, "description": "Parent list ID (optional)"}
             }, ["name"])),
        Tool(name="get_list", description="Get a list with its path and counts",
             inputSchema=schema({"list_id": ID}, ["list_id"])),
        Tool(name="update_list", description="Update a list's name, description or parent",
             inputSchema=schema({
                 "list_id": ID,
                 "name": {"type": "string"},
                 "description": {"type": "string"},
                 "parent_list_id": {"type": ["integer", "null"], "description": "New parent, null for root"}
             }, ["list_id"])),
        Tool(name="delete_list", description="Delete a list; cascade also deletes child lists and unassigns tasks",
             inputSchema=schema({"list_id": ID, "cascade": {"type": "boolean"}}, ["list_id"])),
        Tool(name="move_task", description="Move a task to another list, or unassign it with a null target",
             inputSchema=schema({
                 "task_id": ID,
                 "target_list_id": {"type": ["integer", "null"]}
             }, ["task_id"])),

        # Tasks
        Tool(name="list_tasks", description="List tasks ordered by ID",
             inputSchema=schema({
                 "list_id": ID,
                 "status": {"type": "string", "enum": STATUSES},
                 "limit": {"type": "integer"},
                 "offset": {"type": "integer"}
             })),
        Tool(name="create_task", description="Create a task in a list",
             inputSchema=schema({
                 "title": {"type": "string"},
                 "list_id": ID,
                 "description": {"type": "string"},
                 "priority": {"type": "string", "enum": PRIORITIES},
                 "status": {"type": "string", "enum": STATUSES},
                 "due_date": {"type": "string", "description": "ISO 8601 date-time"},
                 "estimated_hours": {"type": "number", "minimum": 0}
             }, ["title", "list_id"])),
        Tool(name="get_task", description="Get a task by ID",
             inputSchema=schema({"task_id": ID}, ["task_id"])),
        Tool(name="update_task", description="Update any task fields, including status",
             inputSchema=schema({
                 "task_id": ID,
                 "title": {"type": "string"},
                 "description": {"type": "string"},
                 "priority": {"type": "string", "enum": PRIORITIES},
                 "status": {"type": "string", "enum": STATUSES},
                 "due_date": {"type": "string"},
                 "estimated_hours": {"type": "number", "minimum": 0}
             }, ["task_id"])),
        Tool(name="delete_task", description="Soft-delete a task",
             inputSchema=schema({"task_id": ID}, ["task_id"])),

        # Tags
        Tool(name="list_tags", description="List tags with path, depth and usage counts",
             inputSchema=schema({"hierarchical": {"type": "boolean"}})),
        Tool(name="create_tag", description="Create a tag, optionally under a parent tag",
             inputSchema=schema({
                 "name": {"type": "string"},
                 "color": {"type": "string", "description": "#RGB, #RRGGBB or a color name"},
                 "parent_id": ID
             }, ["name"])),
        Tool(name="update_tag", description="Rename, recolor or re-parent a tag",
             inputSchema=schema({
                 "tag_id": ID,
                 "name": {"type": "string"},
                 "color": {"type": "string"},
                 "parent_id": {"type": ["integer", "null"], "description": "New parent, null for root"}
             }, ["tag_id"])),
        Tool(name="delete_tag", description="Delete a tag and all its associations",
             inputSchema=schema({"tag_id": ID}, ["tag_id"])),
        Tool(name="add_tag", description="Attach a tag to a task or a list",
             inputSchema=schema({
                 "tag_id": ID,
                 "task_id": ID,
                 "list_id": ID
             }, ["tag_id"])),
        Tool(name="remove_tag", description="Detach a tag from a task or a list",
             inputSchema=schema({
                 "tag_id": ID,
                 "task_id": ID,
                 "list_id": ID
             }, ["tag_id"])),

        # Attributes
        Tool(name="list_attribute_definitions", description="List custom attribute definitions",
             inputSchema=schema({})),
        Tool(name="create_attribute_definition", description="Define a typed custom attribute",
             inputSchema=schema({
                 "name": {"type": "string"},
                 "type": {"type": "string", "enum": ATTRIBUTE_TYPES},
                 "is_required": {"type": "boolean"},
                 "default_value": {"type": "string"},
                 "validation_rules": {"type": "object", "description": "Per-type rules, e.g. min/max, pattern, choices"}
             }, ["name", "type"])),
        Tool(name="delete_attribute_definition", description="Delete an attribute definition and all its values",
             inputSchema=schema({"definition_id": ID}, ["definition_id"])),
        Tool(name="set_attribute", description="Set a custom attribute value on a task or a list",
             inputSchema=schema({
                 "definition_id": ID,
                 "value": {"type": "string"},
                 "task_id": ID,
                 "list_id": ID
             }, ["definition_id", "value"])),
        Tool(name="remove_attribute", description="Remove a custom attribute value from a task or a list",
             inputSchema=schema({
                 "definition_id": ID,
                 "task_id": ID,
                 "list_id": ID
             }, ["definition_id"])),
        Tool(name="get_attributes", description="Get custom attribute values of a task or a list",
             inputSchema=schema({"task_id": ID, "list_id": ID})),

        # Templates
        Tool(name="list_templates", description="List templates, optionally by category",
             inputSchema=schema({"category": {"type": "string"}})),
        Tool(name="create_template", description="Create a template from a list's current tasks",
             inputSchema=schema({
                 "list_id": ID,
                 "name": {"type": "string"},
                 "description": {"type": "string"},
                 "category": {"type": "string"}
             }, ["list_id", "name"])),
        Tool(name="get_template", description="Get a template with its task snapshots",
             inputSchema=schema({"template_id": ID}, ["template_id"])),
        Tool(name="update_template", description="Update a template's name, description or category",
             inputSchema=schema({
                 "template_id": ID,
                 "name": {"type": "string"},
                 "description": {"type": "string"},
                 "category": {"type": "string"}
             }, ["template_id"])),
        Tool(name="apply_template", description="Create a new list with the template's tasks",
             inputSchema=schema({
                 "template_id": ID,
                 "list_name": {"type": "string"},
                 "description": {"type": "string"},
                 "parent_list_id": ID
             }, ["template_id", "list_name"])),
        Tool(name="delete_template", description="Delete a template",
             inputSchema=schema({"template_id": ID}, ["template_id"])),

        # Search
        Tool(name="search_tasks", description="Search tasks with text, status, priority, tag, date and attribute filters",
             inputSchema=schema({
                 "query": {"type": "string"},
                 "status": {"type": "string", "enum": STATUSES},
                 "priority": {"type": "string", "enum": PRIORITIES},
                 "list_id": ID,
                 "tags": {"type": "array", "items": {"type": "string"}, "description": "Tasks must carry all tags"},
                 "due_from": {"type": "string"},
                 "due_to": {"type": "string"},
                 "created_from": {"type": "string"},
                 "created_to": {"type": "string"},
                 "attributes": {"type": "object", "additionalProperties": {"type": "string"}},
                 "include_completed": {"type": "boolean"},
                 "include_cancelled": {"type": "boolean"},
                 "limit": {"type": "integer"},
                 "sort_by": {"type": "string", "enum": SORT_FIELDS},
                 "sort_desc": {"type": "boolean"}
             })),
        Tool(name="search_lists", description="Search lists by text, parent, tags and attributes",
             inputSchema=schema({
                 "query": {"type": "string"},
                 "list_id": {**ID, "description": "Only direct children of this list"},
                 "tags": {"type": "array", "items": {"type": "string"}},
                 "limit": {"type": "integer"},
                 "sort_by": {"type": "string", "enum": SORT_FIELDS},
                 "sort_desc": {"type": "boolean"}
             })),
        Tool(name="get_search_suggestions", description="Suggest task titles, list names and tag names",
             inputSchema=schema({
                 "partial_query": {"type": "string", "minLength": 2},
                 "max_suggestions": {"type": "integer"}
             }, ["partial_query"])),
        Tool(name="get_task_analytics", description="Status counts, completion rate and most used tags",
             inputSchema=schema({"list_id": ID})),
    ]


def entity_path(arguments: dict) -> Optional[str]:
    """Resolve the task or list a tag/attribute tool targets."""
    if "task_id" in arguments:
        return f"/api/tasks/{arguments['task_id']}"
    if "list_id" in arguments:
        return f"/api/lists/{arguments['list_id']}"
    return None


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    result: Any = {}
    target = entity_path(arguments)

    # Lists
    if name == "list_lists":
        result = await api_request("GET", "/api/lists", pick(arguments, "hierarchical"))
    elif name == "create_list":
        result = await api_request("POST", "/api/lists", pick(arguments, "name", "description", "parent_list_id"))
    elif name == "get_list":
        result = await api_request("GET", f"/api/lists/{arguments['list_id']}")
    elif name == "update_list":
        data = pick(arguments, "name", "description", "parent_list_id")
        result = await api_request("PUT", f"/api/lists/{arguments['list_id']}", data)
    elif name == "delete_list":
        data = {"cascade": bool(arguments.get("cascade", False))}
        result = await api_request("DELETE", f"/api/lists/{arguments['list_id']}", data)
    elif name == "move_task":
        data = {"target_list_id": arguments.get("target_list_id")}
        result = await api_request("POST", f"/api/tasks/{arguments['task_id']}/move", data)

    # Tasks
    elif name == "list_tasks":
        result = await api_request("GET", "/api/tasks", pick(arguments, "list_id", "status", "limit", "offset"))
    elif name == "create_task":
        data = pick(arguments, "title", "list_id", "description", "priority", "status", "due_date", "estimated_hours")
        result = await api_request("POST", "/api/tasks", data)
    elif name == "get_task":
        result = await api_request("GET", f"/api/tasks/{arguments['task_id']}")
    elif name == "update_task":
        data = pick(arguments, "title", "description", "priority", "status", "due_date", "estimated_hours")
        result = await api_request("PUT", f"/api/tasks/{arguments['task_id']}", data)
    elif name == "delete_task":
        result = await api_request("DELETE", f"/api/tasks/{arguments['task_id']}")

    # Tags
    elif name == "list_tags":
        result = await api_request("GET", "/api/tags", pick(arguments, "hierarchical"))
    elif name == "create_tag":
        result = await api_request("POST", "/api/tags", pick(arguments, "name", "color", "parent_id"))
    elif name == "update_tag":
        data = pick(arguments, "name", "color", "parent_id")
        result = await api_request("PUT", f"/api/tags/{arguments['tag_id']}", data)
    elif name == "delete_tag":
        result = await api_request("DELETE", f"/api/tags/{arguments['tag_id']}")
    elif name in ("add_tag", "remove_tag"):
        if target is None:
            result = {"error": "Either task_id or list_id is required"}
        else:
            method = "POST" if name == "add_tag" else "DELETE"
            result = await api_request(method, f"{target}/tags/{arguments['tag_id']}")

    # Attributes
    elif name == "list_attribute_definitions":
        result = await api_request("GET", "/api/attributes")
    elif name == "create_attribute_definition":
        data = pick(arguments, "name", "type", "is_required", "default_value", "validation_rules")
        result = await api_request("POST", "/api/attributes", data)
    elif name == "delete_attribute_definition":
        result = await api_request("DELETE", f"/api/attributes/{arguments['definition_id']}")
    elif name in ("set_attribute", "remove_attribute", "get_attributes"):
        if target is None:
            result = {"error": "Either task_id or list_id is required"}
        elif name == "set_attribute":
            result = await api_request(
                "PUT", f"{target}/attributes/{arguments['definition_id']}", {"value": arguments["value"]}
            )
        elif name == "remove_attribute":
            result = await api_request("DELETE", f"{target}/attributes/{arguments['definition_id']}")
        else:
            result = await api_request("GET", f"{target}/attributes")

    # Templates
    elif name == "list_templates":
        result = await api_request("GET", "/api/templates", pick(arguments, "category"))
    elif name == "create_template":
        data = pick(arguments, "list_id", "name", "description", "category")
        result = await api_request("POST", "/api/templates/from-list", data)
    elif name == "get_template":
        result = await api_request("GET", f"/api/templates/{arguments['template_id']}")
    elif name == "update_template":
        data = pick(arguments, "name", "description", "category")
        result = await api_request("PUT", f"/api/templates/{arguments['template_id']}", data)
    elif name == "apply_template":
        data = pick(arguments, "list_name", "description", "parent_list_id")
        result = await api_request("POST", f"/api/templates/{arguments['template_id']}/apply", data)
    elif name == "delete_template":
        result = await api_request("DELETE", f"/api/templates/{arguments['template_id']}")

    # Search
    elif name == "search_tasks":
        result = await api_request("POST", "/api/search/tasks", dict(arguments))
    elif name == "search_lists":
        result = await api_request("POST", "/api/search/lists", dict(arguments))
    elif name == "get_search_suggestions":
        data = {"q": arguments["partial_query"], "limit": arguments.get("max_suggestions", 10)}
        result = await api_request("GET", "/api/search/suggestions", data)
    elif name == "get_task_analytics":
        result = await api_request("GET", "/api/analytics", pick(arguments, "list_id"))
    else:
        result = {"error": f"Unknown tool: {name}"}

    return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]


async def main():
    if not config.API_KEY:
        logger.info("TASKLIST_API_KEY is not set; requests are sent without X-API-Key")

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def run():
    """Console entry point."""
    # stdout carries the MCP protocol, so logs go to stderr
    logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
    asyncio.run(main())


if __name__ == "__main__":
    run()
