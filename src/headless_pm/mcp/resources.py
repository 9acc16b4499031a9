"""Read-only MCP resources.

Resources are fixed URIs whose content is aggregated JSON computed on
each read.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi.encoders import jsonable_encoder

from headless_pm.database.models.epic import EpicStatus
from headless_pm.database.queries import epic as epic_queries
from headless_pm.database.queries import label as label_queries
from headless_pm.database.queries import project as project_queries
from headless_pm.database.queries import task as task_queries
from headless_pm.errors import NotFoundError
from headless_pm.graph.board import BOARD_COLUMNS
from headless_pm.mcp.tools import ToolContext
from headless_pm.web.routes.epics import EpicResponse
from headless_pm.web.routes.labels import LabelResponse
from headless_pm.web.routes.projects import ProjectResponse
from headless_pm.web.routes.tasks import render_tasks

MIME_TYPE = "application/json"

RESOURCES = (
    {
        "uri": "projects://list",
        "name": "Projects",
        "description": "All projects with task counts per status",
    },
    {
        "uri": "tasks://overdue",
        "name": "Overdue Tasks",
        "description": "Open tasks whose due date has passed",
    },
    {
        "uri": "tasks://high-priority",
        "name": "High Priority Tasks",
        "description": "Open urgent and high priority tasks across projects",
    },
    {
        "uri": "epics://active",
        "name": "Active Epics",
        "description": "Epics currently in progress with their completion",
    },
    {
        "uri": "labels://all",
        "name": "Labels",
        "description": "Every label of every project",
    },
)


def list_resources() -> list[dict[str, str]]:
    return [{**resource, "mimeType": MIME_TYPE} for resource in RESOURCES]


async def _projects(context: ToolContext) -> list[dict[str, Any]]:
    async with context.session_factory() as session:
        projects = await project_queries.list_projects(session)
        counts = await project_queries.task_status_counts(session)

    overview = []
    for project in projects:
        stats = {status.value: 0 for status in BOARD_COLUMNS}
        stats.update(counts.get(project.id, {}))
        overview.append(
            {
                **ProjectResponse.model_validate(project).model_dump(),
                "task_stats": {"total": sum(stats.values()), **stats},
            }
        )
    return overview


async def _overdue(context: ToolContext) -> Any:
    async with context.session_factory() as session:
        return await render_tasks(session, await task_queries.list_overdue_tasks(session))


async def _high_priority(context: ToolContext) -> Any:
    async with context.session_factory() as session:
        return await render_tasks(session, await task_queries.list_high_priority_tasks(session))


async def _active_epics(context: ToolContext) -> list[EpicResponse]:
    async with context.session_factory() as session:
        epics = await epic_queries.list_epics(session, status=EpicStatus.active)
    return [EpicResponse.model_validate(e) for e in epics]


async def _labels(context: ToolContext) -> list[LabelResponse]:
    async with context.session_factory() as session:
        labels = await label_queries.list_labels(session)
    return [LabelResponse.model_validate(label) for label in labels]


_READERS = {
    "projects://list": _projects,
    "tasks://overdue": _overdue,
    "tasks://high-priority": _high_priority,
    "epics://active": _active_epics,
    "labels://all": _labels,
}


async def read_resource(context: ToolContext, uri: str) -> dict[str, Any]:
    """Compute the content of one resource.

    Returns:
        ``{"uri", "mimeType", "text"}`` with the JSON-encoded content.

    Raises:
        NotFoundError: If the URI is not in the catalog.
    """
    reader = _READERS.get(uri)
    if reader is None:
        raise NotFoundError(f"Unknown resource URI: {uri}", field="uri")
    content = jsonable_encoder(await reader(context))
    return {"uri": uri, "mimeType": MIME_TYPE, "text": json.dumps(content)}
