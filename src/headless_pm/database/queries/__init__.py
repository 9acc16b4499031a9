"""Database query functions for Headless PM.

This module provides async query functions for all database entities:
- Project, epic and task CRUD with cascade deletes
- Labels, comments and attachments
- Users and API tokens
- Activity log and embedding records
- Recursive dependency reachability
"""

from headless_pm.database.queries.activity import (
    SYSTEM_ACTOR,
    Actor,
    list_task_activity,
    record_activity,
)
from headless_pm.database.queries.cascade import TaskDeletion
from headless_pm.database.queries.comment import (
    add_comment,
    comment_texts,
    create_attachment,
    delete_attachment,
    delete_comment,
    get_attachment,
    get_comment,
    list_attachments,
    list_comments,
)
from headless_pm.database.queries.embedding import (
    delete_embedding,
    get_embedding,
    list_embeddings,
    upsert_embedding,
)
from headless_pm.database.queries.epic import (
    create_epic,
    delete_epic,
    get_epic,
    list_epics,
    recalculate_epic_progress,
    update_epic,
)
from headless_pm.database.queries.label import (
    assign_labels_to_task,
    create_label,
    delete_label,
    get_or_create_label,
    get_task_labels,
    label_names_for_tasks,
    list_labels,
)
from headless_pm.database.queries.project import (
    add_project_member,
    create_project,
    delete_project,
    get_project,
    get_project_by_name,
    list_project_assignees,
    list_project_users,
    list_projects,
    project_task_titles,
    resolve_project,
    task_status_counts,
    update_project,
)
from headless_pm.database.queries.task import (
    assign_task,
    create_task,
    delete_task,
    get_task,
    list_archived_tasks,
    list_high_priority_tasks,
    list_overdue_tasks,
    list_subtasks,
    list_tasks,
    update_task,
)
from headless_pm.database.queries.token import (
    create_api_token,
    find_token_by_hash,
    get_api_token,
    list_api_tokens,
    revoke_api_token,
    touch_token,
)
from headless_pm.database.queries.user import (
    create_user,
    delete_user,
    get_user,
    get_user_by_username,
    list_users,
)

__all__ = [
    # Activity
    "Actor",
    "SYSTEM_ACTOR",
    "record_activity",
    "list_task_activity",
    "TaskDeletion",
    # Projects
    "create_project",
    "get_project",
    "get_project_by_name",
    "resolve_project",
    "list_projects",
    "update_project",
    "delete_project",
    "list_project_users",
    "list_project_assignees",
    "add_project_member",
    "project_task_titles",
    "task_status_counts",
    # Epics
    "create_epic",
    "get_epic",
    "list_epics",
    "update_epic",
    "delete_epic",
    "recalculate_epic_progress",
    # Tasks
    "create_task",
    "get_task",
    "list_tasks",
    "update_task",
    "assign_task",
    "delete_task",
    "list_subtasks",
    "list_overdue_tasks",
    "list_high_priority_tasks",
    "list_archived_tasks",
    # Labels
    "create_label",
    "list_labels",
    "get_or_create_label",
    "delete_label",
    "assign_labels_to_task",
    "get_task_labels",
    "label_names_for_tasks",
    # Comments and attachments
    "add_comment",
    "list_comments",
    "get_comment",
    "delete_comment",
    "comment_texts",
    "create_attachment",
    "list_attachments",
    "get_attachment",
    "delete_attachment",
    # Users
    "create_user",
    "get_user",
    "get_user_by_username",
    "list_users",
    "delete_user",
    # Tokens
    "create_api_token",
    "get_api_token",
    "list_api_tokens",
    "revoke_api_token",
    "find_token_by_hash",
    "touch_token",
    # Embeddings
    "upsert_embedding",
    "delete_embedding",
    "get_embedding",
    "list_embeddings",
]
