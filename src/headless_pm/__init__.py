"""Headless PM - project management backend for programmatic and agent clients.

This package provides the REST and MCP JSON-RPC surfaces over a single
embedded SQLite database holding projects, epics, tasks with hierarchy and
dependencies, comments, attachments, labels, users and API tokens.
"""

__version__ = "2.0.0"
