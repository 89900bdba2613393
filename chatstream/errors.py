"""Exceptions raised at collaborator boundaries."""

from __future__ import annotations

from typing import Any


class CollaboratorError(Exception):
    """A collaborator endpoint answered with a failure that should reach the client as-is."""

    def __init__(self, status_code: int, body: dict[str, Any]):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Collaborator returned {status_code}: {body}")


class CollaboratorTimeout(Exception):
    """A collaborator call did not finish within its configured timeout."""

    def __init__(self, endpoint: str, timeout: float):
        self.endpoint = endpoint
        self.timeout = timeout
        super().__init__(f"{endpoint} timed out after {timeout:g}s")
