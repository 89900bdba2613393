"""Tool call router: forwards model tool calls to the variant's tool-execute endpoint.

Tools themselves live behind the collaborator endpoint (actions, drafts,
projects …). The router only knows how to ship a ``tool_use`` block there and
turn whatever comes back into a tool result the model can read. Failed calls
become ``{"error": ...}`` results instead of exceptions, so the model can react
on the next round. Timeouts are the exception: they end the stream.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from chatstream.errors import CollaboratorTimeout

if TYPE_CHECKING:
    from chatstream.agents.registry import ResolvedVariant
    from chatstream.agents.state import ToolUse

logger = logging.getLogger(__name__)

TOOL_EXECUTION_FAILED = "Tool execution failed"
SKIPPED_TOOL_CALL = "Only one tool call per turn is supported; this call was not executed"


def build_tool_body(
    tool_use: ToolUse, user_id: str, variant: ResolvedVariant, context: dict[str, Any]
) -> dict[str, Any]:
    """Request body for the tool-execute endpoint: userId, toolUse, variant fields."""
    body: dict[str, Any] = {"userId": user_id, "toolUse": tool_use.to_dict()}
    for name in variant.tool_fields:
        if name in context:
            body[name] = context[name]
    return body


def tool_result_message(
    tool_use: ToolUse, result: Any, skipped: list[ToolUse] | None = None
) -> dict[str, Any]:
    """Synthetic user message carrying the tool result back to the model.

    Tool calls that were not executed still get a result block, since every
    tool_use in the assistant turn must be answered.
    """
    blocks = [{"type": "tool_result", "tool_use_id": tool_use.id, "content": json.dumps(result)}]
    for other in skipped or []:
        blocks.append(
            {
                "type": "tool_result",
                "tool_use_id": other.id,
                "content": json.dumps({"error": SKIPPED_TOOL_CALL}),
                "is_error": True,
            }
        )
    return {"role": "user", "content": blocks}


def _failure(status: int | None = None, detail: str | None = None) -> dict[str, Any]:
    result: dict[str, Any] = {"error": TOOL_EXECUTION_FAILED}
    if status is not None:
        result["status"] = status
    if detail:
        result["detail"] = detail
    return result


class ToolCallRouter:
    """Dispatches tool calls over HTTP. No retries."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, timeout: float = 20.0):
        self._client = client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def execute(
        self,
        tool_use: ToolUse,
        variant: ResolvedVariant,
        user_id: str,
        context: dict[str, Any] | None = None,
    ) -> Any:
        """Run one tool call and return the collaborator's ``result`` value.

        Raises ``CollaboratorTimeout`` if the endpoint does not answer in time;
        every other failure is returned as an error payload.
        """
        if variant.tool_execute_endpoint is None:
            raise ValueError(f"Chat type '{variant.name}' has no tool-execute endpoint")

        url = f"{self.base_url}{variant.tool_execute_endpoint}"
        body = build_tool_body(tool_use, user_id, variant, context or {})
        logger.info(f"Executing tool '{tool_use.name}' via {variant.tool_execute_endpoint}")

        try:
            response = await self._client.post(url, json=body, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise CollaboratorTimeout(variant.tool_execute_endpoint, self.timeout) from e
        except httpx.HTTPError as e:
            logger.warning(f"Tool '{tool_use.name}' transport error: {e}")
            return _failure(detail=str(e))

        try:
            data = response.json()
        except ValueError:
            logger.warning(
                f"Tool '{tool_use.name}' returned unparsable body (status={response.status_code})"
            )
            return _failure(status=response.status_code)

        if not isinstance(data, dict):
            return _failure(status=response.status_code)

        result = data.get("result")
        if result is None:
            detail = data.get("error") if isinstance(data.get("error"), str) else None
            logger.warning(
                f"Tool '{tool_use.name}' returned no result "
                f"(status={response.status_code}, error={detail!r})"
            )
            return _failure(status=response.status_code, detail=detail)

        if not response.is_success:
            logger.warning(
                f"Tool '{tool_use.name}' returned status {response.status_code} with a result body"
            )

        return result
