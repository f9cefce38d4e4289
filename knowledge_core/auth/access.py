"""Authorization seams for the retrieval and maintenance routes.

The platform decides whether a caller may use an agent; this service only
evaluates the predicate it is given before touching any agent's data.
"""

import hmac
import logging
from collections.abc import Awaitable, Callable
from uuid import UUID

from fastapi import Depends, HTTPException, Request

from ..config import get_settings

logger = logging.getLogger(__name__)

AgentAccessChecker = Callable[[Request, UUID], Awaitable[bool]]


async def deny_all(request: Request, agent_id: UUID) -> bool:
    return False


_agent_access_checker: AgentAccessChecker = deny_all


def set_agent_access_checker(checker: AgentAccessChecker) -> None:
    """Install the platform's authorization predicate."""
    global _agent_access_checker
    _agent_access_checker = checker


def get_agent_access_checker() -> AgentAccessChecker:
    return _agent_access_checker


async def require_agent_access(
    agent_id: UUID,
    request: Request,
    checker: AgentAccessChecker = Depends(get_agent_access_checker),
) -> UUID:
    """Dependency: 403 unless the caller may query ``agent_id``.

    Returns:
        The authorized agent id.
    """
    if not await checker(request, agent_id):
        logger.warning(
            "access.denied",
            extra={"agent_id": str(agent_id), "path": request.url.path},
        )
        raise HTTPException(status_code=403, detail="Access to agent denied")
    return agent_id


def require_maintenance_token(request: Request) -> None:
    """Dependency for scheduler-only routes (X-Maintenance-Token header).

    Raises:
        HTTPException: 404 when maintenance is not configured, 403 on a bad token.
    """
    expected = get_settings().maintenance_token
    if not expected:
        raise HTTPException(status_code=404, detail="Not found")

    supplied = request.headers.get("X-Maintenance-Token", "")
    if not hmac.compare_digest(supplied.encode(), expected.encode()):
        logger.warning("maintenance.token_rejected", extra={"path": request.url.path})
        raise HTTPException(status_code=403, detail="Invalid maintenance token")
