"""
app/api/deps.py

Purpose: Shared route dependencies

- Resolves the InstanceRegistry stored on app.state
- Looks up instances with the standard 400/404 errors
"""

from typing import Optional

from fastapi import Request

from app.core.exceptions import InvalidArgumentError
from app.services.instance_controller import InstanceController
from app.services.instance_registry import InstanceRegistry


def get_registry(request: Request) -> InstanceRegistry:
    return request.app.state.registry


def resolve_instance(
    registry: InstanceRegistry,
    instance_id: Optional[str],
    missing_message: str = "instanceId is required",
) -> InstanceController:
    """
    Returns the controller for ``instance_id``.

    Raises:
        InvalidArgumentError: If no id was sent
        NotFoundError: If the id is not registered
    """
    if not instance_id:
        raise InvalidArgumentError(missing_message)
    return registry.get(instance_id)
