"""
app/api/messages.py

Purpose: Messaging endpoints
"""

from fastapi import APIRouter, Depends

from app.api.deps import get_registry, resolve_instance
from app.core.exceptions import InvalidArgumentError
from app.schemas.requests import SendMessageRequest
from app.services.instance_registry import InstanceRegistry

router = APIRouter(prefix="/message")


@router.post("/send")
async def send_message(body: SendMessageRequest, registry: InstanceRegistry = Depends(get_registry)):
    controller = resolve_instance(registry, body.instanceId)

    if not body.to or not body.message:
        raise InvalidArgumentError('Both "to" and "message" fields are required')

    result = await controller.send_message(body.to, body.message)
    return {"success": True, **result}
