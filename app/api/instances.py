"""
app/api/instances.py

Purpose: Instance lifecycle endpoints

- Create an instance and start its session
- Report status and the pending QR code
- Delete an instance and its stored credentials
"""

from fastapi import APIRouter, Depends

from app.api.deps import get_registry
from app.core.exceptions import InvalidArgumentError
from app.core.logging import get_logger
from app.schemas.requests import CreateInstanceRequest
from app.services.instance_registry import InstanceRegistry

logger = get_logger(__name__)
router = APIRouter(prefix="/instance")


@router.post("/create")
async def create_instance(
    body: CreateInstanceRequest,
    registry: InstanceRegistry = Depends(get_registry),
):
    """
    Registers a new instance and starts its session.

    Returns as soon as the session has been started; poll
    /instance/{instanceId}/status and /instance/{instanceId}/qr for progress.
    """
    await registry.create(body.instanceId)
    return {
        "success": True,
        "instanceId": body.instanceId,
        "message": "Instance created successfully",
    }


@router.get("/{instance_id}/status")
async def get_instance_status(instance_id: str, registry: InstanceRegistry = Depends(get_registry)):
    controller = registry.get(instance_id)
    return {"success": True, "data": controller.get_status()}


@router.get("/{instance_id}/qr")
async def get_instance_qr(instance_id: str, registry: InstanceRegistry = Depends(get_registry)):
    controller = registry.get(instance_id)

    qr_code = controller.qr_code
    if not qr_code:
        raise InvalidArgumentError("QR Code not available. Instance might be already connected.")

    return {"success": True, "qrCode": qr_code}


@router.delete("/{instance_id}")
async def delete_instance(instance_id: str, registry: InstanceRegistry = Depends(get_registry)):
    await registry.remove(instance_id)
    return {"success": True, "message": "Instance deleted successfully"}
