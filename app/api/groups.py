"""
app/api/groups.py

Purpose: Group administration endpoints

- Create groups and manage participants
- Update group settings
- List and inspect groups
- Get, mint and revoke invite links (single and batch)

Route order matters: /group/{groupId}/invite-link must be registered before
/group/{instanceId}/{groupId}, which would otherwise swallow it.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_registry, resolve_instance
from app.core.exceptions import GatewayError, InvalidArgumentError
from app.core.logging import get_logger
from app.schemas.requests import (
    AddParticipantsRequest,
    BatchInviteLinksRequest,
    CreateGroupRequest,
    GroupSettingsRequest,
    InstanceScopedRequest,
    InviteLinkRequest,
    ParticipantsRequest,
)
from app.services.instance_registry import InstanceRegistry

logger = get_logger(__name__)
router = APIRouter()

SUMMARY_NOTE = "Use /groups/:instanceId?includeParticipants=true to get full participant details"


def _require_participants(participants: Optional[List[str]]) -> List[str]:
    if not participants:
        raise InvalidArgumentError("Participants array is required")
    return participants


# ============================================================================
# Invite links
# ============================================================================

@router.get("/group/{group_id}/invite-link")
async def get_group_invite_link(
    group_id: str,
    instanceId: Optional[str] = Query(default=None),
    forceCreate: Optional[str] = Query(default=None),
    registry: InstanceRegistry = Depends(get_registry),
):
    """
    Returns the group's invite link, minting one if none exists.
    ``forceCreate=true`` revokes the current code and mints a new one.
    """
    controller = resolve_instance(registry, instanceId, "instanceId query parameter is required")
    result = await controller.get_or_create_group_invite_link(group_id, forceCreate == "true")
    return {"success": True, **result}


@router.post("/group/{group_id}/invite-link")
async def create_group_invite_link(
    group_id: str,
    body: InviteLinkRequest,
    registry: InstanceRegistry = Depends(get_registry),
):
    controller = resolve_instance(registry, body.instanceId, "instanceId is required in request body")
    result = await controller.get_or_create_group_invite_link(group_id, body.forceCreate)
    return {"success": True, **result}


@router.delete("/group/{group_id}/invite-link")
async def revoke_group_invite_link(
    group_id: str,
    body: Optional[InstanceScopedRequest] = None,
    instanceId: Optional[str] = Query(default=None),
    registry: InstanceRegistry = Depends(get_registry),
):
    """
    Revokes the group's invite link. The instance id may come from the
    body or, for clients that cannot send DELETE bodies, the query string.
    """
    instance_id = (body.instanceId if body else None) or instanceId
    controller = resolve_instance(registry, instance_id, "instanceId is required in request body")
    result = await controller.revoke_group_invite_link(group_id)
    return {"success": True, **result}


@router.post("/groups/invite-links/batch")
async def batch_group_invite_links(
    body: BatchInviteLinksRequest,
    registry: InstanceRegistry = Depends(get_registry),
):
    """
    Fetches invite links for several groups one after another.
    A failure for one group is reported in ``errors`` and never aborts the batch.
    """
    if not body.instanceId or body.groupIds is None:
        raise InvalidArgumentError("instanceId and groupIds array are required")
    controller = resolve_instance(registry, body.instanceId)

    results: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []

    for group_id in body.groupIds:
        try:
            result = await controller.get_or_create_group_invite_link(group_id, body.forceCreate)
            results.append({"success": True, **result})
        except GatewayError as e:
            errors.append({"groupId": group_id, "error": e.message})

    logger.info(
        f"Batch invite links: {len(results)} succeeded, {len(errors)} failed",
        extra={"instance_id": body.instanceId},
    )

    return {
        "success": True,
        "results": results,
        "errors": errors,
        "summary": {
            "total": len(body.groupIds),
            "successful": len(results),
            "failed": len(errors),
        },
    }


# ============================================================================
# Group administration
# ============================================================================

@router.post("/group/create")
async def create_group(body: CreateGroupRequest, registry: InstanceRegistry = Depends(get_registry)):
    controller = resolve_instance(registry, body.instanceId)

    if not body.groupName or not body.participants:
        raise InvalidArgumentError("Group name and participants array are required")

    result = await controller.create_group(body.groupName, body.participants)
    return {"success": True, **result}


@router.post("/group/{group_id}/participants/add")
async def add_group_participants(
    group_id: str,
    body: AddParticipantsRequest,
    registry: InstanceRegistry = Depends(get_registry),
):
    controller = resolve_instance(registry, body.instanceId)
    participants = _require_participants(body.participants)

    result = await controller.add_participants(group_id, participants, body.asAdmin)
    return {"success": True, **result}


@router.post("/group/{group_id}/participants/promote")
async def promote_group_participants(
    group_id: str,
    body: ParticipantsRequest,
    registry: InstanceRegistry = Depends(get_registry),
):
    controller = resolve_instance(registry, body.instanceId)
    participants = _require_participants(body.participants)

    result = await controller.promote_participants(group_id, participants)
    return {"success": True, **result}


@router.post("/group/{group_id}/participants/demote")
async def demote_group_participants(
    group_id: str,
    body: ParticipantsRequest,
    registry: InstanceRegistry = Depends(get_registry),
):
    controller = resolve_instance(registry, body.instanceId)
    participants = _require_participants(body.participants)

    result = await controller.demote_participants(group_id, participants)
    return {"success": True, **result}


@router.put("/group/{group_id}/settings")
async def update_group_settings(
    group_id: str,
    body: GroupSettingsRequest,
    registry: InstanceRegistry = Depends(get_registry),
):
    controller = resolve_instance(registry, body.instanceId)
    result = await controller.update_group_settings(group_id, body.patch())
    return {"success": True, **result}


# ============================================================================
# Group queries
# ============================================================================

@router.get("/groups/{instance_id}")
async def list_groups(
    instance_id: str,
    includeParticipants: bool = Query(default=True),
    registry: InstanceRegistry = Depends(get_registry),
):
    controller = registry.get(instance_id)
    groups = await controller.get_all_groups(include_participants=includeParticipants)
    return {"success": True, "data": groups}


@router.get("/groups/{instance_id}/summary")
async def list_groups_summary(instance_id: str, registry: InstanceRegistry = Depends(get_registry)):
    """
    Lists groups without per-participant details (counts are kept).
    """
    controller = registry.get(instance_id)
    groups = await controller.get_all_groups(include_participants=False)
    return {
        "success": True,
        "data": groups,
        "meta": {
            "totalGroups": len(groups),
            "includeParticipants": False,
            "note": SUMMARY_NOTE,
        },
    }


@router.get("/group/{instance_id}/{group_id}")
async def get_group(instance_id: str, group_id: str, registry: InstanceRegistry = Depends(get_registry)):
    controller = registry.get(instance_id)
    group = await controller.get_group_by_id(group_id)
    return {"success": True, "data": group}
