"""
app/schemas/requests.py

Pydantic models for request bodies.

Fields use the camelCase names of the wire format. Required-ness is checked
in the route handlers so that missing fields produce the specific 400
messages clients already rely on; the models only enforce types.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class CreateInstanceRequest(BaseModel):
    """Request schema for POST /instance/create."""

    instanceId: Optional[str] = Field(default=None, description="Caller-chosen instance id")


class InstanceScopedRequest(BaseModel):
    """Any body that names the instance it targets."""

    instanceId: Optional[str] = Field(default=None, description="Target instance id")


class SendMessageRequest(InstanceScopedRequest):
    """Request schema for POST /message/send."""

    to: Optional[str] = Field(default=None, description="Phone number or chat address")
    message: Optional[str] = Field(default=None, description="Message text")


class CreateGroupRequest(InstanceScopedRequest):
    """Request schema for POST /group/create."""

    groupName: Optional[str] = Field(default=None, description="Group subject")
    participants: Optional[List[str]] = Field(default=None, description="Phone numbers or addresses")


class ParticipantsRequest(InstanceScopedRequest):
    """Request schema for the promote/demote participant routes."""

    participants: Optional[List[str]] = Field(default=None, description="Phone numbers or addresses")


class AddParticipantsRequest(ParticipantsRequest):
    """Request schema for POST /group/{groupId}/participants/add."""

    asAdmin: bool = Field(default=False, description="Promote every added participant")


class GroupSettingsRequest(InstanceScopedRequest):
    """
    Request schema for PUT /group/{groupId}/settings.
    Only fields present in the body are applied.
    """

    model_config = ConfigDict(extra="ignore")

    subject: Optional[str] = Field(default=None, description="New group subject")
    name: Optional[str] = Field(default=None, description="Alias of subject")
    description: Optional[str] = Field(default=None, description="New group description")
    messagesAdminsOnly: Optional[bool] = Field(default=None, description="Only admins may send messages")
    editGroupInfoAdminsOnly: Optional[bool] = Field(default=None, description="Only admins may edit group info")

    def patch(self) -> dict:
        """The settings fields the caller actually sent."""
        return self.model_dump(exclude_unset=True, exclude={"instanceId"})


class InviteLinkRequest(InstanceScopedRequest):
    """Request schema for POST /group/{groupId}/invite-link."""

    forceCreate: bool = Field(default=False, description="Revoke any existing code and mint a new one")


class BatchInviteLinksRequest(InstanceScopedRequest):
    """Request schema for POST /groups/invite-links/batch."""

    groupIds: Optional[List[str]] = Field(default=None, description="Group ids to fetch links for")
    forceCreate: bool = Field(default=False, description="Revoke any existing code and mint a new one")
