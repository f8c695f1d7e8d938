"""
app/services/instance_controller.py

Purpose: API-facing operations for one messaging instance

- Wraps exactly one SessionProvider
- Tracks readiness through the session state machine
- Enforces the readiness precondition before touching the provider
- Normalizes participants and projects provider results into API payloads
- Serializes operations on the same instance with an asyncio.Lock
- Logs every operation with instance context
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.core.exceptions import (
    GroupCreateFailedError,
    GroupQueryFailedError,
    InvalidArgumentError,
    InviteLinkFailedError,
    NotAGroupError,
    NotFoundError,
    NotReadyError,
    ParticipantsUpdateFailedError,
    RevokeFailedError,
    SendFailedError,
    SettingsUpdateFailedError,
)
from app.core.logging import InstanceLogger, get_logger
from app.flow.machine import SessionStateMachine
from app.services.session_provider import (
    Chat,
    ChatNotFoundError,
    SessionProvider,
    SessionProviderError,
)
from utils.whatsapp_utils import build_invite_link, normalize_participant, normalize_participants

logger = get_logger(__name__)


def project_group(chat: Chat, include_participants: bool = True, detailed: bool = False) -> Dict[str, Any]:
    """
    Projects a group chat into the API's group summary record.

    Args:
        chat: Group chat from the provider
        include_participants: Include the per-participant list (counts are always included)
        detailed: Add the admin-only settings flags

    Returns:
        Group summary dict
    """
    participants = chat.participants or []
    group: Dict[str, Any] = {
        "id": chat.id,
        "name": chat.name,
        "description": chat.description or "",
    }

    if include_participants:
        group["participants"] = [
            {"id": p.id, "isAdmin": p.is_admin, "isSuperAdmin": p.is_super_admin}
            for p in participants
        ]

    group.update({
        "participantCount": len(participants),
        "adminCount": sum(1 for p in participants if p.is_admin or p.is_super_admin),
        "createdAt": chat.created_at,
        "createdBy": chat.owner,
        "isReadOnly": chat.is_read_only,
        "unreadCount": chat.unread_count,
        "archived": chat.archived,
        "pinned": chat.pinned,
        "isMuted": chat.is_muted,
        "inviteCode": chat.invite_code or None,
    })

    if detailed:
        group["messagesAdminsOnly"] = chat.messages_admins_only
        group["editGroupInfoAdminsOnly"] = chat.edit_info_admins_only

    return group


def _require_participants(participants: Any) -> List[str]:
    if not isinstance(participants, list) or not participants:
        raise InvalidArgumentError("Participants array is required")
    return normalize_participants(participants)


class InstanceController:
    """
    One instance: a session provider plus its readiness state.

    Every operation except get_status, initialize and disconnect requires the
    session to be READY and fails with NotReadyError otherwise, without
    calling the provider.
    """

    def __init__(self, instance_id: str, provider: SessionProvider, invite_link_base: Optional[str] = None):
        self.instance_id = instance_id
        self.provider = provider
        self.invite_link_base = invite_link_base or settings.INVITE_LINK_BASE
        self.log = InstanceLogger(logger, instance_id)
        self.machine = SessionStateMachine(self.log)
        self._lock = asyncio.Lock()

        provider.add_listener(self.machine.handle)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self.machine.is_ready

    @property
    def qr_code(self) -> Optional[str]:
        return self.machine.qr_code

    def get_status(self) -> Dict[str, Any]:
        snapshot = self.machine.snapshot()
        return {
            "instanceId": self.instance_id,
            "isReady": snapshot.is_ready,
            "hasQR": snapshot.qr_code is not None,
            "state": snapshot.state.value,
        }

    @asynccontextmanager
    async def _ready_operation(self):
        async with self._lock:
            if not self.machine.is_ready:
                raise NotReadyError()
            yield

    async def _resolve_group(self, group_id: str) -> Chat:
        if not group_id:
            raise InvalidArgumentError("groupId is required")

        try:
            chat = await self.provider.get_chat_by_id(group_id)
        except ChatNotFoundError:
            self.log.error(f"Chat not found: {group_id}", extra={"group_id": group_id})
            raise NotFoundError(f"Chat not found: {group_id}")

        if not chat.is_group:
            self.log.error(f"Chat is not a group: {group_id}", extra={"group_id": group_id})
            raise NotAGroupError()

        return chat

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> Dict[str, Any]:
        """
        Starts the provider. Readiness arrives later through the ready event.

        Returns:
            {"success": True} or {"success": False, "error": ...}
        """
        self.machine.reset()
        try:
            await self.provider.initialize()
            self.log.info("Client initialization started")
            return {"success": True}
        except Exception as e:
            self.log.error(f"Failed to initialize: {e}")
            return {"success": False, "error": str(e)}

    async def disconnect(self) -> Dict[str, Any]:
        """
        Tears the provider down. Never raises.
        """
        try:
            self.log.info("Disconnecting client")
            await self.provider.destroy()
            return {"success": True}
        except Exception as e:
            self.log.error(f"Failed to disconnect: {e}")
            return {"success": False, "error": str(e)}

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_message(self, to: str, text: str) -> Dict[str, Any]:
        async with self._ready_operation():
            if not to or not text:
                raise InvalidArgumentError('Both "to" and "message" fields are required')

            chat_id = normalize_participant(to)
            try:
                result = await self.provider.send_message(chat_id, text)
            except SessionProviderError as e:
                self.log.error(f"Failed to send message: {e}")
                raise SendFailedError(f"Failed to send message: {e}")

            self.log.info(f"Message sent to {to}")
            return {
                "messageId": result.id,
                "timestamp": result.timestamp,
                "to": result.to,
            }

    # ------------------------------------------------------------------
    # Group administration
    # ------------------------------------------------------------------

    async def create_group(self, name: str, participants: List[str]) -> Dict[str, Any]:
        async with self._ready_operation():
            if not name:
                raise InvalidArgumentError("Group name is required")
            formatted = _require_participants(participants)

            try:
                group = await self.provider.create_group(name, formatted)
            except SessionProviderError as e:
                self.log.error(f"Failed to create group: {e}")
                raise GroupCreateFailedError(f"Failed to create group: {e}")

            self.log.info(f"Group created: {name} with {len(formatted)} participants")
            return {
                "groupId": group.gid,
                "groupName": name,
                "participants": formatted,
                "inviteCode": group.invite_code or None,
            }

    async def update_group_settings(self, group_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Applies the fields present in ``patch``, one provider call each.

        Fields already applied stay applied if a later one fails; the call
        then fails as a whole without reporting partial results.
        """
        async with self._ready_operation():
            try:
                await self._resolve_group(group_id)
                results: Dict[str, Any] = {}

                subject = patch.get("subject") or patch.get("name")
                if subject:
                    await self.provider.set_group_subject(group_id, subject)
                    results["subject"] = subject
                    self.log.info(f"Group subject updated: {subject}", extra={"group_id": group_id})

                if patch.get("description"):
                    await self.provider.set_group_description(group_id, patch["description"])
                    results["description"] = patch["description"]
                    self.log.info("Group description updated", extra={"group_id": group_id})

                if patch.get("messagesAdminsOnly") is not None:
                    await self.provider.set_messages_admins_only(group_id, patch["messagesAdminsOnly"])
                    results["messagesAdminsOnly"] = patch["messagesAdminsOnly"]
                    self.log.info(f"Messages admins only: {patch['messagesAdminsOnly']}")

                if patch.get("editGroupInfoAdminsOnly") is not None:
                    await self.provider.set_info_admins_only(group_id, patch["editGroupInfoAdminsOnly"])
                    results["editGroupInfoAdminsOnly"] = patch["editGroupInfoAdminsOnly"]
                    self.log.info(f"Edit info admins only: {patch['editGroupInfoAdminsOnly']}")

            except SessionProviderError as e:
                self.log.error(f"Failed to update group settings: {e}")
                raise SettingsUpdateFailedError(f"Failed to update group settings: {e}")

            return {"groupId": group_id, "updatedSettings": results}

    async def add_participants(self, group_id: str, participants: List[str], as_admin: bool = False) -> Dict[str, Any]:
        """
        Adds participants and, with ``as_admin``, promotes each one separately.

        A failed promotion is logged and recorded in ``promotions``; it never
        fails the call or stops the remaining promotions.
        """
        async with self._ready_operation():
            formatted = _require_participants(participants)
            try:
                await self._resolve_group(group_id)
                result = await self.provider.add_participants(group_id, formatted)
            except SessionProviderError as e:
                self.log.error(f"Failed to add participants: {e}")
                raise ParticipantsUpdateFailedError(f"Failed to add participants: {e}")

            promotions: List[Dict[str, Any]] = []
            if as_admin:
                for participant in formatted:
                    try:
                        await self.provider.promote_participants(group_id, [participant])
                        promotions.append({"participant": participant, "promoted": True})
                        self.log.info(f"Promoted {participant} to admin", extra={"group_id": group_id})
                    except SessionProviderError as e:
                        promotions.append({"participant": participant, "promoted": False, "error": str(e)})
                        self.log.warning(f"Failed to promote {participant}: {e}", extra={"group_id": group_id})

            self.log.info(f"Added {len(formatted)} participants to group", extra={"group_id": group_id})
            return {
                "groupId": group_id,
                "addedParticipants": formatted,
                "asAdmin": as_admin,
                "result": result,
                "promotions": promotions,
            }

    async def promote_participants(self, group_id: str, participants: List[str]) -> Dict[str, Any]:
        async with self._ready_operation():
            formatted = _require_participants(participants)
            try:
                await self._resolve_group(group_id)
                await self.provider.promote_participants(group_id, formatted)
            except SessionProviderError as e:
                self.log.error(f"Failed to promote participants: {e}")
                raise ParticipantsUpdateFailedError(f"Failed to promote participants: {e}")

            self.log.info(f"Promoted {len(formatted)} participants to admin", extra={"group_id": group_id})
            return {"groupId": group_id, "promotedParticipants": formatted}

    async def demote_participants(self, group_id: str, participants: List[str]) -> Dict[str, Any]:
        async with self._ready_operation():
            formatted = _require_participants(participants)
            try:
                await self._resolve_group(group_id)
                await self.provider.demote_participants(group_id, formatted)
            except SessionProviderError as e:
                self.log.error(f"Failed to demote participants: {e}")
                raise ParticipantsUpdateFailedError(f"Failed to demote participants: {e}")

            self.log.info(f"Demoted {len(formatted)} participants from admin", extra={"group_id": group_id})
            return {"groupId": group_id, "demotedParticipants": formatted}

    # ------------------------------------------------------------------
    # Group queries
    # ------------------------------------------------------------------

    async def get_all_groups(self, include_participants: bool = True) -> List[Dict[str, Any]]:
        async with self._ready_operation():
            try:
                chats = await self.provider.get_chats()
            except SessionProviderError as e:
                self.log.error(f"Failed to get groups: {e}")
                raise GroupQueryFailedError(f"Failed to get groups: {e}")

            groups = [chat for chat in chats if chat.is_group]
            self.log.info(f"Retrieved {len(groups)} groups")
            return [project_group(chat, include_participants=include_participants) for chat in groups]

    async def get_group_by_id(self, group_id: str) -> Dict[str, Any]:
        async with self._ready_operation():
            try:
                chat = await self._resolve_group(group_id)
            except SessionProviderError as e:
                self.log.error(f"Failed to get group: {e}")
                raise GroupQueryFailedError(f"Failed to get group: {e}")

            self.log.info(f"Retrieved group info for {group_id}", extra={"group_id": group_id})
            return project_group(chat, detailed=True)

    # ------------------------------------------------------------------
    # Invite links
    # ------------------------------------------------------------------

    def _invite_payload(self, chat: Chat, group_id: str, invite_code: str, created: bool) -> Dict[str, Any]:
        return {
            "groupId": group_id,
            "inviteCode": invite_code,
            "inviteLink": build_invite_link(invite_code, self.invite_link_base),
            "created": created,
            "groupName": chat.name,
        }

    async def get_or_create_group_invite_link(self, group_id: str, force_create: bool = False) -> Dict[str, Any]:
        """
        Returns the group's invite link, minting a new one when needed.

        1. Read the existing code; return it (created=False) unless force_create.
        2. With force_create and an existing code, revoke it (best effort).
        3. Mint a fresh code (created=True).
        """
        async with self._ready_operation():
            try:
                chat = await self._resolve_group(group_id)
            except SessionProviderError as e:
                self.log.error(f"Failed to get/create group invite link: {e}")
                raise InviteLinkFailedError(f"Failed to get/create group invite link: {e}")

            invite_code: Optional[str] = None
            try:
                invite_code = await self.provider.get_invite_code(group_id)
            except SessionProviderError as e:
                self.log.warning(f"No existing invite code found: {e}")

            if invite_code and not force_create:
                self.log.info(f"Retrieved existing group invite link for {group_id}", extra={"group_id": group_id})
                return self._invite_payload(chat, group_id, invite_code, created=False)

            if invite_code and force_create:
                try:
                    await self.provider.revoke_invite(group_id)
                    self.log.info(f"Revoked existing invite code for {group_id}")
                except SessionProviderError as e:
                    self.log.warning(f"Failed to revoke existing invite code for {group_id}: {e}")

            try:
                invite_code = await self.provider.get_invite_code(group_id)
            except SessionProviderError as e:
                self.log.error(f"Failed to create invite code: {e}")
                raise InviteLinkFailedError(f"Failed to create group invite link: {e}")

            if not invite_code:
                self.log.error(f"No invite code returned for {group_id}")
                raise InviteLinkFailedError("Failed to create group invite link: no invite code returned")

            self.log.info(f"Created new group invite link for {group_id}", extra={"group_id": group_id})
            return self._invite_payload(chat, group_id, invite_code, created=True)

    async def revoke_group_invite_link(self, group_id: str) -> Dict[str, Any]:
        async with self._ready_operation():
            try:
                chat = await self._resolve_group(group_id)
                await self.provider.revoke_invite(group_id)
            except SessionProviderError as e:
                self.log.error(f"Failed to revoke group invite link: {e}")
                raise RevokeFailedError(f"Failed to revoke group invite link: {e}")

            self.log.info(f"Revoked group invite link for {group_id}", extra={"group_id": group_id})
            return {
                "groupId": group_id,
                "message": "Group invite link revoked successfully",
                "groupName": chat.name,
            }
