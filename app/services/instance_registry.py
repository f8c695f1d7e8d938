"""
app/services/instance_registry.py

Purpose: Instance registry

- Maps instance id -> InstanceController
- Creates instances and starts their sessions
- Removes instances, releasing the session and its stored credentials
- Disconnects everything at shutdown
"""

import os
import shutil
from typing import Callable, Dict, List, Optional

from app.core.config import settings
from app.core.exceptions import ConflictError, InvalidArgumentError, NotFoundError
from app.core.logging import get_logger
from app.services.instance_controller import InstanceController
from app.services.session_provider import SessionProvider

logger = get_logger(__name__)

ProviderFactory = Callable[[str], SessionProvider]


class InstanceRegistry:
    """
    Owns every InstanceController, at most one per instance id.

    Mutated only from the event loop, so no locking is needed around the map.
    """

    def __init__(self, provider_factory: ProviderFactory, auth_dir: Optional[str] = None):
        self._provider_factory = provider_factory
        self._auth_dir = auth_dir or settings.AUTH_DIR
        self._instances: Dict[str, InstanceController] = {}

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, instance_id: str) -> bool:
        return instance_id in self._instances

    def ids(self) -> List[str]:
        return list(self._instances)

    def auth_path(self, instance_id: str) -> str:
        """
        Credential directory of an instance: a direct child of AUTH_DIR.

        Raises:
            InvalidArgumentError: If the id would resolve anywhere else
        """
        root = os.path.abspath(self._auth_dir)
        path = os.path.normpath(os.path.join(root, instance_id))
        if os.path.dirname(path) != root or os.path.basename(path) != instance_id:
            raise InvalidArgumentError("Instance ID cannot be used as a credential directory name")
        return path

    async def create(self, instance_id: str) -> InstanceController:
        """
        Registers a new instance and starts its session.

        A failed start is logged and the instance stays registered in a
        not-ready state; callers poll the status endpoint.

        Raises:
            InvalidArgumentError: If the id is empty or does not name a directory inside AUTH_DIR
            ConflictError: If the id is already registered
        """
        if not instance_id or not str(instance_id).strip():
            raise InvalidArgumentError("Instance ID is required")

        self.auth_path(instance_id)

        if instance_id in self._instances:
            raise ConflictError("Instance already exists")

        controller = InstanceController(instance_id, self._provider_factory(instance_id))
        self._instances[instance_id] = controller

        result = await controller.initialize()
        if not result["success"]:
            logger.error(
                f"Instance {instance_id} registered but failed to start: {result.get('error')}",
                extra={"instance_id": instance_id},
            )

        if self._instances.get(instance_id) is not controller:
            logger.warning("Instance was removed while starting", extra={"instance_id": instance_id})
        else:
            logger.info("Instance created", extra={"instance_id": instance_id})
        return controller

    def find(self, instance_id: str) -> Optional[InstanceController]:
        return self._instances.get(instance_id)

    def get(self, instance_id: str) -> InstanceController:
        """
        Raises:
            NotFoundError: If no instance has this id
        """
        controller = self._instances.get(instance_id)
        if controller is None:
            raise NotFoundError("Instance not found")
        return controller

    async def remove(self, instance_id: str) -> None:
        """
        Disconnects the instance, unregisters it and deletes its stored credentials.
        Disconnect failures are logged only; removal always proceeds.

        Raises:
            NotFoundError: If no instance has this id
        """
        controller = self.get(instance_id)

        result = await controller.disconnect()
        if not result["success"]:
            logger.warning(
                f"Disconnect failed during removal, continuing: {result.get('error')}",
                extra={"instance_id": instance_id},
            )

        self._instances.pop(instance_id, None)

        auth_path = self.auth_path(instance_id)
        if os.path.exists(auth_path):
            shutil.rmtree(auth_path, ignore_errors=True)
            logger.info(f"Removed credential state at {auth_path}", extra={"instance_id": instance_id})

        logger.info(f"Instance deleted: {instance_id}")

    async def disconnect_all(self) -> None:
        """
        Disconnects every instance one after another.
        A failure for one instance does not stop the rest.
        """
        for instance_id, controller in list(self._instances.items()):
            logger.info(f"Disconnecting instance: {instance_id}")
            result = await controller.disconnect()
            if not result["success"]:
                logger.error(
                    f"Error disconnecting {instance_id}: {result.get('error')}",
                    extra={"instance_id": instance_id},
                )
