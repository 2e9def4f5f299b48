"""Provisioning of remote chat rooms for jobs and organizations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from hirechat.services.chat_client import ChatClient
from hirechat.services.errors import AlreadyExistsError
from hirechat.services.executor import RemoteExecutor

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    """Kinds of platform entities that own a chat room."""

    JOB = "job"
    ORGANIZATION = "organization"


def room_alias_for(entity_kind: EntityKind, entity_id: int, prefix: str = "job") -> str | None:
    """Return the deterministic alias localpart for an owning entity.

    Only job rooms carry an alias; organization rooms are reached through
    the stored room id alone.
    """
    if entity_kind is EntityKind.JOB:
        return f"{prefix}-{entity_id}"
    return None


@dataclass(frozen=True)
class ProvisionedRoom:
    """Remote room id and optional alias of a provisioned room."""

    room_id: str
    room_alias: str | None


class RoomProvisioner:
    """Create the single remote room owned by a job or organization.

    Callers must make sure the entity has no recorded room before calling;
    no lookup against the local store happens here.
    """

    def __init__(
        self,
        client: ChatClient,
        executor: RemoteExecutor,
        alias_prefix: str = "job",
    ) -> None:
        self.client = client
        self.executor = executor
        self.alias_prefix = alias_prefix

    async def provision_room(
        self,
        entity_id: int,
        entity_kind: EntityKind,
        title: str,
        topic: str | None,
        creator_credential: str,
    ) -> ProvisionedRoom:
        """Create a world-discoverable, open-join room as the entity's creator.

        When the deterministic alias is already taken, an earlier attempt
        for the same entity got through before its response was lost; the
        existing room is returned instead of creating a duplicate.
        """
        alias = room_alias_for(entity_kind, entity_id, self.alias_prefix)

        try:
            room_id, room_alias = await self.executor.execute(
                lambda: self.client.create_room(alias, title, topic, creator_credential)
            )
        except AlreadyExistsError:
            if alias is None:
                raise
            logger.info(
                "Room alias %s for %s %s already exists; adopting existing room",
                alias,
                entity_kind.value,
                entity_id,
            )
            room_id = await self.executor.execute(lambda: self.client.resolve_alias(alias))
            room_alias = self.client.room_alias_for(alias)

        logger.info(
            "Provisioned room %s for %s %s", room_id, entity_kind.value, entity_id
        )
        return ProvisionedRoom(room_id=room_id, room_alias=room_alias)
