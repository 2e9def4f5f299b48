"""Translation of application status changes into room membership changes.

Membership of a (room, user) pair is either absent or member. The desired
state is computed from the status change at the moment it happens and is not
persisted; no remote membership lookup is done before acting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from hirechat.models.application import APPLICATION_STATUS_ACCEPTED
from hirechat.services.chat_client import ChatClient
from hirechat.services.crypto import CredentialVault
from hirechat.services.errors import MissingCredentialError
from hirechat.services.executor import RemoteExecutor

logger = logging.getLogger(__name__)


class MembershipState(str, Enum):
    """Desired membership of a user in a room."""

    MEMBER = "member"
    NON_MEMBER = "non_member"


@dataclass(frozen=True)
class MembershipIntent:
    """A single membership change to apply to the chat server."""

    room_id: str
    user_id: str
    desired: MembershipState
    reason: str


def derive_intent(
    room_id: str,
    user_id: str,
    previous_status: str | None,
    new_status: str | None,
    *,
    deleted: bool = False,
) -> MembershipIntent | None:
    """Return the membership change implied by a status transition.

    Args:
        room_id: Remote id of the job's room
        user_id: Remote id of the applicant
        previous_status: Application status before the change
        new_status: Application status after the change (ignored when deleted)
        deleted: True when the application record is being deleted

    Returns:
        The intent to apply, or None when membership is unaffected
    """
    was_accepted = previous_status == APPLICATION_STATUS_ACCEPTED

    if deleted:
        if was_accepted:
            return MembershipIntent(
                room_id, user_id, MembershipState.NON_MEMBER, "Application deleted"
            )
        return None

    is_accepted = new_status == APPLICATION_STATUS_ACCEPTED
    if is_accepted and not was_accepted:
        return MembershipIntent(
            room_id, user_id, MembershipState.MEMBER, "Application accepted"
        )
    if was_accepted and not is_accepted:
        return MembershipIntent(
            room_id,
            user_id,
            MembershipState.NON_MEMBER,
            f"Application status changed to {new_status}",
        )
    return None


class MembershipSynchronizer:
    """Apply membership intents against the chat server."""

    def __init__(
        self,
        client: ChatClient,
        executor: RemoteExecutor,
        vault: CredentialVault,
    ) -> None:
        self.client = client
        self.executor = executor
        self.vault = vault

    async def apply(
        self,
        intent: MembershipIntent,
        creator_credential: bytes | None = None,
    ) -> None:
        """Apply ``intent``.

        Joins are invites issued as the job creator, who must already hold
        invite rights in the room. Removals are forced kicks issued with the
        administrative credential so they succeed even if the creator has
        since left the room.

        Raises:
            MissingCredentialError: If a join is requested without the
                creator's encrypted credential
            CredentialIntegrityError: If the creator's credential fails to decrypt
        """
        if intent.desired is MembershipState.MEMBER:
            if not creator_credential:
                raise MissingCredentialError(
                    f"No creator credential to invite {intent.user_id} into {intent.room_id}"
                )
            access_token = self.vault.decrypt(creator_credential)
            await self.executor.execute(
                lambda: self.client.invite(intent.room_id, intent.user_id, access_token)
            )
            logger.info("Invited %s into %s (%s)", intent.user_id, intent.room_id, intent.reason)
            return

        await self.executor.execute(
            lambda: self.client.kick(intent.room_id, intent.user_id, intent.reason)
        )
        logger.info("Removed %s from %s (%s)", intent.user_id, intent.room_id, intent.reason)
