"""Chat synchronization entry points used by the platform's domain services.

Domain code talks to a :class:`ChatService`. When the chat server is
configured, :func:`build_chat_service` returns a :class:`MatrixChatService`;
otherwise every call goes to :class:`NoopChatService` and does nothing.

Sync entry points (provisioning and membership) never raise. Call them after
the domain transaction has committed; their outcome does not affect it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hirechat.models import (
    JOB_STATUS_OPEN,
    ChatIdentity,
    ChatRoom,
    Job,
    JobApplication,
    Organization,
    User,
)
from hirechat.services.boundary import soft_failure
from hirechat.services.chat_client import ChatClient, ChatConfig
from hirechat.services.crypto import CredentialVault
from hirechat.services.dispatcher import SyncDispatcher
from hirechat.services.errors import AlreadyExistsError, MissingCredentialError
from hirechat.services.executor import RemoteExecutor, RetryPolicy
from hirechat.services.identity import IdentityProvisioner, normalize_localpart
from hirechat.services.membership import (
    MembershipIntent,
    MembershipState,
    MembershipSynchronizer,
    derive_intent,
)
from hirechat.services.rooms import EntityKind, RoomProvisioner

logger = logging.getLogger(__name__)


class ChatService(Protocol):
    """Capability interface for chat synchronization."""

    enabled: bool

    async def provision_identity(self, db: Session, user: User) -> ChatIdentity | None: ...

    async def provision_job_room(self, db: Session, job: Job) -> ChatRoom | None: ...

    async def provision_organization_room(
        self, db: Session, organization: Organization
    ) -> ChatRoom | None: ...

    def sync_membership(
        self,
        db: Session,
        application: JobApplication,
        previous_status: str | None,
        new_status: str | None,
    ) -> asyncio.Task[None] | None: ...

    def application_deleted(
        self, db: Session, application: JobApplication
    ) -> asyncio.Task[None] | None: ...

    async def send_message(
        self, db: Session, user: User, room: ChatRoom, body: str, txn_id: str | None = None
    ) -> str | None: ...

    async def list_messages(
        self, db: Session, user: User, room: ChatRoom, limit: int = 50
    ) -> list[dict[str, Any]]: ...

    async def health_check(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...


def identity_for(db: Session, user_id: int) -> ChatIdentity | None:
    """Return the stored chat identity of a platform user, if any."""
    return db.query(ChatIdentity).filter(ChatIdentity.user_id == user_id).first()


def _owner_column(entity_kind: EntityKind) -> Any:
    return ChatRoom.job_id if entity_kind is EntityKind.JOB else ChatRoom.organization_id


def room_for(db: Session, entity_kind: EntityKind, entity_id: int) -> ChatRoom | None:
    """Return the stored chat room of an owning entity, if any."""
    return db.query(ChatRoom).filter(_owner_column(entity_kind) == entity_id).first()


def owner_exists(db: Session, entity_kind: EntityKind, entity_id: int) -> bool:
    """Check the owning row is still present, bypassing the identity map."""
    model = Job if entity_kind is EntityKind.JOB else Organization
    return db.get(model, entity_id, populate_existing=True) is not None


class MatrixChatService:
    """Chat synchronization against a Matrix-compatible chat server."""

    enabled = True

    def __init__(
        self,
        config: ChatConfig,
        *,
        client: ChatClient | None = None,
        executor: RemoteExecutor | None = None,
        vault: CredentialVault | None = None,
        dispatcher: SyncDispatcher | None = None,
    ) -> None:
        self.config = config
        self.client = client or ChatClient(config)
        self.executor = executor or RemoteExecutor(
            RetryPolicy(max_retries=config.max_retries, base_delay=config.retry_base_delay)
        )
        self.vault = vault or CredentialVault.from_config(config)
        self.dispatcher = dispatcher or SyncDispatcher()
        self.identities = IdentityProvisioner(self.client, self.executor)
        self.rooms = RoomProvisioner(self.client, self.executor, config.room_alias_prefix)
        self.membership = MembershipSynchronizer(self.client, self.executor, self.vault)

    # -- identities ---------------------------------------------------------

    @soft_failure("provision_identity", entity="user")
    async def provision_identity(self, db: Session, user: User) -> ChatIdentity | None:
        """Make sure ``user`` has a remote identity; safe to call repeatedly."""
        existing = identity_for(db, user.id)
        if existing is not None:
            return existing
        return await self.dispatcher.run(
            ("identity", user.id), lambda: self._provision_identity(db, user)
        )

    async def _provision_identity(self, db: Session, user: User) -> ChatIdentity:
        existing = identity_for(db, user.id)
        if existing is not None:
            return existing

        remote_user_id = self.client.user_id_for(normalize_localpart(user.email))
        owner = (
            db.query(ChatIdentity)
            .filter(ChatIdentity.remote_user_id == remote_user_id)
            .first()
        )
        if owner is not None:
            # Recovery would reset another user's account.
            raise AlreadyExistsError(
                f"Remote user {remote_user_id} already belongs to user {owner.user_id}"
            )

        provisioned = await self.identities.provision_identity(
            user.id, user.email, user.chat_display_name
        )
        identity = ChatIdentity(
            user_id=user.id,
            remote_user_id=provisioned.remote_user_id,
            encrypted_credential=self.vault.encrypt(provisioned.session_credential),
        )
        return self._persist(db, identity, lambda: identity_for(db, user.id))

    # -- rooms --------------------------------------------------------------

    @soft_failure("provision_job_room", entity="job")
    async def provision_job_room(self, db: Session, job: Job) -> ChatRoom | None:
        """Create the job's room once the job is open; never recreates it."""
        existing = room_for(db, EntityKind.JOB, job.id)
        if existing is not None:
            return existing
        if job.status != JOB_STATUS_OPEN:
            logger.debug("Job %s is %s; no room yet", job.id, job.status)
            return None
        return await self._provision_room(
            db, EntityKind.JOB, job.id, job.title, job.description, job.creator_id
        )

    @soft_failure("provision_organization_room", entity="organization")
    async def provision_organization_room(
        self, db: Session, organization: Organization
    ) -> ChatRoom | None:
        """Create the organization's room, owned by the organization owner."""
        existing = room_for(db, EntityKind.ORGANIZATION, organization.id)
        if existing is not None:
            return existing
        return await self._provision_room(
            db,
            EntityKind.ORGANIZATION,
            organization.id,
            organization.name,
            organization.description,
            organization.owner_id,
        )

    async def _provision_room(
        self,
        db: Session,
        entity_kind: EntityKind,
        entity_id: int,
        title: str,
        topic: str | None,
        creator_id: int,
    ) -> ChatRoom | None:
        creator = identity_for(db, creator_id)
        if creator is None:
            raise MissingCredentialError(
                f"Creator {creator_id} of {entity_kind.value} {entity_id} has no chat identity"
            )

        async def provision() -> ChatRoom | None:
            existing = room_for(db, entity_kind, entity_id)
            if existing is not None:
                return existing
            provisioned = await self.rooms.provision_room(
                entity_id,
                entity_kind,
                title,
                topic,
                self.vault.decrypt(creator.encrypted_credential),
            )
            if not owner_exists(db, entity_kind, entity_id):
                # Deleted while the room was being created; nothing to record.
                logger.info(
                    "%s %s was deleted during provisioning; leaving room %s unrecorded",
                    entity_kind.value.capitalize(),
                    entity_id,
                    provisioned.room_id,
                )
                return None
            owner = (
                {"job_id": entity_id}
                if entity_kind is EntityKind.JOB
                else {"organization_id": entity_id}
            )
            room = ChatRoom(
                **owner,
                room_id=provisioned.room_id,
                room_alias=provisioned.room_alias,
            )
            return self._persist(db, room, lambda: room_for(db, entity_kind, entity_id))

        return await self.dispatcher.run(("room", entity_kind.value, entity_id), provision)

    @staticmethod
    def _persist(db: Session, record: Any, reload: Any) -> Any:
        db.add(record)
        try:
            db.commit()
        except IntegrityError:
            # Another worker recorded the same row first.
            db.rollback()
            existing = reload()
            if existing is None:
                raise
            return existing
        db.refresh(record)
        return record

    # -- membership ---------------------------------------------------------

    @soft_failure("sync_membership", entity="application")
    def sync_membership(
        self,
        db: Session,
        application: JobApplication,
        previous_status: str | None,
        new_status: str | None,
    ) -> asyncio.Task[None] | None:
        """Schedule the membership change implied by a status transition.

        Returns the scheduled task, or None when there is nothing to do.
        The caller does not need to await it.
        """
        return self._dispatch_membership(
            db, application, previous_status, new_status, deleted=False
        )

    @soft_failure("application_deleted", entity="application")
    def application_deleted(
        self, db: Session, application: JobApplication
    ) -> asyncio.Task[None] | None:
        """Schedule removal of an accepted applicant whose application is deleted."""
        return self._dispatch_membership(
            db, application, application.status, None, deleted=True
        )

    def _dispatch_membership(
        self,
        db: Session,
        application: JobApplication,
        previous_status: str | None,
        new_status: str | None,
        *,
        deleted: bool,
    ) -> asyncio.Task[None] | None:
        room = room_for(db, EntityKind.JOB, application.job_id)
        applicant = identity_for(db, application.applicant_id)
        if room is None or applicant is None:
            logger.debug(
                "Nothing to synchronize for application %s (room=%s, identity=%s)",
                application.id,
                room is not None,
                applicant is not None,
            )
            return None

        intent = derive_intent(
            room.room_id,
            applicant.remote_user_id,
            previous_status,
            new_status,
            deleted=deleted,
        )
        if intent is None:
            return None

        creator_credential: bytes | None = None
        if intent.desired is MembershipState.MEMBER:
            creator = identity_for(db, application.job.creator_id)
            creator_credential = creator.encrypted_credential if creator else None

        application_id = application.id
        return self.dispatcher.spawn(
            (intent.room_id, intent.user_id),
            lambda: self._apply_intent(intent, creator_credential, application_id=application_id),
        )

    @soft_failure("apply_membership", entity="application_id")
    async def _apply_intent(
        self,
        intent: MembershipIntent,
        creator_credential: bytes | None,
        *,
        application_id: int,
    ) -> None:
        await self.membership.apply(intent, creator_credential)

    # -- pass-through -------------------------------------------------------

    async def send_message(
        self, db: Session, user: User, room: ChatRoom, body: str, txn_id: str | None = None
    ) -> str | None:
        """Send ``body`` to ``room`` as ``user``.

        Not failure-isolated: errors, including credential integrity
        failures, reach the caller.
        """
        token = self._session_credential(db, user)
        transaction_id = txn_id or uuid.uuid4().hex
        return await self.executor.execute(
            lambda: self.client.send_message(room.room_id, body, transaction_id, token)
        )

    async def list_messages(
        self, db: Session, user: User, room: ChatRoom, limit: int = 50
    ) -> list[dict[str, Any]]:
        """Return recent messages of ``room`` as seen by ``user``."""
        token = self._session_credential(db, user)
        return await self.executor.execute(
            lambda: self.client.list_messages(room.room_id, token, limit)
        )

    def _session_credential(self, db: Session, user: User) -> str:
        identity = identity_for(db, user.id)
        if identity is None:
            raise MissingCredentialError(f"User {user.id} has no chat identity")
        return self.vault.decrypt(identity.encrypted_credential)

    # -- lifecycle ----------------------------------------------------------

    async def health_check(self) -> dict[str, Any]:
        status = await self.client.health_check()
        status["pending_sync_tasks"] = self.dispatcher.pending
        status["metrics"] = self.client.get_metrics()
        return status

    async def close(self) -> None:
        """Wait for in-flight sync work, then release the HTTP client."""
        await self.dispatcher.drain()
        await self.client.close()


class NoopChatService:
    """Stand-in used when the chat server is not configured."""

    enabled = False

    async def provision_identity(self, db: Session, user: User) -> ChatIdentity | None:
        return None

    async def provision_job_room(self, db: Session, job: Job) -> ChatRoom | None:
        return None

    async def provision_organization_room(
        self, db: Session, organization: Organization
    ) -> ChatRoom | None:
        return None

    def sync_membership(
        self,
        db: Session,
        application: JobApplication,
        previous_status: str | None,
        new_status: str | None,
    ) -> asyncio.Task[None] | None:
        return None

    def application_deleted(
        self, db: Session, application: JobApplication
    ) -> asyncio.Task[None] | None:
        return None

    async def send_message(
        self, db: Session, user: User, room: ChatRoom, body: str, txn_id: str | None = None
    ) -> str | None:
        return None

    async def list_messages(
        self, db: Session, user: User, room: ChatRoom, limit: int = 50
    ) -> list[dict[str, Any]]:
        return []

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "disabled",
            "enabled": False,
            "error": "Chat integration is disabled",
        }

    async def close(self) -> None:
        return None


def build_chat_service(config: ChatConfig) -> ChatService:
    """Select the chat service implementation for this process.

    Raises:
        ValueError: If chat is enabled but the encryption key is unusable
    """
    if not config.enabled:
        logger.info("Chat integration disabled; using no-op chat service")
        return NoopChatService()

    logger.info("Chat integration enabled against %s", config.base_url)
    return MatrixChatService(config)
