"""Provisioning of remote chat identities for platform users."""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass

from hirechat.services.chat_client import ChatClient
from hirechat.services.errors import AlreadyExistsError
from hirechat.services.executor import RemoteExecutor

logger = logging.getLogger(__name__)

LOCALPART_SEPARATOR = "_"
BOOTSTRAP_SECRET_BYTES = 32

_DISALLOWED_RUN = re.compile(r"[^a-z0-9]+")


def normalize_localpart(value: str) -> str:
    """Derive a chat-server compatible localpart from an email or handle.

    Lowercases the input and collapses every run of characters outside
    ``[a-z0-9]`` into a single separator.

    >>> normalize_localpart("Jane.Doe+jobs@Example.com")
    'jane_doe_jobs_example_com'
    """
    collapsed = _DISALLOWED_RUN.sub(LOCALPART_SEPARATOR, value.strip().lower())
    collapsed = collapsed.strip(LOCALPART_SEPARATOR)
    return collapsed or "user"


@dataclass(frozen=True)
class ProvisionedIdentity:
    """Remote identifier and plaintext session credential of a provisioned user."""

    remote_user_id: str
    session_credential: str


class IdentityProvisioner:
    """Create or recover the remote account backing a platform user.

    The result is returned in plaintext; encrypting and persisting it is the
    caller's job. Errors are never swallowed here.
    """

    def __init__(self, client: ChatClient, executor: RemoteExecutor) -> None:
        self.client = client
        self.executor = executor

    async def provision_identity(
        self,
        user_id: int,
        email_or_handle: str,
        display_name: str,
    ) -> ProvisionedIdentity:
        """Create (or recover) the remote account for a platform user.

        Args:
            user_id: Platform user id, used for logging only
            email_or_handle: Source of the remote localpart
            display_name: Name shown to other room members

        Returns:
            The remote user id with a usable session credential
        """
        localpart = normalize_localpart(email_or_handle)
        # Bootstrap secret; it only ever lives long enough to log in once.
        password = secrets.token_urlsafe(BOOTSTRAP_SECRET_BYTES)

        try:
            remote_user_id = await self.executor.execute(
                lambda: self.client.register_account(localpart, password)
            )
            created = True
        except AlreadyExistsError:
            remote_user_id = self.client.user_id_for(localpart)
            logger.info(
                "Remote account %s for user %s already exists; resetting credentials",
                remote_user_id,
                user_id,
            )
            await self.executor.execute(
                lambda: self.client.upsert_account(remote_user_id, password, display_name)
            )
            created = False

        session_credential = await self.executor.execute(
            lambda: self.client.login(localpart, password)
        )

        if created:
            await self.executor.execute(
                lambda: self.client.set_display_name(
                    remote_user_id, display_name, session_credential
                )
            )

        logger.info(
            "Provisioned remote identity %s for user %s (%s)",
            remote_user_id,
            user_id,
            "created" if created else "recovered",
        )
        return ProvisionedIdentity(
            remote_user_id=remote_user_id,
            session_credential=session_credential,
        )
