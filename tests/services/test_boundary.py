import logging
from types import SimpleNamespace

import pytest

from hirechat.services.boundary import soft_failure
from hirechat.services.errors import (
    CredentialIntegrityError,
    MissingCredentialError,
    RemoteUnavailableError,
)

LOGGER = "hirechat.services.boundary"


@soft_failure("provision_job_room", entity="job")
async def async_entry(job, exc=None):
    if exc is not None:
        raise exc
    return "done"


@soft_failure("sync_membership", entity="application")
def sync_entry(db, application, exc=None):
    if exc is not None:
        raise exc
    return "done"


@pytest.mark.asyncio
async def test_success_passes_through():
    assert await async_entry(SimpleNamespace(id=1)) == "done"
    assert sync_entry(None, SimpleNamespace(id=2)) == "done"


@pytest.mark.asyncio
async def test_remote_failure_is_logged_as_warning(caplog):
    caplog.set_level(logging.DEBUG, logger=LOGGER)

    result = await async_entry(SimpleNamespace(id=11), RemoteUnavailableError("down"))

    assert result is None
    [record] = caplog.records
    assert record.levelno == logging.WARNING
    assert "provision_job_room" in record.getMessage()
    assert "11" in record.getMessage()


@pytest.mark.asyncio
async def test_integrity_failure_is_logged_as_error(caplog):
    caplog.set_level(logging.DEBUG, logger=LOGGER)

    assert await async_entry(SimpleNamespace(id=5), CredentialIntegrityError("bad")) is None

    [record] = caplog.records
    assert record.levelno == logging.ERROR


def test_missing_credential_is_logged_at_debug(caplog):
    caplog.set_level(logging.DEBUG, logger=LOGGER)

    assert sync_entry(None, SimpleNamespace(id=9), exc=MissingCredentialError("none")) is None

    [record] = caplog.records
    assert record.levelno == logging.DEBUG
    assert "sync_membership" in record.getMessage()


def test_unexpected_errors_are_swallowed_too(caplog):
    caplog.set_level(logging.WARNING, logger=LOGGER)

    assert sync_entry(None, application=7, exc=KeyError("x")) is None
    assert "entity 7" in caplog.records[0].getMessage()


def test_wrapped_function_keeps_its_name():
    assert sync_entry.__name__ == "sync_entry"
