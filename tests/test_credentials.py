from datetime import timedelta

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from typeflow.credentials import CredentialService, PostgresCredential, RedisCredential
from typeflow.credentials.models import Credential
from typeflow.credentials.service import create_client
from typeflow.utils.security import decrypt_config, decrypt_string, encrypt_config, encrypt_string

from .conftest import ORG_ID


@pytest.fixture
def db_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    return engine


def store(db_engine, **fields) -> Credential:
    credential = Credential(**fields)
    with Session(db_engine) as session:
        session.add(credential)
        session.commit()
        session.refresh(credential)
    return credential


def test_encrypt_round_trip():
    secret = "s3cr3t-päss"
    encrypted = encrypt_string(secret)
    assert encrypted != secret
    assert decrypt_string(encrypted) == secret


def test_decrypt_leaves_plain_values():
    assert decrypt_string("not base64!") == "not base64!"
    assert encrypt_string("") == ""


def test_only_sensitive_fields_are_encrypted():
    config = {"host": "db.local", "password": "pw", "port": 5432}
    encrypted = encrypt_config(config)
    assert encrypted["host"] == "db.local"
    assert encrypted["port"] == 5432
    assert encrypted["password"] != "pw"
    assert decrypt_config(encrypted) == config


def test_create_client_by_type():
    assert isinstance(create_client("postgres", {}), PostgresCredential)
    with pytest.raises(ValueError, match="Unknown credential type"):
        create_client("ftp", {})


@pytest.mark.asyncio
async def test_service_builds_clients_by_name(db_engine):
    store(db_engine, organization_id=ORG_ID, name="main db", type="postgres", config=encrypt_config({"host": "h", "password": "pw"}))
    store(db_engine, organization_id=ORG_ID, name="cache", type="redis", config={"host": "r"})
    store(db_engine, organization_id=ORG_ID, name="broken", type="ftp", config={})
    store(db_engine, organization_id="other", name="theirs", type="redis", config={})
    service = CredentialService(engine=db_engine)

    clients = await service.get_credentials(ORG_ID)

    assert set(clients) == {"main db", "cache"}
    assert isinstance(clients["main db"], PostgresCredential)
    assert clients["main db"].config == {"host": "h", "password": "pw"}
    assert isinstance(clients["cache"], RedisCredential)


@pytest.mark.asyncio
async def test_service_reuses_cached_clients(db_engine):
    store(db_engine, organization_id=ORG_ID, name="cache", type="redis", config={})
    service = CredentialService(engine=db_engine)

    first = await service.get_credentials(ORG_ID)
    second = await service.get_credentials(ORG_ID)

    assert first["cache"] is second["cache"]

    await service.disconnect_all()
    third = await service.get_credentials(ORG_ID)
    assert third["cache"] is not first["cache"]


def test_new_credentials_get_utc_timestamps():
    credential = Credential(organization_id=ORG_ID, name="main db", type="postgres")
    assert credential.created_at.tzinfo is not None
    assert credential.created_at.utcoffset() == timedelta(0)
