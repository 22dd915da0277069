import logging
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from typeflow.credentials.clients import CLIENT_TYPES, CredentialClient
from typeflow.credentials.models import Credential
from typeflow.utils.security import decrypt_config

logger = logging.getLogger(__name__)


def create_client(credential_type: str, config: Dict[str, Any]) -> CredentialClient:
    client_cls = CLIENT_TYPES.get(credential_type)
    if client_cls is None:
        raise ValueError(f"Unknown credential type: {credential_type}")
    return client_cls(config)


class CredentialService:
    """
    Builds connection clients from an organization's stored credentials.

    Clients are cached per `organization:credential` so repeated runs reuse
    them; a credential that cannot be turned into a client is logged and
    left out.
    """

    def __init__(self, engine: Optional[Engine] = None):
        if engine is None:
            from typeflow.database import engine as default_engine

            engine = default_engine
        self.engine = engine
        self._client_cache: Dict[str, CredentialClient] = {}

    def _load(self, organization_id: str):
        with Session(self.engine) as session:
            return session.exec(
                select(Credential).where(Credential.organization_id == organization_id)
            ).all()

    async def get_credentials(self, organization_id: str) -> Dict[str, CredentialClient]:
        """Clients keyed by credential name."""
        clients: Dict[str, CredentialClient] = {}
        for credential in self._load(organization_id):
            cache_key = f"{organization_id}:{credential.id}"
            if cache_key in self._client_cache:
                clients[credential.name] = self._client_cache[cache_key]
                continue
            try:
                client = create_client(credential.type, decrypt_config(credential.config or {}))
            except ValueError as e:
                logger.error(f"Failed to initialize credential '{credential.name}': {e}")
                continue
            self._client_cache[cache_key] = client
            clients[credential.name] = client
        return clients

    async def disconnect_all(self) -> None:
        for cache_key, client in self._client_cache.items():
            try:
                await client.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting credential client {cache_key}: {e}")
        self._client_cache.clear()
