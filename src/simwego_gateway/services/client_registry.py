"""
Client Registry - Database operations for tenants
"""
from typing import Optional, List, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import DuplicateClientError
from ..core.logging import get_logger
from ..models.database import Client, TokenCache, new_client_id
from ..models.schemas import ClientCreate, ClientUpdate
from .credential_vault import CredentialVault

logger = get_logger(__name__)


class ClientRegistry:
    """Service for client database operations"""

    def __init__(self, vault: CredentialVault):
        self.vault = vault

    async def create(self, db: AsyncSession, client_data: ClientCreate) -> Client:
        """
        Create a new client

        Args:
            db: Database session
            client_data: Client creation data, including the plaintext password

        Returns:
            Created client object. The plaintext password is not kept.
        """
        client_id = new_client_id()
        client = Client(
            id=client_id,
            name=client_data.name,
            api_key=self.vault.generate_api_key(client_id),
            active=client_data.active,
            upstream_username=client_data.upstream_username,
            upstream_password_encrypted=self.vault.encrypt(client_data.upstream_password),
        )

        db.add(client)
        await self._commit(db, "Client could not be created")
        await db.refresh(client)

        logger.info("Client created", client_id=client.id)
        return client

    async def get(self, db: AsyncSession, client_id: str) -> Optional[Client]:
        """Get client by ID"""
        return await db.get(Client, client_id)

    async def list(self, db: AsyncSession, skip: int = 0, limit: int = 100) -> List[Client]:
        """List clients, newest first"""
        result = await db.execute(
            select(Client).order_by(Client.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def count(self, db: AsyncSession, active_only: bool = False) -> int:
        query = select(func.count()).select_from(Client)
        if active_only:
            query = query.where(Client.active.is_(True))
        return (await db.execute(query)).scalar_one()

    async def find_by_api_key(
        self,
        db: AsyncSession,
        api_key: str,
        active_only: bool = True,
    ) -> Optional[Client]:
        """Get client by API key, optionally restricted to active clients"""
        query = select(Client).where(Client.api_key == api_key)
        if active_only:
            query = query.where(Client.active.is_(True))
        result = await db.execute(query)
        return result.scalars().first()

    async def update(self, db: AsyncSession, client: Client, update_data: ClientUpdate) -> Client:
        """
        Update client information

        Only fields present in ``update_data`` change. A new password is
        re-encrypted; without one the stored ciphertext is left untouched.
        """
        update_dict = update_data.model_dump(exclude_unset=True, exclude_none=True)

        password = update_dict.pop("upstream_password", None)
        if password is not None:
            client.upstream_password_encrypted = self.vault.encrypt(password)

        for field, value in update_dict.items():
            setattr(client, field, value)

        await self._commit(db, "Client could not be updated")
        await db.refresh(client)

        fields = sorted(update_dict) + (["upstream_password"] if password is not None else [])
        logger.info("Client updated", client_id=client.id, updated_fields=fields)
        return client

    async def set_active(self, db: AsyncSession, client: Client, active: bool) -> Client:
        return await self.update(db, client, ClientUpdate(active=active))

    async def rotate_api_key(self, db: AsyncSession, client: Client) -> Client:
        """Issue a fresh API key, the previous one stops working immediately"""
        client.api_key = self.vault.generate_api_key(client.id)
        await self._commit(db, "API key could not be rotated")
        await db.refresh(client)

        logger.info("Client API key rotated", client_id=client.id)
        return client

    async def delete(self, db: AsyncSession, client_id: str) -> bool:
        """Delete a client together with its cached upstream session"""
        client = await db.get(Client, client_id)

        if not client:
            return False

        await db.delete(client)
        await db.flush()
        # The cache row may have been written outside this session
        await db.execute(delete(TokenCache).where(TokenCache.client_id == client_id))
        await db.commit()

        logger.info("Client deleted", client_id=client_id)
        return True

    def get_upstream_credentials(self, client: Client) -> Tuple[str, str]:
        """Decrypted upstream username/password for a client"""
        return (
            client.upstream_username,
            self.vault.decrypt(client.upstream_password_encrypted),
        )

    @staticmethod
    async def _commit(db: AsyncSession, message: str) -> None:
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.warning("Client constraint violation", error=str(e.orig))
            raise DuplicateClientError(message) from None
