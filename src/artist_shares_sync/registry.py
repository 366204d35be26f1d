"""Artist id <-> share contract address registry."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from artist_shares_sync.chain.client import UpstreamUnavailableError
from artist_shares_sync.numeric import is_valid_address, normalize_address
from artist_shares_sync.storage.repos import ArtistContractDTO, ArtistContractRepository

if TYPE_CHECKING:
    from artist_shares_sync.chain.factory import ArtistSharesFactory
    from artist_shares_sync.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class ContractRegistry:
    """Persistent registry with an in-process read cache.

    Deployments are rare and never reassigned in practice, so lookups are
    cached for the life of the process; `register` keeps the cache current.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db
        self._by_artist: dict[int, str] = {}
        self._by_address: dict[str, int] = {}

    def _remember(self, artist_id: int, address: str) -> None:
        previous = self._by_artist.get(artist_id)
        if previous and previous != address:
            self._by_address.pop(previous, None)
        self._by_artist[artist_id] = address
        self._by_address[address] = artist_id

    async def register(self, artist_id: int, contract_address: str) -> ArtistContractDTO:
        """Record (or replace) the contract deployed for an artist.

        Raises:
            InvalidAddressError: If the address is malformed.
        """
        address = normalize_address(contract_address)
        async with self._db.get_async_session() as session:
            dto = await ArtistContractRepository(session).upsert(artist_id=artist_id, contract_address=address)
        self._remember(artist_id, address)
        logger.info("Registered contract %s for artist=%s", address, artist_id)
        return dto

    async def address_for(self, artist_id: int) -> str | None:
        cached = self._by_artist.get(artist_id)
        if cached is not None:
            return cached
        async with self._db.get_async_session() as session:
            address = await ArtistContractRepository(session).get_address(artist_id)
        if address:
            self._remember(artist_id, address)
        return address

    async def artist_for(self, contract_address: str) -> int | None:
        address = contract_address.lower()
        cached = self._by_address.get(address)
        if cached is not None:
            return cached
        async with self._db.get_async_session() as session:
            artist_id = await ArtistContractRepository(session).get_artist_id(address)
        if artist_id is not None:
            self._remember(artist_id, address)
        return artist_id

    async def all(self) -> list[ArtistContractDTO]:
        async with self._db.get_async_session() as session:
            entries = await ArtistContractRepository(session).list_all()
        for entry in entries:
            self._remember(entry.artist_id, entry.contract_address)
        return entries

    async def sync_from_factory(self, factory: ArtistSharesFactory, *, from_block: int = 0) -> int:
        """Register factory-deployed contracts that have no artist yet.

        The artist of each unknown token comes from its creation log and is
        accepted only while the factory still maps that artist to the token.
        Zero or malformed addresses and tokens that cannot be resolved are
        skipped.

        Returns:
            Number of contracts registered.

        Raises:
            UpstreamUnavailableError: If the deployed tokens or creation logs
                cannot be read.
        """
        tokens = await factory.deployed_tokens()
        pending: list[str] = []
        for token in tokens:
            if not is_valid_address(token):
                logger.debug("Skipping invalid deployed token %r", token)
                continue
            if await self.artist_for(token) is None:
                pending.append(token.lower())
        if not pending:
            logger.info("All %d deployed contracts already registered", len(tokens))
            return 0

        created = await factory.created_tokens(from_block=from_block)
        synced = 0
        for address in pending:
            raw_id = created.get(address)
            if raw_id is None:
                logger.warning("No creation log for deployed contract %s", address)
                continue
            try:
                artist_id = int(raw_id)
            except ValueError:
                logger.warning("Contract %s has non-numeric artist id %r", address, raw_id)
                continue
            try:
                current = await factory.token_for_artist(raw_id)
            except UpstreamUnavailableError as e:
                logger.warning("Could not confirm artist=%s for contract %s: %s", artist_id, address, e)
                continue
            if current != address:
                logger.warning("Contract %s is no longer the token of artist=%s (now %s)", address, artist_id, current)
                continue
            await self.register(artist_id, address)
            synced += 1
        logger.info("Synced %d of %d unregistered factory contracts", synced, len(pending))
        return synced
