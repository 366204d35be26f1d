"""Read access to the factory that deploys artist share contracts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from web3 import AsyncWeb3

from artist_shares_sync.chain.abi import ARTIST_TOKEN_CREATED_TOPIC, FACTORY_ABI
from artist_shares_sync.chain.events import EventDecodeError, to_hex

if TYPE_CHECKING:
    from artist_shares_sync.chain.client import ChainClient

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE_BLOCKS = 10_000


@dataclass(frozen=True)
class TokenCreated:
    """One ArtistTokenCreated log. The factory keys artists by string id."""

    token_address: str
    artist_id: str
    artist_name: str
    block_number: int


def decode_token_created(log: dict[str, Any]) -> TokenCreated:
    """Decode an ArtistTokenCreated log.

    Raises:
        EventDecodeError: If the log is not an ArtistTokenCreated log or its
            payload cannot be decoded.
    """
    topics = log.get("topics") or []
    if not topics or to_hex(topics[0]) != ARTIST_TOKEN_CREATED_TOPIC:
        raise EventDecodeError("not an ArtistTokenCreated log")
    try:
        token, artist_id, artist_name = abi_decode(
            ["address", "string", "string"],
            bytes.fromhex(to_hex(log.get("data") or b"")[2:]),
        )
    except (DecodingError, ValueError) as e:
        raise EventDecodeError(f"malformed ArtistTokenCreated payload: {e}") from e
    return TokenCreated(
        token_address=str(token).lower(),
        artist_id=artist_id,
        artist_name=artist_name,
        block_number=int(log.get("blockNumber") or 0),
    )


class ArtistSharesFactory:
    """View functions and creation logs of the share contract factory."""

    def __init__(self, client: ChainClient, address: str) -> None:
        self._client = client
        self.address = address.lower()

    async def deployed_tokens(self) -> list[str]:
        tokens = await self._client.call_function(self.address, FACTORY_ABI, "getDeployedTokens")
        return [str(token).lower() for token in tokens or []]

    async def token_for_artist(self, artist_id: str) -> str:
        """Current token for a factory artist id (the zero address if none)."""
        token = await self._client.call_function(self.address, FACTORY_ABI, "getTokenByArtistId", artist_id)
        return str(token).lower()

    async def created_tokens(
        self,
        *,
        from_block: int = 0,
        to_block: int | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE_BLOCKS,
    ) -> dict[str, str]:
        """Map token address -> factory artist id from creation logs.

        Malformed logs are logged and skipped.
        """
        if to_block is None:
            to_block = await self._client.get_block_number()
        created: dict[str, str] = {}
        start = from_block
        while start <= to_block:
            end = min(start + chunk_size - 1, to_block)
            logs = await self._client.get_logs(
                {
                    "address": AsyncWeb3.to_checksum_address(self.address),
                    "fromBlock": start,
                    "toBlock": end,
                    "topics": [[ARTIST_TOKEN_CREATED_TOPIC]],
                }
            )
            for log in logs:
                try:
                    event = decode_token_created(log)
                except EventDecodeError as e:
                    logger.warning("Skipping malformed factory log (tx=%s): %s", log.get("transactionHash"), e)
                    continue
                created[event.token_address] = event.artist_id
            start = end + 1
        return created
