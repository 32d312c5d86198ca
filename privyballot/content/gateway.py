"""
Gateway Content Store

Pins proposal metadata through the Pinata pinning API and reads it back
through an ordered list of public IPFS gateways. Every gateway gets its own
short timeout; when all of them fail the local fallback store is consulted.
Uploads and unpins fall back to the local store when credentials are missing
or the API call fails.
"""

import time
from typing import List, Optional

import httpx

from ..constants import CONTENT_FETCH_TIMEOUT, DEFAULT_GATEWAYS, PINATA_API_URL
from ..exceptions import ContentStoreError
from ..logger import get_logger
from ..models import ProposalMetadata
from .store import ContentStore, InMemoryContentStore

logger = get_logger(__name__)


async def request(client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
    """
    Perform one HTTP request with request/response logging.

    Re-raises httpx.RequestError so the caller can move on to the next
    gateway; HTTP error statuses raise httpx.HTTPStatusError.
    """
    start_time = time.time()
    logger.debug(f"--> \"{method} {url} HTTP/1.1\"")
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.RequestError:
        process_time = time.time() - start_time
        logger.warning(f"<-- \"{method} {url} HTTP/1.1\" NETWORK_ERROR ({process_time:.3f}s)")
        raise

    process_time = time.time() - start_time
    logger.debug(f"<-- \"{method} {url} HTTP/1.1\" {response.status_code} ({process_time:.3f}s)")
    response.raise_for_status()
    return response


class GatewayContentStore(ContentStore):
    """Pinata pinning API plus ordered IPFS gateway reads."""

    def __init__(
        self,
        api_key: str = "",
        secret_key: str = "",
        api_url: str = PINATA_API_URL,
        gateways: Optional[List[str]] = None,
        timeout: float = CONTENT_FETCH_TIMEOUT,
        fallback: Optional[ContentStore] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.gateways = [g if g.endswith("/") else g + "/" for g in (gateways or DEFAULT_GATEWAYS)]
        self.timeout = timeout
        self.fallback = fallback if fallback is not None else InMemoryContentStore()
        self._api_key = api_key
        self._secret_key = secret_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config, client: Optional[httpx.AsyncClient] = None) -> "GatewayContentStore":
        """Build from a `ContentStoreConfig` section."""
        return cls(
            api_key=config.api_key,
            secret_key=config.secret_key,
            api_url=config.api_url,
            gateways=config.gateways,
            timeout=config.timeout,
            client=client,
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key and self._secret_key)

    def _auth_headers(self) -> dict:
        return {
            "pinata_api_key": self._api_key,
            "pinata_secret_api_key": self._secret_key,
        }

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def put(self, metadata: ProposalMetadata) -> str:
        if not self.has_credentials:
            logger.warning("Pinning API credentials not set, storing metadata locally")
            return await self.fallback.put(metadata)

        body = {
            "pinataContent": metadata.to_dict(),
            "pinataMetadata": {
                "name": f"privyballot-proposal-{metadata.title[:30]}",
                "keyvalues": {
                    "creator": metadata.creator,
                    "type": "proposal",
                    "app": "privyballot",
                },
            },
        }
        try:
            response = await request(
                self._client, "POST", f"{self.api_url}/pinning/pinJSONToIPFS",
                json=body, headers=self._auth_headers(),
            )
            address = response.json()["IpfsHash"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Pinning failed ({e}), storing metadata locally")
            try:
                return await self.fallback.put(metadata)
            except Exception as fallback_error:
                raise ContentStoreError(f"Could not store metadata: {fallback_error}") from e

        logger.info(f"Pinned metadata '{metadata.title}' as {address}")
        return address

    async def get(self, address: str) -> Optional[ProposalMetadata]:
        for gateway in self.gateways:
            url = f"{gateway}{address}"
            try:
                response = await request(
                    self._client, "GET", url,
                    headers={"Accept": "application/json"}, timeout=self.timeout,
                )
                return ProposalMetadata.from_dict(response.json())
            except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
                logger.debug(f"Gateway {gateway} could not serve {address}: {e}")

        logger.info(f"All gateways failed for {address}, trying local store")
        return await self.fallback.get(address)

    async def delete(self, address: str) -> bool:
        if not self.has_credentials:
            return await self.fallback.delete(address)

        try:
            await request(
                self._client, "DELETE", f"{self.api_url}/pinning/unpin/{address}",
                headers=self._auth_headers(),
            )
        except httpx.HTTPError as e:
            logger.warning(f"Unpinning {address} failed: {e}")
            return await self.fallback.delete(address)

        logger.info(f"Unpinned {address}")
        return True


def build_content_store(config, client: Optional[httpx.AsyncClient] = None) -> ContentStore:
    """Content store for a `ContentStoreConfig` section."""
    if config.backend == "pinata":
        return GatewayContentStore.from_config(config, client=client)
    return InMemoryContentStore()

