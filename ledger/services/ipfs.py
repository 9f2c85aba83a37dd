"""IPFS gateway client for content-addressed donation receipts."""

from typing import Any, Optional

import httpx

from ledger.log import get_logger

logger = get_logger(__name__)

DEFAULT_GATEWAY_URL = "https://ipfs.io/ipfs/"


class ReceiptGatewayError(Exception):
    """Base exception for receipt gateway errors."""
    pass


class ReceiptFetchError(ReceiptGatewayError):
    """Raised when fetching a receipt from IPFS fails."""
    pass


class ReceiptTimeoutError(ReceiptGatewayError):
    """Raised when an IPFS request times out."""
    pass


def strip_ipfs_scheme(cid: str) -> str:
    cid = cid.strip()
    if cid.lower().startswith("ipfs://"):
        cid = cid[7:]
    return cid


class ReceiptGateway:
    """Client for resolving and fetching receipts through an IPFS HTTP gateway.

    Example usage:
        gateway = ReceiptGateway("https://ipfs.io/ipfs/")
        url = gateway.get_gateway_url("ipfs://bafy...")
        receipt = gateway.fetch_json_sync("bafy...")
    """

    def __init__(
        self,
        gateway_url: Optional[str] = None,
        timeout: int = 30,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the receipt gateway client.

        Args:
            gateway_url: IPFS gateway base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.gateway_url = gateway_url or DEFAULT_GATEWAY_URL
        self.timeout = timeout
        self.transport = transport

        # Ensure gateway URL ends with /
        if not self.gateway_url.endswith("/"):
            self.gateway_url += "/"

    def get_gateway_url(self, cid: str) -> str:
        """Get the public gateway URL for a CID.

        Args:
            cid: The IPFS content identifier, with or without ``ipfs://``

        Returns:
            Full gateway URL for the CID
        """
        return f"{self.gateway_url}{strip_ipfs_scheme(cid)}"

    def fetch_json_sync(self, cid: str) -> dict[str, Any]:
        """Fetch a JSON receipt from IPFS.

        Raises:
            ReceiptFetchError: If the request fails
            ReceiptTimeoutError: If the request times out
        """
        url = self.get_gateway_url(cid)
        logger.debug(f"Fetching receipt from: {url}")

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(url)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Timeout fetching receipt: {cid}")
            raise ReceiptTimeoutError(f"Timeout fetching CID: {cid}") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error fetching receipt: {e.response.status_code}")
            raise ReceiptFetchError(
                f"HTTP {e.response.status_code} fetching CID: {cid}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching receipt: {e}")
            raise ReceiptFetchError(f"Failed to fetch CID: {cid}") from e
