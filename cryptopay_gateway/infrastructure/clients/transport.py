"""Explorer HTTP transport - one GET per explorer call, raw JSON out"""

from enum import Enum
from typing import Any, Dict, Mapping, Optional

import httpx

from cryptopay_gateway.domain.exceptions import ResponseDecodeError, TransportError


class Endpoint(Enum):
    """Explorer operations as (module, action) pairs"""

    BALANCE = ("account", "balance")
    TX_LIST = ("account", "txlist")
    INTERNAL_TX_LIST = ("account", "txlistinternal")
    TOKEN_TRANSFERS = ("account", "tokentx")
    TOKEN_BALANCE = ("account", "tokenbalance")
    TRANSACTION = ("proxy", "eth_getTransactionByHash")
    RECEIPT = ("proxy", "eth_getTransactionReceipt")
    BLOCK_NUMBER = ("proxy", "eth_blockNumber")
    GAS_ORACLE = ("gastracker", "gasoracle")

    @property
    def module(self) -> str:
        return self.value[0]

    @property
    def action(self) -> str:
        return self.value[1]

    @property
    def label(self) -> str:
        return f"{self.module}.{self.action}"


class ExplorerTransport:
    """
    HTTP client for an Etherscan-compatible API.

    Owns connection reuse and timeouts. Returns the decoded JSON body as-is;
    interpreting the explorer envelope is the caller's job.

    Args:
        base_url: Explorer API URL (e.g. https://api.etherscan.io/api)
        timeout: Per-request timeout in seconds
        client: Pre-built AsyncClient (tests inject one with a mock transport)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def call(self, endpoint: Endpoint, params: Mapping[str, str], credential: str) -> Any:
        """
        Perform one explorer request.

        Raises:
            TransportError: On timeout, connection failure or non-2xx status
            ResponseDecodeError: If the body is not JSON
        """
        query: Dict[str, str] = {"module": endpoint.module, "action": endpoint.action}
        query.update(params)
        query["apikey"] = credential

        try:
            response = await self._client.get(self.base_url, params=query, timeout=self.timeout)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise TransportError(f"Explorer timeout after {self.timeout}s ({endpoint.label})") from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Explorer HTTP error: {e.response.status_code} ({endpoint.label})",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise TransportError(f"Explorer request failed: {e} ({endpoint.label})") from e

        try:
            return response.json()
        except ValueError as e:
            raise ResponseDecodeError(f"Explorer returned non-JSON body ({endpoint.label})") from e

    async def aclose(self) -> None:
        """Closes the HTTP client connection."""
        await self._client.aclose()

    async def __aenter__(self) -> "ExplorerTransport":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
