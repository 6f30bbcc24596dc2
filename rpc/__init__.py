"""RPC module for interacting with the Base chain through Alchemy"""
import logging
from typing import Any, Dict, List, Optional

import backoff
import requests

from config import settings_conf

logger = logging.getLogger(__name__)

ALCHEMY_HTTP_URL = "https://base-mainnet.g.alchemy.com/v2/{key}"
ALCHEMY_WS_URL = "wss://base-mainnet.g.alchemy.com/v2/{key}"

# CoinCreated(address indexed caller, address indexed payoutRecipient, address indexed platformReferrer,
#             address currency, string uri, string name, string symbol, address coin, ...)
COIN_CREATED_TOPIC = "0x2de436107c2096e039a3e5173c20a02b2af10fbcb7f81c7f86a2d99ae74c8bff"

class RPCError(Exception):
    """Base exception for RPC errors"""
    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        self.code = code
        self.method = method
        super().__init__(f"RPC Error [{code}] in {method}: {message}" if code else message)

class NodeConnectionError(RPCError):
    """Raised when connection to the RPC provider fails"""
    pass

class NodeAuthError(RPCError):
    """Raised when the provider rejects the API key"""
    pass

class NodeRateLimited(NodeConnectionError):
    """Raised when the provider answers HTTP 429"""
    pass

class ChainError(RPCError):
    """JSON-RPC error returned by the provider

    Common error codes:
    -32700 - Parse error
    -32600 - Invalid request
    -32601 - Method not found
    -32602 - Invalid params
    -32603 - Internal error
    -32005 - Limit exceeded (block range or result size)
    """
    ERROR_MESSAGES = {
        -32700: "Parse error",
        -32600: "Invalid request",
        -32601: "Method not found",
        -32602: "Invalid params",
        -32603: "Internal error",
        -32005: "Limit exceeded",
    }

    def __init__(self, message: str, code: int, method: str):
        standard_msg = self.ERROR_MESSAGES.get(code, "Unknown error")
        full_msg = f"{standard_msg} - {message}" if message != standard_msg else message
        super().__init__(full_msg, code, method)

class RPCMethod:
    """Descriptor class for RPC methods"""
    def __init__(self, method_name: str):
        self.method_name = method_name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self

        def caller(*args, **kwargs) -> Any:
            return obj._call_method(self.method_name, *args, **kwargs)

        return caller

class ChainRPC:
    """Alchemy JSON-RPC client for Base"""

    def __init__(self, api_key: Optional[str] = None, url: Optional[str] = None, timeout: int = None):
        """Initialize RPC client.

        Args:
            api_key: Alchemy API key, defaults to settings
            url: Full endpoint URL, overrides the Alchemy URL
            timeout: Request timeout in seconds
        """
        self.api_key = api_key if api_key is not None else settings_conf['alchemy_api_key']
        self.url = url or ALCHEMY_HTTP_URL.format(key=self.api_key)
        self.timeout = timeout or settings_conf['provider_timeout']

        self.session = requests.Session()
        self.session.headers['content-type'] = 'application/json'

        self._request_id = 0

    def _get_request_id(self) -> int:
        """Get unique request ID"""
        self._request_id += 1
        return self._request_id

    @backoff.on_exception(
        backoff.expo,
        NodeRateLimited,
        max_tries=3,
        jitter=backoff.full_jitter
    )
    def _call_method(self, method: str, *args) -> Any:
        """Make RPC call to the provider

        Args:
            method: RPC method name
            *args: Method arguments

        Returns:
            Response result

        Raises:
            NodeConnectionError: Connection to provider failed
            NodeRateLimited: Provider kept answering 429
            NodeAuthError: Authentication failed
            ChainError: Provider returned a JSON-RPC error
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": list(args),
            "id": self._get_request_id()
        }

        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)

            if response.status_code in (401, 403):
                raise NodeAuthError("Authentication failed - check alchemy_api_key", response.status_code, method)
            if response.status_code == 429:
                raise NodeRateLimited("Rate limited by provider", 429, method)

            # Try to parse response even if status code is error
            result = response.json()

            if 'error' in result and result['error'] is not None:
                error = result['error']
                raise ChainError(
                    error.get('message', 'Unknown error'),
                    error.get('code', -1),
                    method
                )

            response.raise_for_status()

            return result['result']

        except requests.exceptions.Timeout as e:
            raise NodeConnectionError(
                f"Request to {method} timed out after {self.timeout}s"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise NodeConnectionError(
                "Failed to connect to RPC provider"
            ) from e
        except requests.exceptions.HTTPError as e:
            raise NodeConnectionError(
                f"HTTP error occurred: {str(e)}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise NodeConnectionError(
                f"Request failed: {str(e)}"
            ) from e
        except (KeyError, ValueError) as e:
            raise NodeConnectionError(
                f"Invalid response format: {str(e)}"
            ) from e

    # Standard Ethereum methods
    blocknumber = RPCMethod('eth_blockNumber')
    getlogs = RPCMethod('eth_getLogs')
    getcode = RPCMethod('eth_getCode')
    getblockbynumber = RPCMethod('eth_getBlockByNumber')

    # Alchemy enhanced methods
    gettokenmetadata = RPCMethod('alchemy_getTokenMetadata')
    getassettransfers = RPCMethod('alchemy_getAssetTransfers')

    def get_block_number(self) -> int:
        """Latest block number."""
        return int(self.blocknumber(), 16)

    def get_logs(self, address: str, topics: List[str], from_block: int, to_block: int,
                 chunk_size: Optional[int] = None) -> List[Dict[str, Any]]:
        """Fetch logs for a block range, paging in small windows.

        Args:
            address: Contract emitting the logs
            topics: Topic filter
            from_block: First block, inclusive
            to_block: Last block, inclusive
            chunk_size: Blocks per eth_getLogs call

        Returns:
            All logs in the range, in block order
        """
        chunk_size = chunk_size or settings_conf['log_chunk_size']
        logs = []
        start = from_block
        while start <= to_block:
            end = min(start + chunk_size - 1, to_block)
            logs.extend(self.getlogs({
                'address': address,
                'topics': topics,
                'fromBlock': hex(start),
                'toBlock': hex(end)
            }) or [])
            start = end + 1
        return logs

    def get_code(self, address: str) -> str:
        return self.getcode(address, 'latest') or '0x'

    def get_token_metadata(self, address: str) -> Dict[str, Any]:
        """Token name, symbol, decimals and logo from Alchemy's index."""
        return self.gettokenmetadata(address) or {}

    def get_block_timestamp(self, number: int) -> Optional[int]:
        block = self.getblockbynumber(hex(number), False)
        if not block or not block.get('timestamp'):
            return None
        return int(block['timestamp'], 16)

    def get_contract_creations(self, from_block: int, to_block: int,
                               max_count: int = 20) -> List[Dict[str, Any]]:
        """External transfers with no recipient, i.e. contract deployments.

        Returns:
            Dicts with address, tx_hash and block_number
        """
        result = self.getassettransfers({
            'fromBlock': hex(from_block),
            'toBlock': hex(to_block),
            'category': ['external'],
            'withMetadata': False,
            'excludeZeroValue': False,
            'maxCount': hex(100)
        }) or {}

        creations = []
        for transfer in result.get('transfers', []):
            contract = (transfer.get('rawContract') or {}).get('address')
            if transfer.get('to') is None and contract:
                creations.append({
                    'address': contract.lower(),
                    'tx_hash': transfer.get('hash'),
                    'block_number': int(transfer['blockNum'], 16) if transfer.get('blockNum') else None
                })
            if len(creations) >= max_count:
                break
        return creations

# Create global instance
client = ChainRPC()

# Export methods at module level
blocknumber = client.blocknumber
getlogs = client.getlogs
getcode = client.getcode
getblockbynumber = client.getblockbynumber
gettokenmetadata = client.gettokenmetadata
getassettransfers = client.getassettransfers

__all__ = [
    # Error types
    'RPCError',
    'NodeConnectionError',
    'NodeAuthError',
    'NodeRateLimited',
    'ChainError',

    # Client
    'ChainRPC',
    'client',
    'COIN_CREATED_TOPIC',
    'ALCHEMY_WS_URL',

    # Methods
    'blocknumber',
    'getlogs',
    'getcode',
    'getblockbynumber',
    'gettokenmetadata',
    'getassettransfers',
]
