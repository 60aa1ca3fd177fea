"""RPC module for interacting with an Ethereum JSON-RPC node"""
import requests
from typing import Any, Optional

class RPCError(Exception):
    """Base exception for RPC errors"""
    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        self.code = code
        self.method = method
        super().__init__(f"RPC Error [{code}] in {method}: {message}" if code else message)

class NodeConnectionError(RPCError):
    """Raised when connection to node fails"""
    pass

class NodeAuthError(RPCError):
    """Raised when authentication failed"""
    pass

class NodeError(RPCError):
    """JSON-RPC error object returned by the node

    Common error codes:
    -32700 - Parse error
    -32600 - Invalid request
    -32601 - Method not found
    -32602 - Invalid params
    -32603 - Internal error
    -32000 - Server error (e.g. header not found)
    -32005 - Limit exceeded (e.g. too many logs in range)
    """
    # Map of known JSON-RPC error codes to human-readable messages
    ERROR_MESSAGES = {
        -32700: "Parse error",
        -32600: "Invalid request",
        -32601: "Method not found",
        -32602: "Invalid params",
        -32603: "Internal error",
        -32000: "Server error",
        -32005: "Limit exceeded",
    }

    def __init__(self, message: str, code: int, method: str):
        standard_msg = self.ERROR_MESSAGES.get(code, "Unknown error")
        # Combine standard message with specific message if different
        full_msg = f"{standard_msg} - {message}" if message != standard_msg else message
        super().__init__(full_msg, code, method)

class RPCMethod:
    """Descriptor class for RPC methods"""
    def __init__(self, method_name: str):
        self.method_name = method_name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self

        def caller(*args) -> Any:
            return obj._call_method(self.method_name, *args)

        return caller

class EthereumRPC:
    """Ethereum JSON-RPC client"""

    def __init__(self, url: str, timeout: float = 10):
        """Initialize RPC client

        Args:
            url: JSON-RPC endpoint, may embed basic auth credentials
            timeout: Request timeout in seconds
        """
        self.url = url
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers['content-type'] = 'application/json'

        # Request ID counter
        self._request_id = 0

    def _get_request_id(self) -> int:
        """Get unique request ID"""
        self._request_id += 1
        return self._request_id

    def _call_method(self, method: str, *args) -> Any:
        """Make RPC call to the node

        Args:
            method: RPC method name
            *args: Method arguments

        Returns:
            Response from node

        Raises:
            NodeConnectionError: Connection to node failed
            NodeAuthError: Authentication failed
            NodeError: Node returned a JSON-RPC error
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
                raise NodeAuthError("Authentication failed - check the RPC endpoint credentials")

            # Try to parse response even if status code is error
            result = response.json()

            if isinstance(result, dict) and result.get('error') is not None:
                error = result['error']
                raise NodeError(
                    error.get('message', 'Unknown error'),
                    error.get('code', -32603),
                    method
                )

            response.raise_for_status()

            return result['result']

        except requests.exceptions.Timeout as e:
            raise NodeConnectionError(
                f"Request timed out after {self.timeout} seconds"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise NodeConnectionError(
                f"Failed to connect to Ethereum node at {self.url}"
            ) from e
        except requests.exceptions.HTTPError as e:
            raise NodeConnectionError(
                f"HTTP error occurred: {str(e)}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise NodeConnectionError(
                f"Request failed: {str(e)}"
            ) from e
        except (KeyError, TypeError, ValueError) as e:
            raise NodeConnectionError(
                f"Invalid response format: {str(e)}"
            ) from e

    # Chain state
    eth_blockNumber = RPCMethod('eth_blockNumber')

    # Event logs
    eth_getLogs = RPCMethod('eth_getLogs')

    def get_block_number(self) -> int:
        """Return the latest block height as an int"""
        return int(self.eth_blockNumber(), 16)


_client: Optional[EthereumRPC] = None

def get_client() -> EthereumRPC:
    """Return the shared client built from settings.conf"""
    global _client
    if _client is None:
        from config import get_settings
        _client = EthereumRPC(get_settings()['rpc_url'])
    return _client

__all__ = [
    'EthereumRPC', 'RPCMethod', 'get_client',
    'RPCError', 'NodeConnectionError', 'NodeAuthError', 'NodeError'
]
