import time
from typing import Any, Callable, Optional, TypeVar

from requests import exceptions as requests_exceptions
from web3 import Web3
from web3.exceptions import Web3Exception


READ_TIMEOUT_SECONDS = 15
READ_ATTEMPTS = 3

# Only the function the watcher reads.
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]

T = TypeVar("T")


class RpcError(RuntimeError):
    def __init__(self, method: str, message: str, code: Optional[int] = None):
        self.method = method
        self.code = code
        super().__init__(f"RPC {method} failed: {message}")


def _rpc_error_code(err: Exception) -> Optional[int]:
    # Newer web3 keeps the raw response; older releases pass the error dict as the first arg.
    rpc_response = getattr(err, "rpc_response", None)
    if isinstance(rpc_response, dict) and isinstance(rpc_response.get("error"), dict):
        payload = rpc_response["error"]
    else:
        payload = err.args[0] if err.args else None
    if isinstance(payload, dict) and isinstance(payload.get("code"), int):
        return payload["code"]
    return None


def _is_transient_http(err: requests_exceptions.RequestException) -> bool:
    if not isinstance(err, requests_exceptions.HTTPError):
        return True
    status = getattr(err.response, "status_code", None)
    return status is None or status >= 500 or status == 429


class JsonRpcChainReader:
    """Read-only chain access through web3.

    Every call here is a read, so network errors, timeouts, 429 and 5xx
    responses are retried with exponential backoff. Errors reported by the
    node itself are not.
    """

    def __init__(
        self,
        rpc_url: str,
        attempts: int = READ_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
        w3: Optional[Any] = None,
    ):
        if not rpc_url:
            raise ValueError("rpc_url is required")
        self.rpc_url = rpc_url
        self.attempts = max(1, attempts)
        self._sleep = sleep
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": READ_TIMEOUT_SECONDS}))

    def _call(self, method: str, fn: Callable[[], T]) -> T:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.attempts + 1):
            try:
                return fn()
            except requests_exceptions.RequestException as e:
                if not _is_transient_http(e):
                    raise RpcError(method, f"HTTP error: {e}") from e
                last_error = RpcError(method, f"network error: {e}")
            except (Web3Exception, ValueError) as e:
                raise RpcError(method, str(e), code=_rpc_error_code(e)) from e
            if attempt < self.attempts:
                self._sleep(0.5 * (2 ** (attempt - 1)))
        assert last_error is not None
        raise last_error

    def get_nonce(self, address: str) -> int:
        account = Web3.to_checksum_address(address)
        return int(self._call("eth_getTransactionCount", lambda: self.w3.eth.get_transaction_count(account)))

    def get_balance(self, address: str) -> int:
        account = Web3.to_checksum_address(address)
        return int(self._call("eth_getBalance", lambda: self.w3.eth.get_balance(account)))

    def get_token_balance(self, token: str, address: str) -> int:
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)
        account = Web3.to_checksum_address(address)
        return int(self._call("balanceOf", contract.functions.balanceOf(account).call))

    def get_block_number(self) -> int:
        return int(self._call("eth_blockNumber", lambda: self.w3.eth.block_number))
