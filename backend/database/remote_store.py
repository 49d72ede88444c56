"""
Remote shared document contract
The remote side keeps named JSON blobs and overwrites them whole; all
merging happens on the client
"""
from typing import Any, Dict, Optional, Protocol

INVENTORY_FILE = "inventory.json"
ADMIN_PRICES_FILE = "admin_prices.json"
PRICE_HISTORY_FILE = "price_history.json"
ACTIVITY_LOG_FILE = "activity_log.json"
LAST_UPDATED_FILE = "last_updated.txt"


class RemoteStoreError(Exception):
    """Remote load/save failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteRateLimitError(RemoteStoreError):
    """Remote refused the request because of its abuse-rate limiter"""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class RemoteStore(Protocol):
    def get(self) -> Dict[str, Any]:
        """Return {file_name: content} for every stored blob"""
        ...

    def patch(self, files: Dict[str, Any]) -> None:
        """Overwrite the named blobs"""
        ...
