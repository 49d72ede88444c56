import json
import logging
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from supabase import create_client
from config import Config
from database.remote_store import RemoteStoreError, RemoteRateLimitError

logger = logging.getLogger(__name__)


class SupabaseRemoteStore:
    """Shared override document kept as named rows in a Supabase table"""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None,
                 table: Optional[str] = None, client=None):
        self.table_name = table or Config.SUPABASE_TABLE
        self.client = client or create_client(url or Config.SUPABASE_URL, key or Config.SUPABASE_KEY)
        logger.info(f"Supabase remote store initialized (table={self.table_name})")

    def get(self) -> Dict[str, Any]:
        """Fetch every shared file, JSON files decoded"""
        try:
            result = self.client.table(self.table_name)\
                .select("file_name, content")\
                .execute()
        except Exception as e:
            raise _translate(e, "load") from e

        files = {}
        for row in result.data or []:
            name = row.get("file_name")
            content = row.get("content")
            if not name:
                continue
            if name.endswith(".json"):
                try:
                    files[name] = json.loads(content) if isinstance(content, str) else content
                except json.JSONDecodeError as e:
                    logger.warning(f"Remote file {name} is not valid JSON, ignored: {e}")
                    continue
            else:
                files[name] = content

        logger.debug(f"Fetched {len(files)} remote files")
        return files

    def patch(self, files: Dict[str, Any]) -> None:
        """Overwrite the given files (upsert on file_name)"""
        now = datetime.now(timezone.utc).isoformat()
        rows = []
        for name, content in files.items():
            if not isinstance(content, str):
                content = json.dumps(content, ensure_ascii=False, indent=2)
            rows.append({"file_name": name, "content": content, "updated_at": now})

        try:
            self.client.table(self.table_name)\
                .upsert(rows, on_conflict="file_name")\
                .execute()
        except Exception as e:
            raise _translate(e, "save") from e

        logger.debug(f"Saved {len(rows)} remote files")


def _status_code(exc: Exception) -> Optional[int]:
    for attr in ("code", "status_code", "status"):
        value = getattr(exc, attr, None)
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            return int(getattr(response, "status_code", None))
        except (TypeError, ValueError):
            return None
    return None


def _retry_after(exc: Exception) -> Optional[float]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or {}
    try:
        value = headers.get("Retry-After") or headers.get("retry-after")
        return float(value) if value is not None else None
    except (AttributeError, TypeError, ValueError):
        return None


def _translate(exc: Exception, action: str) -> RemoteStoreError:
    status = _status_code(exc)
    message = str(exc)
    if status == 429 or "rate limit" in message.lower():
        return RemoteRateLimitError(f"Remote {action} rate limited: {message}",
                                    retry_after=_retry_after(exc))
    return RemoteStoreError(f"Remote {action} failed: {message}", status_code=status)
