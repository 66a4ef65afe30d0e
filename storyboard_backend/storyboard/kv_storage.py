"""
Key-value persistence for history and credentials.

Uses Vercel KV (Upstash REST) when KV_REST_API_URL / KV_REST_API_TOKEN are
configured, otherwise a local JSON file. Values are always strings.
"""
import os
import json
import httpx
import logging
from typing import Dict, Optional

from .settings import STORE_PATH

logger = logging.getLogger(__name__)

HISTORY_KEY = "wt_history"
API_KEY_KEY = "wt_api_key"
ACTIVATED_KEY = "wt_vault_activated"


class KVStorage:
    def __init__(self, path: Optional[str] = None, rest_url: Optional[str] = None, rest_token: Optional[str] = None):
        self.kv_rest_api_url = rest_url if rest_url is not None else os.getenv("KV_REST_API_URL")
        self.kv_rest_api_token = rest_token if rest_token is not None else os.getenv("KV_REST_API_TOKEN")
        self.path = path or STORE_PATH

        if not self.kv_rest_api_url or not self.kv_rest_api_token:
            logger.info(f"Remote KV not configured - using local store at {self.path}")
            self.remote = False
        else:
            self.remote = True
            logger.info("Remote KV storage enabled")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.kv_rest_api_token}",
            "Content-Type": "application/json"
        }

    async def _command(self, command: str, args: list) -> Optional[dict]:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.post(
                f"{self.kv_rest_api_url}/{command}",
                headers=self._headers(),
                json=args
            )
            response.raise_for_status()
            return response.json()

    def _read_local(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def _write_local(self, data: Dict[str, str]):
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)

    async def get(self, key: str) -> Optional[str]:
        """Retrieve a value, None when absent or unreadable"""
        try:
            if self.remote:
                data = await self._command("get", [key])
                return data.get("result") if data else None
            return self._read_local().get(key)
        except Exception as e:
            logger.error(f"Failed to read {key} from KV: {e}")
            return None

    async def set(self, key: str, value: str) -> bool:
        """Store a value"""
        try:
            if self.remote:
                await self._command("set", [key, value])
            else:
                data = self._read_local()
                data[key] = value
                self._write_local(data)
            logger.debug(f"Stored {key} in KV")
            return True
        except Exception as e:
            logger.error(f"Failed to store {key} in KV: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            if self.remote:
                await self._command("del", [key])
            else:
                data = self._read_local()
                if data.pop(key, None) is not None:
                    self._write_local(data)
            return True
        except Exception as e:
            logger.error(f"Failed to delete {key} from KV: {e}")
            return False
