"""
Redis Cache Service for School Admin Data

Provides a caching layer in front of Firestore for documents that are read
on nearly every request and change rarely.

Features:
- JSON serialization of settings documents and dashboard aggregates
- Configurable TTL per data type
- Graceful fallback to Firestore if Redis is unavailable
- Explicit invalidation when the underlying documents are written
"""

import os
import json
import hashlib
from typing import Any, Dict, List, Optional

import redis
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)


REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

# Cache key prefixes
CACHE_PREFIX = "school_admin:"
SETTINGS_PREFIX = f"{CACHE_PREFIX}settings:"
DASHBOARD_PREFIX = f"{CACHE_PREFIX}dashboard:"
LIST_PREFIX = f"{CACHE_PREFIX}list:"
HOLIDAYS_PREFIX = f"{CACHE_PREFIX}holidays:"

# TTL settings (in seconds)
SETTINGS_TTL = 300  # 5 minutes for settings documents
DASHBOARD_TTL = 60  # 1 minute for dashboard counters
LIST_TTL = 300  # 5 minutes for reference lists (branches, subjects)
HOLIDAYS_TTL = 600  # 10 minutes for holiday lists


class RedisCache:
    """Redis caching service for school admin data"""

    def __init__(self):
        self._client: Optional[redis.Redis] = None
        self._connected = False

    def connect(self) -> bool:
        """
        Connect to Redis server.

        Returns:
            True if connected successfully, False otherwise
        """
        try:
            if REDIS_URL and REDIS_URL != "redis://localhost:6379/0":
                self._client = redis.from_url(
                    REDIS_URL,
                    decode_responses=True,
                    socket_timeout=5,
                    socket_connect_timeout=5
                )
            else:
                self._client = redis.Redis(
                    host=REDIS_HOST,
                    port=REDIS_PORT,
                    db=REDIS_DB,
                    password=REDIS_PASSWORD,
                    decode_responses=True,
                    socket_timeout=5,
                    socket_connect_timeout=5
                )

            self._client.ping()
            self._connected = True
            print(f"[CACHE] Connected to Redis at {REDIS_HOST}:{REDIS_PORT}")
            return True

        except Exception as e:
            print(f"[CACHE] Failed to connect to Redis: {e}")
            self._client = None
            self._connected = False
            return False

    @property
    def is_connected(self) -> bool:
        """Check if Redis is connected"""
        if not self._connected or not self._client:
            return False
        try:
            self._client.ping()
            return True
        except Exception:
            self._connected = False
            return False

    def _ensure_connected(self) -> bool:
        """Ensure Redis is connected, attempt reconnect if not"""
        if self.is_connected:
            return True
        return self.connect()

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        if not self._ensure_connected():
            return None

        try:
            data = self._client.get(key)
            if data:
                return json.loads(data)
            return None
        except Exception as e:
            print(f"[CACHE] Get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = SETTINGS_TTL) -> bool:
        """Set value in cache with TTL"""
        if not self._ensure_connected():
            return False

        try:
            self._client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            print(f"[CACHE] Set error for {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        """Delete a key from cache"""
        if not self._ensure_connected():
            return False

        try:
            self._client.delete(key)
            return True
        except Exception as e:
            print(f"[CACHE] Delete error for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern"""
        if not self._ensure_connected():
            return 0

        try:
            keys = self._client.keys(pattern)
            if keys:
                return self._client.delete(*keys)
            return 0
        except Exception as e:
            print(f"[CACHE] Delete pattern error for {pattern}: {e}")
            return 0

    def clear_all(self) -> bool:
        """Clear all cache keys for this application"""
        if not self._ensure_connected():
            return False

        deleted = self.delete_pattern(f"{CACHE_PREFIX}*")
        print(f"[CACHE] Cleared {deleted} keys")
        return True

    def get_settings(self, name: str) -> Optional[Dict[str, Any]]:
        return self.get(f"{SETTINGS_PREFIX}{name}")

    def set_settings(self, name: str, data: Dict[str, Any]) -> bool:
        return self.set(f"{SETTINGS_PREFIX}{name}", data, SETTINGS_TTL)

    def invalidate_settings(self, name: str) -> bool:
        return self.delete(f"{SETTINGS_PREFIX}{name}")

    def get_dashboard(self, branch_id: Optional[str]) -> Optional[Dict[str, Any]]:
        return self.get(f"{DASHBOARD_PREFIX}{self._sanitize_key(branch_id or 'all')}")

    def set_dashboard(self, branch_id: Optional[str], stats: Dict[str, Any]) -> bool:
        key = f"{DASHBOARD_PREFIX}{self._sanitize_key(branch_id or 'all')}"
        return self.set(key, stats, DASHBOARD_TTL)

    def invalidate_dashboard(self) -> int:
        """Drop every cached dashboard aggregate (after class/makeup/trial writes)"""
        return self.delete_pattern(f"{DASHBOARD_PREFIX}*")

    def get_list(self, name: str, **filters) -> Optional[List[Dict[str, Any]]]:
        return self.get(f"{LIST_PREFIX}{name}:{self._hash_filters(filters)}")

    def set_list(self, name: str, items: List[Dict[str, Any]], **filters) -> bool:
        return self.set(f"{LIST_PREFIX}{name}:{self._hash_filters(filters)}", items, LIST_TTL)

    def invalidate_list(self, name: str) -> int:
        return self.delete_pattern(f"{LIST_PREFIX}{name}:*")

    def get_holidays(self, year: int) -> Optional[List[Dict[str, Any]]]:
        return self.get(f"{HOLIDAYS_PREFIX}{year}")

    def set_holidays(self, year: int, holidays: List[Dict[str, Any]]) -> bool:
        return self.set(f"{HOLIDAYS_PREFIX}{year}", holidays, HOLIDAYS_TTL)

    def invalidate_holidays(self) -> int:
        return self.delete_pattern(f"{HOLIDAYS_PREFIX}*")

    def _sanitize_key(self, key: str) -> str:
        """Sanitize a string for use as Redis key"""
        return key.replace(" ", "_").replace("/", "-")

    def _hash_filters(self, filters: Dict[str, Any]) -> str:
        """Stable short hash of list filter arguments"""
        content = json.dumps(filters, sort_keys=True, default=str).lower()
        return hashlib.md5(content.encode()).hexdigest()[:16]

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        if not self._ensure_connected():
            return {"connected": False}

        try:
            info = self._client.info("stats")
            memory = self._client.info("memory")

            settings_keys = len(self._client.keys(f"{SETTINGS_PREFIX}*"))
            dashboard_keys = len(self._client.keys(f"{DASHBOARD_PREFIX}*"))
            list_keys = len(self._client.keys(f"{LIST_PREFIX}*"))

            return {
                "connected": True,
                "hits": info.get("keyspace_hits", 0),
                "misses": info.get("keyspace_misses", 0),
                "memory_used": memory.get("used_memory_human", "unknown"),
                "settings_keys": settings_keys,
                "dashboard_keys": dashboard_keys,
                "list_keys": list_keys,
                "total_keys": settings_keys + dashboard_keys + list_keys
            }
        except Exception as e:
            return {"connected": True, "error": str(e)}


_cache_instance: Optional[RedisCache] = None


def get_cache() -> RedisCache:
    """Get the singleton cache instance"""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = RedisCache()
        _cache_instance.connect()
    return _cache_instance
