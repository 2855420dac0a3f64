"""
Backend Client for Fingerprint Attendance API
=============================================
Client module connecting the scanner gateway to the backend.
"""

import aiohttp
import asyncio
import logging
from typing import Optional, Dict, Any
from urllib.parse import quote

logger = logging.getLogger(__name__)


class ScannerGatewayClient:
    """
    Async client used by the fingerprint scanner gateway.
    """

    def __init__(self, backend_url: str = "http://localhost:8000", timeout: float = 30):
        self.backend_url = backend_url.rstrip('/')
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self.session

    async def close(self):
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def health_check(self) -> Dict[str, Any]:
        """Check backend health status."""
        try:
            session = await self._get_session()
            async with session.get(f"{self.backend_url}/") as response:
                if response.status == 200:
                    return await response.json()
                return {"status": "error", "code": response.status}
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return {"status": "offline", "error": str(e)}

    async def _post(self, path: str, **kwargs) -> Dict[str, Any]:
        try:
            session = await self._get_session()
            async with session.post(f"{self.backend_url}{path}", **kwargs) as response:
                if response.status in (200, 201):
                    result = await response.json()
                    result.setdefault("success", True)
                    return result

                error_text = await response.text()
                logger.error(f"POST {path} failed: {response.status} - {error_text}")
                return {
                    "success": False,
                    "status_code": response.status,
                    "message": f"Backend error: {response.status}",
                    "error": error_text
                }

        except asyncio.TimeoutError:
            logger.error(f"POST {path} timed out")
            return {"success": False, "message": "Request timed out", "error": "Timeout"}
        except aiohttp.ClientError as e:
            logger.error(f"Connection error: {e}")
            return {"success": False, "message": "Connection failed", "error": str(e)}

    async def report_scan(self, fingerprint_id: str) -> Dict[str, Any]:
        """Report a fingerprint with no enrolled student."""
        return await self._post("/api/hardware/detect", json={"fingerprint_id": fingerprint_id})

    async def mark_attendance(self, fingerprint_id: str) -> Dict[str, Any]:
        """Record a sign-in for an enrolled fingerprint."""
        return await self._post(f"/api/markAttendance/{quote(fingerprint_id, safe='')}")

    async def handle_scan(self, fingerprint_id: str) -> Dict[str, Any]:
        """
        Route a raw scan: mark attendance if the finger is enrolled,
        otherwise park it for enrollment.

        Args:
            fingerprint_id: ID from the fingerprint scanner

        Returns:
            Backend result, with "action" set to "attendance" or "enrollment"
        """
        async with self._lock:  # One scan at a time per device
            result = await self.mark_attendance(fingerprint_id)
            if result.get("success"):
                logger.info(f"Attendance: {result.get('message')}")
                result["action"] = "attendance"
                return result

            if result.get("status_code") != 404:
                result["action"] = "attendance"
                return result

            logger.info(f"Unknown fingerprint {fingerprint_id}, waiting for enrollment")
            result = await self.report_scan(fingerprint_id)
            result["action"] = "enrollment"
            return result

    async def poll_pending(self) -> Optional[str]:
        """Oldest pending fingerprint ID, or None."""
        try:
            session = await self._get_session()
            async with session.get(f"{self.backend_url}/api/addStudent") as response:
                if response.status == 200:
                    data = await response.json()
                    return data.get("id") or None
                return None
        except Exception as e:
            logger.error(f"Poll error: {e}")
            return None


# Global client instance
_client: Optional[ScannerGatewayClient] = None


def get_client(backend_url: str = "http://localhost:8000") -> ScannerGatewayClient:
    """Get or create global client instance."""
    global _client
    if _client is None:
        _client = ScannerGatewayClient(backend_url)
    return _client


async def close_client():
    """Close global client instance."""
    global _client
    if _client:
        await _client.close()
        _client = None
