"""HTTP plumbing shared by the provider adapters."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx


class FallbackHttpClient:
    """Tries each base URL in order, moving on after request errors or 404/405."""

    def __init__(
        self,
        base_urls: List[str],
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout_s: float = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        label: str = "provider",
    ) -> None:
        if not base_urls:
            raise ValueError("At least one base URL is required")
        self.base_urls = [url.rstrip("/") for url in base_urls]
        self.headers = headers or {}
        self.timeout_s = timeout_s
        self._transport = transport
        self._label = label

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        merged_headers = {**self.headers, **(headers or {})}
        last_error: Optional[Exception] = None

        for index, base_url in enumerate(self.base_urls):
            try:
                async with httpx.AsyncClient(
                    base_url=base_url,
                    timeout=self.timeout_s,
                    transport=self._transport,
                ) as client:
                    response = await client.request(method, path, json=json, headers=merged_headers, **kwargs)
                    response.raise_for_status()
                    return response
            except httpx.HTTPStatusError as exc:
                # Some public hosts omit certain routes
                if exc.response.status_code in (404, 405) and index < len(self.base_urls) - 1:
                    last_error = exc
                    continue
                raise
            except httpx.RequestError as exc:
                last_error = exc
                continue

        if last_error is not None:
            raise last_error
        raise RuntimeError(f"All {self._label} hosts failed without providing an error response")

    async def get_json(self, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self.request("GET", path, **kwargs)
        return response.json()

    async def post_json(self, path: str, payload: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        response = await self.request("POST", path, json=payload, **kwargs)
        return response.json()
