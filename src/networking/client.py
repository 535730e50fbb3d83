from typing import Any, Optional
import asyncio

import httpx


class ClientError(Exception):
    status: int
    message: str

    def __init__(self, status: int, message: str):
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


class StoreClient:
    """
    Talks to a running content store service over HTTP.

    Pass a transport to reach an in-process app (httpx.ASGITransport) instead of
    a socket.
    """
    host: str
    port: int
    lock: asyncio.Lock

    def __init__(self, host: str, port: int, transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: float = 60.0):
        self.host = host
        self.port = port
        self.base_url = f'http://{host}:{port}'
        self.transport = transport
        self.timeout = timeout
        self.lock = asyncio.Lock()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, transport=self.transport, timeout=self.timeout)

    @staticmethod
    def _check(response: httpx.Response) -> httpx.Response:
        if response.is_success:
            return response
        try:
            message = response.json().get("error", response.text)
        except ValueError:
            message = response.text
        raise ClientError(response.status_code, message)

    async def _add(self, path: str, **kwargs: Any) -> str:
        async with self._client() as client:
            response = self._check(await client.post(path, **kwargs))
            return response.json()["cid"]

    async def add_text(self, text: str) -> str:
        return await self._add("/add/text", content=text.encode("utf-8"),
                               headers={"content-type": "text/plain; charset=utf-8"})

    async def add_json(self, obj: Any) -> str:
        return await self._add("/add/json", json=obj)

    async def add_raw(self, data: bytes) -> str:
        return await self._add("/add/raw", content=data, headers={"content-type": "application/octet-stream"})

    async def add_file(self, name: str, data: bytes) -> str:
        return await self._add("/add/file", files={"file": (name, data)})

    async def cat(self, cid: str, offset: int = 0, length: Optional[int] = None) -> bytes:
        params: dict[str, int] = {}
        if offset:
            params["offset"] = offset
        if length is not None:
            params["length"] = length
        async with self._client() as client:
            response = self._check(await client.get(f"/cat/{cid}", params=params))
            return response.content

    async def stat(self, cid: str) -> dict[str, Any]:
        async with self._client() as client:
            return self._check(await client.get(f"/stat/{cid}")).json()

    async def status(self) -> dict[str, Any]:
        async with self._client() as client:
            return self._check(await client.get("/status")).json()

    async def healthcheck(self) -> bool:
        async with self.lock:
            try:
                status = await self.status()
            except (httpx.HTTPError, ClientError):
                return False
            return status.get("status") == "ok"
