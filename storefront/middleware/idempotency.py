import asyncio
import json
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..core.config import settings

logger = logging.getLogger(__name__)

# Endpoints soportados y la clave de éxito esperada en el JSON
ALLOW = {
    "/orders": "order_id",
}


class _Cache:
    def __init__(self, ttl=3600, max_entries=2048):
        self.ttl = ttl
        self.max_entries = max_entries
        self._store = {}
        self._lock = asyncio.Lock()

    async def get(self, key):
        async with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            if item["exp"] < time.time():
                self._store.pop(key, None)
                return None
            return item

    async def set(self, key, val):
        async with self._lock:
            if len(self._store) >= self.max_entries:
                self._store.pop(next(iter(self._store)))
            val["exp"] = time.time() + self.ttl
            self._store[key] = val


class _KeyedLocks:
    """Un lock por clave; la entrada se borra cuando nadie más la espera."""

    def __init__(self):
        self._locks = {}  # key -> [lock, usuarios]
        self._guard = asyncio.Lock()

    def __len__(self):
        return len(self._locks)

    async def acquire(self, key):
        async with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [asyncio.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        await entry[0].acquire()

    async def release(self, key):
        async with self._guard:
            entry = self._locks[key]
            entry[0].release()
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]


def _drop_content_length(headers: dict) -> dict:
    # Quita cualquier Content-Length (casing-insensitive)
    return {k: v for k, v in headers.items() if k.lower() != "content-length"}


def _replay(cached: dict) -> Response:
    body_bytes = cached["body"]
    try:
        js = json.loads(body_bytes.decode("utf-8"))
        if isinstance(js, dict):
            js.setdefault("replay", True)
            body_bytes = json.dumps(js).encode("utf-8")
    except ValueError:
        pass
    headers = _drop_content_length(dict(cached["headers"]))
    headers["Idempotent-Replay"] = "true"
    return Response(
        content=body_bytes,
        status_code=cached["status"],
        media_type=cached["media_type"],
        headers=headers,
    )


class CheckoutIdempotency(BaseHTTPMiddleware):
    """
    Replays de POST /orders con la misma Idempotency-Key (por usuario): la
    primera respuesta exitosa se guarda en memoria y se devuelve tal cual,
    marcada con ``Idempotent-Replay: true``.
    """

    def __init__(self, app, ttl: int = 3600, max_entries: int = 2048):
        super().__init__(app)
        self.cache = _Cache(ttl=ttl, max_entries=max_entries)
        self.locks = _KeyedLocks()

    async def dispatch(self, request, call_next):
        if request.method != "POST":
            return await call_next(request)

        path = request.url.path
        success_key = ALLOW.get(path)
        if not success_key:
            return await call_next(request)

        idem_key = request.headers.get("Idempotency-Key")
        if not idem_key:
            return await call_next(request)

        user = request.headers.get("X-User", "")
        cache_key = f"{request.method}:{path}:{user}:{idem_key}"

        # 1) Replay inmediato si está cacheado
        cached = await self.cache.get(cache_key)
        if cached:
            return _replay(cached)

        # 2) Sección crítica por clave
        await self.locks.acquire(cache_key)
        try:
            cached = await self.cache.get(cache_key)
            if cached:
                return _replay(cached)

            # 3) Procesar y capturar body de la respuesta real
            response = await call_next(request)
            body_bytes = b""
            async for chunk in response.body_iterator:
                body_bytes += chunk

            headers = _drop_content_length(dict(response.headers))
            new_resp = Response(
                content=body_bytes,
                status_code=response.status_code,
                media_type=response.media_type,
                headers=headers,
            )

            # 4) Cachear solo si 200 y contiene la clave de éxito
            should_cache = response.status_code == 200
            if should_cache:
                try:
                    js = json.loads(body_bytes.decode("utf-8"))
                    should_cache = isinstance(js, dict) and (success_key in js)
                except ValueError:
                    should_cache = False

            if should_cache:
                await self.cache.set(
                    cache_key,
                    {
                        "status": new_resp.status_code,
                        "headers": dict(new_resp.headers),
                        "media_type": new_resp.media_type,
                        "body": body_bytes,
                    },
                )
                logger.debug("idempotency key %s stored for %s", idem_key, path)

            return new_resp
        finally:
            await self.locks.release(cache_key)


def install_idempotency(app):
    app.add_middleware(CheckoutIdempotency, ttl=settings.idempotency_ttl)
