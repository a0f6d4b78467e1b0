"""Bearer-token authentication: JWT provider and middleware."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Iterable, Optional

import anyio
import httpx
from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from model_errors import InvalidToken, Unauthenticated


logger = logging.getLogger("modelkit.auth")

DEV_USER = {"id": "dev-user", "email": "dev@example.com", "role": "Admin", "claims": {}}


class JwksCache:
    def __init__(self, url: str, ttl: float = 600.0) -> None:
        self._url = url
        self._ttl = ttl
        self._keys: dict | None = None
        self._fetched_at = 0.0
        self._lock = threading.Lock()

    def get(self, force: bool = False) -> dict:
        with self._lock:
            now = time.time()
            if not force and self._keys and now - self._fetched_at < self._ttl:
                return self._keys
            resp = httpx.get(self._url, timeout=10.0)
            resp.raise_for_status()
            self._keys = resp.json()
            self._fetched_at = now
            return self._keys

    def find(self, kid: str | None) -> dict | None:
        for force in (False, True):
            for jwk in self.get(force=force).get("keys", []):
                if jwk.get("kid") == kid:
                    return jwk
        return None


class JwtAuthProvider:
    """Verifies HS256 tokens against a shared secret, or RS/ES tokens via JWKS."""

    def __init__(
        self,
        secret: str | None = None,
        jwks_url: str | None = None,
        audience: str | None = None,
        issuer: str | None = None,
        algorithms: Iterable[str] = ("HS256",),
    ) -> None:
        self._secret = secret
        self._jwks = JwksCache(jwks_url) if jwks_url else None
        self._audience = audience
        self._issuer = issuer
        self._algorithms = list(algorithms)

    def _decode(self, token: str) -> dict:
        options = {"verify_aud": self._audience is not None}
        if self._jwks is not None:
            headers = jwt.get_unverified_header(token)
            key = self._jwks.find(headers.get("kid"))
            if key is None:
                raise JWTError("Unknown kid")
            algorithms = [headers.get("alg", "RS256")]
        elif self._secret:
            key = self._secret
            algorithms = self._algorithms
        else:
            raise JWTError("No token verification key configured")
        return jwt.decode(token, key, algorithms=algorithms, audience=self._audience, issuer=self._issuer, options=options)

    def authenticate(self, token: str | None) -> Dict[str, Any]:
        if not token:
            raise Unauthenticated("Authentication required", path="Authorization")
        try:
            claims = self._decode(token)
        except (JWTError, httpx.HTTPError) as exc:
            raise InvalidToken("Invalid or expired token", path="Authorization", detail={"error": str(exc)}) from exc
        user_id = claims.get("id") or claims.get("sub")
        if not user_id:
            raise InvalidToken("Token carries no subject", path="Authorization")
        return {
            "id": str(user_id),
            "email": claims.get("email"),
            "role": claims.get("role"),
            "claims": claims,
        }


class StaticAuthProvider:
    """Accepts every request as one fixed identity."""

    def __init__(self, user: Dict[str, Any] | None = None) -> None:
        self._user = dict(user or DEV_USER)

    def authenticate(self, token: str | None) -> Dict[str, Any]:
        return dict(self._user)


def get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def _unauthenticated_response(exc: Unauthenticated) -> JSONResponse:
    return JSONResponse(
        {
            "ok": False,
            "error": exc.message,
            "errors": [exc.as_issue()],
            "warnings": [],
        },
        status_code=exc.status,
    )


class AuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, provider, public_paths: Iterable[str] = ("/health",)) -> None:
        super().__init__(app)
        self._provider = provider
        self._public_paths = set(public_paths)

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path in self._public_paths:
            return await call_next(request)

        start = time.perf_counter()
        token = get_bearer_token(request)
        try:
            user = await anyio.to_thread.run_sync(self._provider.authenticate, token)
        except Unauthenticated as exc:
            logger.warning("auth_rejected path=%s code=%s detail=%s", request.url.path, exc.code, exc.detail)
            return _unauthenticated_response(exc)
        request.state.user = user
        request.state.auth_ms = (time.perf_counter() - start) * 1000
        return await call_next(request)
