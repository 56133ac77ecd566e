"""HTTP client for the RBI registry API.

Wraps a pooled ``requests.Session``; every call goes out exactly once (no
retries).  The bearer token is sent when held, and the CSRF token rides along
on POST, PUT and DELETE.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter

from utils.sanitization import RateLimiter

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
CSRF_HEADER = "X-CSRF-Token"
_MUTATING = {"POST", "PUT", "PATCH", "DELETE"}
_FILENAME = re.compile(r'filename="?([^";]+)"?')


class ApiError(Exception):
    """A non-2xx response, or a transport failure (``status_code`` 0)."""

    def __init__(self, status_code: int, message: str, payload: Any = None):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.payload = payload

    @property
    def field_errors(self) -> list:
        """``[{field, message}]`` from a 422 body, else an empty list."""
        if isinstance(self.payload, dict):
            return self.payload.get("errors") or []
        return []


def _clean_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Drop None values; booleans become ``true``/``false``."""
    if not params:
        return None
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        cleaned[key] = ("true" if value else "false") if isinstance(value, bool) else value
    return cleaned


class ApiClient:
    """Thin JSON client for ``/api/v1``.

    Args:
        base_url: Server root, e.g. ``http://localhost:8000``.
        token: Bearer token from a previous sign-in.
        csrf_token: CSRF token matching *token*.
        timeout: Per-request timeout in seconds.
        session: Any object with a ``requests.Session``-style ``request()``
            method; a pooled session is created when omitted.
    """

    def __init__(self, base_url: str, token: Optional[str] = None,
                 csrf_token: Optional[str] = None, timeout: float = 10.0,
                 session: Any = None, pool_connections: int = 10,
                 pool_maxsize: int = 20):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.csrf_token = csrf_token
        self.timeout = timeout
        self.user: Optional[Dict[str, Any]] = None
        self._sign_in_limiter = RateLimiter(max_attempts=5, window_seconds=300)

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=0, pool_connections=pool_connections,
                                  pool_maxsize=pool_maxsize)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    # ── Transport ─────────────────────────────────────────────────────────────

    def _url(self, path: str) -> str:
        if not path.startswith(API_PREFIX):
            path = API_PREFIX + (path if path.startswith("/") else "/" + path)
        return self.base_url + path

    def _headers(self, method: str) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if method in _MUTATING and self.csrf_token:
            headers[CSRF_HEADER] = self.csrf_token
        return headers

    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                json: Any = None, stream: bool = False):
        """Send one request and return the raw response.

        Raises:
            ApiError: For transport failures and non-2xx responses.
        """
        method = method.upper()
        url = self._url(path)
        try:
            resp = self.session.request(
                method, url, params=_clean_params(params), json=json,
                headers=self._headers(method), timeout=self.timeout, stream=stream,
            )
        except requests.RequestException as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise ApiError(0, f"Request failed: {exc}") from exc

        if resp.status_code >= 400:
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            message = ""
            if isinstance(payload, dict):
                message = payload.get("detail") or payload.get("error") or ""
            if not isinstance(message, str):
                # FastAPI request-validation errors carry a list here
                message = "Invalid request"
            raise ApiError(resp.status_code, message or resp.text or "Request failed", payload)
        return resp

    @staticmethod
    def _decode(resp) -> Any:
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._decode(self.request("GET", path, params=params))

    def post(self, path: str, json: Any = None,
             params: Optional[Dict[str, Any]] = None) -> Any:
        return self._decode(self.request("POST", path, params=params, json=json))

    def put(self, path: str, json: Any = None) -> Any:
        return self._decode(self.request("PUT", path, json=json))

    def delete(self, path: str) -> Any:
        return self._decode(self.request("DELETE", path))

    def download(self, path: str, params: Optional[Dict[str, Any]] = None,
                 dest: Path = Path(".")) -> Path:
        """Stream an export to *dest* and return the written path.

        When *dest* is a directory the server's attachment filename is used.
        """
        resp = self.request("GET", path, params=params, stream=True)
        dest = Path(dest)
        if dest.is_dir():
            match = _FILENAME.search(resp.headers.get("Content-Disposition", ""))
            name = match.group(1) if match else path.rstrip("/").rsplit("/", 1)[-1]
            dest = dest / name
        with open(dest, "wb") as fh:
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                if chunk:
                    fh.write(chunk)
        logger.info("Downloaded %s to %s", path, dest)
        return dest

    # ── Session ───────────────────────────────────────────────────────────────

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        """Sign in and keep the bearer and CSRF tokens.

        Raises:
            ApiError: 429 locally after 5 attempts for one email within
                5 minutes; otherwise whatever the server answers.
        """
        key = email.strip().lower()
        if not self._sign_in_limiter.check(key):
            raise ApiError(429, "Too many sign-in attempts. Try again later.")
        body = self.post("/auth/sign-in", json={"email": email, "password": password})
        self.token = body["access_token"]
        self.csrf_token = body["csrf_token"]
        self.user = body.get("user")
        self._sign_in_limiter.reset(key)
        return body

    def sign_out(self) -> None:
        """Revoke the server session and forget the tokens."""
        try:
            if self.token:
                self.delete_session()
        finally:
            self.token = None
            self.csrf_token = None
            self.user = None

    def delete_session(self) -> None:
        self.post("/auth/sign-out")

    def close(self) -> None:
        close = getattr(self.session, "close", None)
        if close is not None:
            close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
