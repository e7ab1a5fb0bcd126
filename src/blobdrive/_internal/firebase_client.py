"""Object store client for the Firebase Storage REST API."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterator
from urllib.parse import quote

import httpx

from blobdrive import paths
from blobdrive.exceptions import NotFoundError, TransportError
from blobdrive.models import Listing, ObjectMetadata
from blobdrive.store import DEFAULT_CHUNK_SIZE, ProgressCallback

logger = logging.getLogger(__name__)

BASE_URL = "https://firebasestorage.googleapis.com/v0"


def _parse_timestamp(value: str | None) -> datetime:
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


class FirebaseStorageClient:
    """Flat object store backed by a Firebase Storage bucket.

    Implements the ObjectStore protocol over ``httpx``. HTTP 404 becomes
    NotFoundError and any other HTTP or network failure becomes
    TransportError. Nothing is retried here.
    """

    BASE_URL = BASE_URL

    def __init__(
        self,
        bucket: str,
        id_token: str | None = None,
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize the client.

        Args:
            bucket: Storage bucket name, e.g. ``my-app.appspot.com``
            id_token: Firebase ID token of the signed-in user
            client: Optional pre-configured httpx client (used by tests)
            timeout: Request timeout in seconds
            chunk_size: Upload chunk size used for progress reporting
        """
        self.bucket = bucket
        self.id_token = id_token
        self.chunk_size = chunk_size
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def __enter__(self) -> FirebaseStorageClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    @property
    def _bucket_url(self) -> str:
        return f"{self.BASE_URL}/b/{self.bucket}/o"

    def _object_url(self, key: str) -> str:
        return f"{self._bucket_url}/{quote(key, safe='')}"

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.id_token:
            headers["Authorization"] = f"Firebase {self.id_token}"
        return headers

    def _request(self, method: str, url: str, key: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            response = self._client.request(method, url, headers=headers, **kwargs)
            if response.status_code == 404:
                raise NotFoundError(key)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{method} {key or '/'} failed with HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {key or '/'} failed: {e}") from e

    def list(self, prefix: str) -> Listing:
        prefix = paths.normalize(prefix)
        params: dict[str, str] = {"prefix": f"{prefix}/" if prefix else "", "delimiter": "/"}
        prefixes: list[str] = []
        objects: list[str] = []
        while True:
            data = self._request("GET", self._bucket_url, prefix, params=params).json()
            prefixes.extend(p.rstrip("/") for p in data.get("prefixes", []))
            objects.extend(item["name"] for item in data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token
        logger.debug(f"Listed {prefix or '/'}: {len(prefixes)} prefixes, {len(objects)} objects")
        return Listing(prefixes=tuple(prefixes), objects=tuple(objects))

    def _metadata(self, key: str) -> dict[str, Any]:
        return self._request("GET", self._object_url(key), key).json()  # type: ignore[no-any-return]

    def get_metadata(self, key: str) -> ObjectMetadata:
        data = self._metadata(key)
        return ObjectMetadata(
            size=int(data.get("size", 0)),
            updated_at=_parse_timestamp(data.get("updated")),
        )

    def get_download_url(self, key: str) -> str:
        data = self._metadata(key)
        tokens = (data.get("downloadTokens") or "").split(",")
        if not tokens[0]:
            raise TransportError(f"No download token for {key}")
        return f"{self._object_url(key)}?alt=media&token={tokens[0]}"

    def get(self, key: str) -> bytes:
        return self._request("GET", self._object_url(key), key, params={"alt": "media"}).content

    def put(self, key: str, data: bytes, progress: ProgressCallback | None = None) -> None:
        total = len(data)

        def body() -> Iterator[bytes]:
            if progress is not None and total == 0:
                progress(0, 0)
            for offset in range(0, total, self.chunk_size):
                chunk = data[offset : offset + self.chunk_size]
                yield chunk
                if progress is not None:
                    progress(offset + len(chunk), total)

        self._request(
            "POST",
            self._bucket_url,
            key,
            params={"name": key},
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Length": str(total),
            },
            content=body(),
        )
        logger.debug(f"Uploaded {key} ({total} bytes)")

    def delete(self, key: str) -> None:
        self._request("DELETE", self._object_url(key), key)
