from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path, PurePosixPath
from typing import Any, Dict
from urllib.parse import quote, urlencode
import hashlib
import hmac
import time

import httpx
from fastapi.concurrency import run_in_threadpool


def _sign_local_url(secret_key: str, bucket: str, object_key: str, expires: int, method: str) -> str:
    """Create HMAC-SHA256 signature for a local storage URL."""
    message = f"{method}:{bucket}/{object_key}:{expires}"
    return hmac.new(
        secret_key.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_local_url_signature(
    secret_key: str, bucket: str, object_key: str, expires: int, signature: str, method: str
) -> bool:
    """Verify HMAC signature and expiry for a local storage URL.

    Returns False if the signature is invalid or the URL has expired.
    """
    if int(time.time()) > expires:
        return False
    expected = _sign_local_url(secret_key, bucket, object_key, expires, method)
    return hmac.compare_digest(expected, signature)


class StorageAdapter(ABC):
    provider: str = "local"
    bucket: str | None = None

    @abstractmethod
    async def generate_upload_url(
        self, object_key: str, content_type: str, size_bytes: int | None = None
    ) -> Dict[str, Any]:
        """
        Returns:
            {
                "upload_url": "...",
                "method": "PUT",
                "headers": {...},
            }
        """

    @abstractmethod
    async def generate_download_url(self, object_key: str, expires_in: int) -> str:
        pass

    @abstractmethod
    async def delete_object(self, object_key: str) -> None:
        pass

    @abstractmethod
    async def object_exists(self, object_key: str) -> bool:
        pass


class LocalFileSystemAdapter(StorageAdapter):
    """Files under ``base_path/<bucket>``, reached through HMAC-signed URLs served by this API."""

    def __init__(
        self,
        base_path: str,
        base_url: str,
        bucket: str,
        *,
        signing_key: str,
        upload_expiry_seconds: int = 900,
    ):
        self.provider = "local"
        self.bucket = bucket
        self.base_path = Path(base_path) / bucket
        self.base_url = base_url.rstrip("/")
        self.signing_key = signing_key
        self.upload_expiry_seconds = upload_expiry_seconds
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve_safe_path(self, object_key: str) -> Path:
        if "\\" in object_key:
            raise ValueError("Invalid object key")
        key_path = PurePosixPath(object_key)
        if key_path.is_absolute() or ".." in key_path.parts:
            raise ValueError("Invalid object key")
        base = self.base_path.resolve()
        resolved = (base / Path(object_key)).resolve()
        if resolved != base and base not in resolved.parents:
            raise ValueError("Invalid object key")
        return resolved

    def resolve_path(self, object_key: str) -> Path:
        return self._resolve_safe_path(object_key)

    def _signed_url(self, object_key: str, expires_in: int, method: str) -> str:
        expires = int(time.time()) + expires_in
        sig = _sign_local_url(self.signing_key, self.bucket, object_key, expires, method)
        params = urlencode({"key": object_key, "expires": expires, "signature": sig})
        return f"{self.base_url}/api/v1/storage/local/{quote(self.bucket)}?{params}"

    async def generate_upload_url(
        self, object_key: str, content_type: str, size_bytes: int | None = None
    ) -> Dict[str, Any]:
        self._resolve_safe_path(object_key)
        return {
            "upload_url": self._signed_url(object_key, self.upload_expiry_seconds, "PUT"),
            "method": "PUT",
            "headers": {"Content-Type": content_type},
        }

    async def generate_download_url(self, object_key: str, expires_in: int) -> str:
        self._resolve_safe_path(object_key)
        return self._signed_url(object_key, expires_in, "GET")

    async def delete_object(self, object_key: str) -> None:
        path = self._resolve_safe_path(object_key)
        if path.exists():
            path.unlink()

    async def object_exists(self, object_key: str) -> bool:
        try:
            path = self._resolve_safe_path(object_key)
        except ValueError:
            return False
        return path.exists()

    def write_file(self, object_key: str, content: bytes) -> None:
        path = self._resolve_safe_path(object_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)




class GCSStorageAdapter(StorageAdapter):
    def __init__(self, bucket: str, *, upload_expiry_seconds: int = 900):
        # Lazy import to avoid requiring dependency unless used
        from google.cloud import storage
        import google.auth
        import google.auth.transport.requests

        self.provider = "gcs"
        self.bucket = bucket
        self.upload_expiry_seconds = upload_expiry_seconds
        self.credentials, _ = google.auth.default()
        self._auth_request = google.auth.transport.requests.Request()
        self.client = storage.Client(credentials=self.credentials)
        self._bucket_ref = self.client.bucket(bucket)

    def _signing_kwargs(self) -> Dict[str, Any]:
        if hasattr(self.credentials, "sign_bytes"):
            return {"credentials": self.credentials}

        # Workload identity: sign through IAM SignBlob.
        if not self.credentials.valid or self.credentials.expired or not self.credentials.token:
            self.credentials.refresh(self._auth_request)

        service_account_email = getattr(self.credentials, "service_account_email", None)
        if not service_account_email:
            raise RuntimeError(
                "GCS signed URL requires a service account email available to ADC."
            )

        return {
            "service_account_email": service_account_email,
            "access_token": self.credentials.token,
        }

    def _signed_url(self, object_key: str, expires_in: int, method: str, content_type: str | None = None) -> str:
        blob = self._bucket_ref.blob(object_key)
        kwargs = self._signing_kwargs()
        if content_type:
            kwargs["content_type"] = content_type
        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=expires_in),
            method=method,
            **kwargs,
        )

    # The google client is blocking; its calls run in the threadpool.
    async def generate_upload_url(
        self, object_key: str, content_type: str, size_bytes: int | None = None
    ) -> Dict[str, Any]:
        url = await run_in_threadpool(
            self._signed_url, object_key, self.upload_expiry_seconds, "PUT", content_type
        )
        return {
            "upload_url": url,
            "method": "PUT",
            "headers": {"Content-Type": content_type},
        }

    async def generate_download_url(self, object_key: str, expires_in: int) -> str:
        return await run_in_threadpool(self._signed_url, object_key, expires_in, "GET")

    async def delete_object(self, object_key: str) -> None:
        await run_in_threadpool(self._bucket_ref.blob(object_key).delete)

    async def object_exists(self, object_key: str) -> bool:
        return await run_in_threadpool(self._bucket_ref.blob(object_key).exists)


class SupabaseStorageAdapter(StorageAdapter):
    """Supabase Storage signing endpoints, called with the service-role key.

    Each call opens its own ``httpx.AsyncClient``; ``transport`` lets tests
    swap in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        bucket: str,
        *,
        timeout: float = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider = "supabase"
        self.bucket = bucket
        self.api_url = f"{base_url.rstrip('/')}/storage/v1"
        self.timeout = timeout
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, headers=self._headers, transport=self._transport)

    def _object_path(self, object_key: str) -> str:
        return f"{quote(self.bucket)}/{quote(object_key)}"

    def _absolute(self, relative: str) -> str:
        if relative.startswith("http://") or relative.startswith("https://"):
            return relative
        return f"{self.api_url}/{relative.lstrip('/')}"

    async def generate_upload_url(
        self, object_key: str, content_type: str, size_bytes: int | None = None
    ) -> Dict[str, Any]:
        async with self._client() as client:
            response = await client.post(f"{self.api_url}/object/upload/sign/{self._object_path(object_key)}")
        response.raise_for_status()
        body = response.json()
        relative = body.get("url") or body.get("signedURL")
        if not relative:
            raise RuntimeError("Supabase did not return a signed upload URL")
        return {
            "upload_url": self._absolute(relative),
            "method": "PUT",
            "headers": {"Content-Type": content_type},
        }

    async def generate_download_url(self, object_key: str, expires_in: int) -> str:
        async with self._client() as client:
            response = await client.post(
                f"{self.api_url}/object/sign/{self._object_path(object_key)}",
                json={"expiresIn": expires_in},
            )
        response.raise_for_status()
        body = response.json()
        relative = body.get("signedURL") or body.get("signedUrl")
        if not relative:
            raise RuntimeError("Supabase did not return a signed download URL")
        return self._absolute(relative)

    async def delete_object(self, object_key: str) -> None:
        async with self._client() as client:
            response = await client.request(
                "DELETE",
                f"{self.api_url}/object/{quote(self.bucket)}",
                json={"prefixes": [object_key]},
            )
        response.raise_for_status()

    async def object_exists(self, object_key: str) -> bool:
        async with self._client() as client:
            response = await client.head(f"{self.api_url}/object/authenticated/{self._object_path(object_key)}")
        return response.status_code == 200
