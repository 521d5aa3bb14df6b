from loanflow.core.settings import DEFAULT_SIGNED_URL_TTL_SECONDS, settings
from loanflow.services.storage.adapter import (
    GCSStorageAdapter,
    LocalFileSystemAdapter,
    StorageAdapter,
    SupabaseStorageAdapter,
)


def signed_url_ttl() -> int:
    ttl = settings.signed_url_ttl_seconds
    return ttl if ttl and ttl > 0 else DEFAULT_SIGNED_URL_TTL_SECONDS


def get_storage_adapter(bucket: str) -> StorageAdapter:
    provider = settings.storage_provider

    if provider == "gcs":
        return GCSStorageAdapter(bucket=bucket, upload_expiry_seconds=settings.upload_url_ttl_seconds)

    if provider == "supabase":
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise ValueError("Supabase storage is not configured")
        return SupabaseStorageAdapter(
            settings.supabase_url,
            settings.supabase_service_role_key,
            bucket,
        )

    return LocalFileSystemAdapter(
        base_path=settings.local_upload_dir,
        base_url=settings.public_base_url,
        bucket=bucket,
        signing_key=settings.secret_key,
        upload_expiry_seconds=settings.upload_url_ttl_seconds,
    )


def task_attachments_adapter() -> StorageAdapter:
    return get_storage_adapter(settings.task_attachments_bucket)


def client_documents_adapter() -> StorageAdapter:
    return get_storage_adapter(settings.client_documents_bucket)
