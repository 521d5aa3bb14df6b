from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from fastapi.responses import FileResponse

from loanflow.core.limiter import limiter
from loanflow.core.settings import settings
from loanflow.services.storage.adapter import LocalFileSystemAdapter, verify_local_url_signature

router = APIRouter(prefix="/storage/local", tags=["storage"])


def _local_adapter(bucket: str, key: str, expires: int, signature: str, method: str) -> LocalFileSystemAdapter:
    """Check the provider, the bucket and the URL signature; the signature is the only credential."""
    if settings.storage_provider != "local":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not supported")
    if bucket not in (settings.task_attachments_bucket, settings.client_documents_bucket):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown bucket")
    if not verify_local_url_signature(settings.secret_key, bucket, key, expires, signature, method):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired URL signature",
        )
    return LocalFileSystemAdapter(
        base_path=settings.local_upload_dir,
        base_url=settings.public_base_url,
        bucket=bucket,
        signing_key=settings.secret_key,
    )


@router.put("/{bucket}")
@limiter.exempt
async def upload_local_object(
    bucket: str,
    request: Request,
    key: str = Query(...),
    expires: int = Query(...),
    signature: str = Query(...),
) -> Response:
    adapter = _local_adapter(bucket, key, expires, signature, "PUT")
    body = await request.body()
    try:
        adapter.write_file(key, body)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_200_OK)


@router.get("/{bucket}")
@limiter.exempt
async def download_local_object(
    bucket: str,
    key: str = Query(...),
    expires: int = Query(...),
    signature: str = Query(...),
) -> FileResponse:
    adapter = _local_adapter(bucket, key, expires, signature, "GET")
    try:
        path = adapter.resolve_path(key)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if not path.exists():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Object not found")
    return FileResponse(path)
