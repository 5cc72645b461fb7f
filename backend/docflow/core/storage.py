import logging

from supabase import create_client

from docflow.core.config import get_settings

logger = logging.getLogger(__name__)


class StorageDownloadError(RuntimeError):
    pass


def get_storage_client():
    settings = get_settings()
    key = settings.supabase_service_role_key or settings.supabase_key
    if not settings.supabase_url or not key:
        raise RuntimeError("Supabase storage credentials are not configured")
    return create_client(settings.supabase_url, key)


def download_object(path: str, *, bucket: str | None = None, client=None) -> bytes:
    """Download one object from the documents bucket."""
    bucket = bucket or get_settings().documents_bucket
    client = client or get_storage_client()
    try:
        content = client.storage.from_(bucket).download(path)
    except Exception as exc:
        raise StorageDownloadError(f"Failed to download {bucket}/{path}") from exc

    if not content:
        raise StorageDownloadError(f"Empty object {bucket}/{path}")
    logger.debug("Downloaded %s/%s (%d bytes)", bucket, path, len(content))
    return content
