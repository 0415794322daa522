import logging
import uuid
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import UploadFile

from dongnegage.core.config import config

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024

S3_PUBLIC_BASE_URL = (
    f"https://{config.AWS_BUCKET_NAME}.s3.{config.AWS_REGION}.amazonaws.com"
    if config.AWS_BUCKET_NAME and config.AWS_REGION else None
)

s3_client = None
if config.AWS_ACCESS_KEY_ID and config.AWS_BUCKET_NAME:
    try:
        s3_client = boto3.client(
            's3',
            aws_access_key_id=config.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY,
            region_name=config.AWS_REGION
        )
        logger.info("✅ S3 client initialised.")
    except (BotoCoreError, ClientError) as e:
        logger.error(f"🚨 Could not initialise the S3 client: {e}", exc_info=True)
else:
    logger.warning("⚠️ AWS credentials missing, uploads are disabled.")


def _generate_file_key(folder: str, filename: str) -> str:
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else 'bin'
    return f"{folder}/{uuid.uuid4()}.{ext}"


def file_size(file: UploadFile) -> int:
    """Size of an upload without reading it into memory."""
    if file.size is not None:
        return file.size
    position = file.file.tell()
    file.file.seek(0, 2)
    size = file.file.tell()
    file.file.seek(position)
    return size


def public_url(file_key: Optional[str]) -> Optional[str]:
    if not file_key or not S3_PUBLIC_BASE_URL:
        return None
    return f"{S3_PUBLIC_BASE_URL}/{file_key}"


def upload_single_file(file: UploadFile, folder: str = 'uploads') -> Optional[str]:
    """Uploads a file publicly and returns its S3 key, or None on failure."""
    if not s3_client:
        logger.error("Upload skipped: S3 client not initialised.")
        return None
    if not file or not file.filename:
        logger.warning("Upload skipped: missing file or filename.")
        return None

    file_key = _generate_file_key(folder, file.filename)

    try:
        s3_client.upload_fileobj(
            file.file,
            config.AWS_BUCKET_NAME,
            file_key,
            ExtraArgs={'ACL': 'public-read', 'ContentType': file.content_type or 'application/octet-stream'}
        )
        logger.info(f"✅ Uploaded '{file_key}'")
        return file_key
    except (BotoCoreError, ClientError) as e:
        logger.error(f"🚨 Upload failed for '{file_key}': {e}", exc_info=True)
        return None


def delete_file(file_key: str):
    if not s3_client:
        return
    try:
        s3_client.delete_object(Bucket=config.AWS_BUCKET_NAME, Key=file_key)
        logger.info(f"File '{file_key}' deleted.")
    except (BotoCoreError, ClientError) as e:
        logger.error(f"🚨 Could not delete '{file_key}': {e}", exc_info=True)


def key_from_url(url: Optional[str]) -> Optional[str]:
    """Reverse of public_url for files this bucket owns."""
    if not url or not S3_PUBLIC_BASE_URL or not url.startswith(S3_PUBLIC_BASE_URL + "/"):
        return None
    return url[len(S3_PUBLIC_BASE_URL) + 1:]
