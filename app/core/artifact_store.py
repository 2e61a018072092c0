"""
Artifact storage for build outputs.

Uploads a job's build output tree to an S3 bucket under
<prefix>/<slug>/<relative path>. Objects are immutable once written and
their lifetime is governed by the bucket, not by this service.

Security:
- Path traversal prevention on relative paths
- Symlinks are not followed out of the output tree
"""
import logging
import mimetypes
import os
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.errors import UploadError
from app.core.jobs import artifact_key

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def guess_content_type(path: str | Path) -> str:
    """MIME type derived from the file extension."""
    content_type, _ = mimetypes.guess_type(str(path))
    return content_type or DEFAULT_CONTENT_TYPE


def _is_safe_path(path: str) -> bool:
    """Check if a path is safe (no traversal, not absolute)."""
    normalized = os.path.normpath(path)
    if os.path.isabs(normalized):
        return False
    if ".." in normalized.split(os.sep):
        return False
    return True


def collect_files(directory: Path) -> list[Path]:
    """Recursively list regular files under directory, sorted by relative path."""
    if not directory.is_dir():
        return []

    root = directory.resolve()
    files = []
    for item in directory.rglob("*"):
        if not item.is_file():
            continue
        if item.is_symlink() and not item.resolve().is_relative_to(root):
            logger.warning(f"skip_symlink_outside_output path={item.relative_to(directory)}")
            continue
        files.append(item)
    return sorted(files, key=lambda p: p.relative_to(directory).as_posix())


class ArtifactStore:
    """Writes artifacts to an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "__outputs",
        client=None,
        region: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
    ):
        self.bucket = bucket
        self.prefix = prefix
        self._client = client
        self._region = region
        self._credentials = {
            "aws_access_key_id": aws_access_key_id,
            "aws_secret_access_key": aws_secret_access_key,
        }

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3", region_name=self._region, **self._credentials)
        return self._client

    def key_for(self, slug: str, relative_path: str) -> str:
        return artifact_key(self.prefix, slug, relative_path)

    def upload_file(self, slug: str, path: Path, relative_path: str) -> str:
        """
        Upload one file with its content type. Blocking; run in a thread.

        Returns:
            The object key written

        Raises:
            UploadError: If the path is unsafe or the store rejects the write
        """
        if not _is_safe_path(relative_path):
            raise UploadError(f"Invalid path: {relative_path}")

        key = self.key_for(slug, relative_path)
        try:
            with open(path, "rb") as body:
                self.client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=body,
                    ContentType=guess_content_type(path),
                )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            raise UploadError(f"S3 PutObject error: {code}") from e
        except (BotoCoreError, OSError) as e:
            raise UploadError(f"{type(e).__name__}: {e}") from e

        logger.debug(f"artifact_uploaded key={key}", extra={"job_id": slug})
        return key
