"""
Object Storage
Key/blob stores that published artifacts are written to: AWS S3 or a local directory.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ..config import Settings
from ..utils.exceptions import DuplicateArtifactError, UploadFailedError
from ..utils.logger import get_logger

logger = get_logger()

# S3 error codes returned when a conditional write finds an existing key
_EXISTS_CODES = {"PreconditionFailed", "ConditionalRequestConflict"}


@dataclass
class StoredObject:
    """A listed storage entry"""
    name: str
    url: str
    size: int = 0
    created_at: Optional[datetime] = None


class ObjectStorage:
    """Interface shared by the storage backends"""

    backend = "abstract"

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        cache_control: Optional[str] = None,
        upsert: bool = False
    ):
        """Store data at path; raises DuplicateArtifactError when upsert is off and path exists"""
        raise NotImplementedError

    def get_public_url(self, path: str) -> str:
        raise NotImplementedError

    async def list(self, prefix: str, limit: int = 100, sort_by: str = "created_at") -> List[StoredObject]:
        """Entries directly under prefix, newest first"""
        raise NotImplementedError


class S3ObjectStorage(ObjectStorage):
    """AWS S3 backend"""

    backend = "s3"

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client = None

    def _ensure_initialized(self):
        """Lazy initialize S3 client"""
        if self._client is not None:
            return

        if not self.settings.aws_access_key_id or not self.settings.aws_secret_access_key:
            raise UploadFailedError("AWS credentials not configured", backend=self.backend)
        if not self.settings.s3_bucket_name:
            raise UploadFailedError("S3 bucket not configured", backend=self.backend)

        try:
            import boto3
            from botocore.config import Config
        except ImportError:
            logger.error("boto3 not installed")
            raise

        config = Config(
            retries={'max_attempts': 3, 'mode': 'adaptive'},
            max_pool_connections=10
        )

        self._client = boto3.client(
            's3',
            aws_access_key_id=self.settings.aws_access_key_id,
            aws_secret_access_key=self.settings.aws_secret_access_key,
            region_name=self.settings.aws_region,
            config=config
        )
        logger.info(f"S3 client initialized for bucket: {self.settings.s3_bucket_name}")

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        cache_control: Optional[str] = None,
        upsert: bool = False
    ):
        from botocore.exceptions import BotoCoreError, ClientError

        self._ensure_initialized()

        params = {
            "Bucket": self.settings.s3_bucket_name,
            "Key": path,
            "Body": data,
            "ContentType": content_type,
        }
        if cache_control:
            params["CacheControl"] = cache_control
        if not upsert:
            params["IfNoneMatch"] = "*"

        logger.info(f"Uploading to S3: {path} ({len(data) / 1024 / 1024:.1f} MB)")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: self._client.put_object(**params))
        except ClientError as exc:
            error = exc.response.get("Error", {})
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if error.get("Code") in _EXISTS_CODES or status == 412:
                raise DuplicateArtifactError(path) from exc
            raise UploadFailedError(str(exc), path=path, backend=self.backend) from exc
        except BotoCoreError as exc:
            raise UploadFailedError(str(exc), path=path, backend=self.backend) from exc

    def get_public_url(self, path: str) -> str:
        if self.settings.s3_public_base_url:
            return f"{self.settings.s3_public_base_url.rstrip('/')}/{path}"
        return f"https://{self.settings.s3_bucket_name}.s3.{self.settings.aws_region}.amazonaws.com/{path}"

    async def list(self, prefix: str, limit: int = 100, sort_by: str = "created_at") -> List[StoredObject]:
        self._ensure_initialized()
        key_prefix = prefix.rstrip("/") + "/"

        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: self._client.list_objects_v2(
                Bucket=self.settings.s3_bucket_name,
                Prefix=key_prefix,
                MaxKeys=1000
            )
        )

        entries = [
            StoredObject(
                name=item["Key"][len(key_prefix):],
                url=self.get_public_url(item["Key"]),
                size=item.get("Size", 0),
                created_at=item.get("LastModified"),
            )
            for item in response.get("Contents", [])
            if "/" not in item["Key"][len(key_prefix):]
        ]
        return _sorted(entries, sort_by)[:limit]


class LocalObjectStorage(ObjectStorage):
    """Filesystem backend; files are served by the app under base_url"""

    backend = "local"

    def __init__(self, root: str, base_url: str = "/output"):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise UploadFailedError(f"Path escapes storage root: {path}", path=path, backend=self.backend)
        return target

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        cache_control: Optional[str] = None,
        upsert: bool = False
    ):
        target = self._resolve(path)

        def write():
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb" if upsert else "xb") as output_file:
                output_file.write(data)

        try:
            await asyncio.get_running_loop().run_in_executor(None, write)
        except FileExistsError as exc:
            raise DuplicateArtifactError(path) from exc
        except OSError as exc:
            raise UploadFailedError(str(exc), path=path, backend=self.backend) from exc

        logger.info(f"Stored locally: {path} ({len(data) / 1024 / 1024:.1f} MB)")

    def get_public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    async def list(self, prefix: str, limit: int = 100, sort_by: str = "created_at") -> List[StoredObject]:
        folder = self._resolve(prefix.rstrip("/") + "/.")

        def scan() -> List[StoredObject]:
            if not folder.is_dir():
                return []
            entries = []
            for entry in folder.iterdir():
                if not entry.is_file():
                    continue
                stat = entry.stat()
                entries.append(StoredObject(
                    name=entry.name,
                    url=self.get_public_url(f"{prefix.rstrip('/')}/{entry.name}"),
                    size=stat.st_size,
                    created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                ))
            return entries

        entries = await asyncio.get_running_loop().run_in_executor(None, scan)
        return _sorted(entries, sort_by)[:limit]


def _sorted(entries: List[StoredObject], sort_by: str) -> List[StoredObject]:
    if sort_by == "name":
        return sorted(entries, key=lambda entry: entry.name)
    epoch = datetime.fromtimestamp(0, tz=timezone.utc)
    return sorted(entries, key=lambda entry: entry.created_at or epoch, reverse=True)


def create_storage(settings: Settings) -> ObjectStorage:
    """Storage backend selected by settings.storage_backend"""
    if settings.storage_backend == "s3":
        return S3ObjectStorage(settings)
    return LocalObjectStorage(settings.output_dir)
