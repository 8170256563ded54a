"""
Resolve pipeline inputs to raw bytes.

Accepted forms: bytes-like objects, binary file-like objects, local paths,
``http(s)://`` URLs, ``gs://bucket/key`` URLs and ``data:`` URLs.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, Union
from urllib.parse import unquote_to_bytes

import requests
from google.cloud import storage
from google.oauth2 import service_account

from .config import PipelineConfig
from .errors import StagingError

logger = logging.getLogger(__name__)

MediaSource = Union[bytes, bytearray, memoryview, str, Path, Any]


def parse_gcs_url(url: str) -> tuple[str, str]:
    stripped = url[len("gs://"):]
    parts = stripped.split("/", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise StagingError(f"Invalid GCS path: {url}")
    return parts[0], parts[1]


def decode_data_url(url: str) -> bytes:
    header, sep, payload = url.partition(",")
    if not sep:
        raise StagingError("Malformed data URL")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise StagingError("Invalid base64 payload in data URL") from exc
    return unquote_to_bytes(payload)


class SourceResolver:
    def __init__(self, config: PipelineConfig | None = None):
        self.config = config or PipelineConfig()
        self._storage_client: storage.Client | None = None

    async def read(self, source: MediaSource) -> bytes:
        if isinstance(source, (bytes, bytearray, memoryview)):
            data = bytes(source)
        else:
            data = await asyncio.to_thread(self.read_sync, source)
        if not data:
            raise StagingError("Input is empty")
        return data

    def read_sync(self, source: MediaSource) -> bytes:
        if isinstance(source, (bytes, bytearray, memoryview)):
            return bytes(source)
        if isinstance(source, Path):
            return self._read_path(source)
        if isinstance(source, str):
            if source.startswith(("http://", "https://")):
                return self._fetch_http(source)
            if source.startswith("gs://"):
                return self._fetch_gcs(source)
            if source.startswith("data:"):
                return decode_data_url(source)
            return self._read_path(Path(source))
        if hasattr(source, "read"):
            data = source.read()
            if isinstance(data, str):
                raise StagingError("File-like input must be opened in binary mode")
            return bytes(data)
        raise StagingError(f"Unsupported input type: {type(source).__name__}")

    def _read_path(self, path: Path) -> bytes:
        try:
            return path.expanduser().read_bytes()
        except OSError as exc:
            raise StagingError(f"Failed to read {path}: {exc}") from exc

    def _fetch_http(self, url: str) -> bytes:
        logger.info("Fetching %s", url)
        try:
            response = requests.get(url, timeout=self.config.fetch_timeout_seconds)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise StagingError(f"Failed to fetch {url}: {exc}") from exc
        return response.content

    def _fetch_gcs(self, url: str) -> bytes:
        bucket_name, blob_path = parse_gcs_url(url)
        logger.info("Downloading gs://%s/%s", bucket_name, blob_path)
        try:
            client = self._get_storage_client()
            blob = client.bucket(bucket_name).blob(blob_path)
            return blob.download_as_bytes(timeout=self.config.fetch_timeout_seconds)
        except StagingError:
            raise
        except Exception as exc:
            raise StagingError(f"Failed to download gs://{bucket_name}/{blob_path}") from exc

    def _get_storage_client(self) -> storage.Client:
        if self._storage_client:
            return self._storage_client

        credentials_json = self.config.gcp_credentials
        if not credentials_json:
            self._storage_client = storage.Client()
            return self._storage_client

        try:
            credentials_info = json.loads(credentials_json)
        except json.JSONDecodeError as exc:
            raise StagingError("Invalid GCP_CREDENTIALS JSON") from exc

        credentials = service_account.Credentials.from_service_account_info(
            credentials_info
        )
        self._storage_client = storage.Client(
            credentials=credentials, project=credentials_info.get("project_id")
        )
        return self._storage_client


async def read_source(source: MediaSource, config: PipelineConfig | None = None) -> bytes:
    return await SourceResolver(config).read(source)
