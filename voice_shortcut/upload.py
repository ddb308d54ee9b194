"""Two-phase resumable upload to the Gemini Files API."""

import logging
import time

import httpx

from voice_shortcut.cancellation import CancellationToken
from voice_shortcut.config import ApiConfig
from voice_shortcut.errors import UnexpectedResponseShapeError
from voice_shortcut.executor import ApiRequest, RequestExecutor

logger = logging.getLogger(__name__)

UPLOAD_URL_HEADER = "x-goog-upload-url"


def find_header(headers, name: str) -> str | None:
    """Case-insensitive header lookup that also works on plain dicts."""
    if isinstance(headers, httpx.Headers):
        return headers.get(name)
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def _decode_upload_url(response: httpx.Response) -> str:
    url = find_header(response.headers, UPLOAD_URL_HEADER)
    if not url:
        raise UnexpectedResponseShapeError("Upload session response has no upload URL header")
    return url


def _decode_file_uri(response: httpx.Response) -> str:
    data = response.json()
    file_info = data.get("file") if isinstance(data, dict) else None
    uri = file_info.get("uri") if isinstance(file_info, dict) else None
    if not isinstance(uri, str) or not uri:
        raise UnexpectedResponseShapeError("Upload response has no file.uri")
    return uri


class ResumableUploader:
    """Uploads large payloads and returns the server-side file URI.

    Phase 1 (session start) goes through the retrying path. Phase 2 (the PUT
    of the bytes) is attempted once; a failed PUT fails the whole upload.
    """

    def __init__(self, executor: RequestExecutor, api: ApiConfig | None = None):
        """Initialize uploader.

        Args:
            executor: RequestExecutor used for both phases
            api: API settings providing the upload endpoint
        """
        self.executor = executor
        self.api = api or ApiConfig()

    async def upload(
        self,
        data: bytes,
        mime_type: str,
        *,
        display_name: str | None = None,
        token: CancellationToken | None = None,
    ) -> str:
        """Upload ``data`` and return its file URI.

        Args:
            data: Raw file bytes
            mime_type: MIME type of the payload
            display_name: Name shown in the Files API (defaults to a timestamp)
            token: Cancellation token

        Returns:
            Remote file URI usable as ``fileData.fileUri``

        Raises:
            SpeechError: If either phase fails
        """
        display_name = display_name or f"audio_{int(time.time())}"
        logger.info("Starting resumable upload: %d bytes, %s", len(data), mime_type)

        start = ApiRequest(
            method="POST",
            url=self.api.upload_url,
            headers={
                "X-Goog-Upload-Protocol": "resumable",
                "X-Goog-Upload-Command": "start",
                "X-Goog-Upload-Header-Content-Length": str(len(data)),
                "X-Goog-Upload-Header-Content-Type": mime_type,
                "Content-Type": "application/json",
            },
            json={"file": {"display_name": display_name}},
            label="UPLOAD-START",
        )
        upload_url = await self.executor.execute(
            start, _decode_upload_url, allow_retry=True, token=token
        )
        logger.debug("Upload session created")

        finalize = ApiRequest(
            method="PUT",
            url=upload_url,
            headers={
                "Content-Length": str(len(data)),
                "X-Goog-Upload-Offset": "0",
                "X-Goog-Upload-Command": "upload, finalize",
            },
            content=data,
            label="UPLOAD-PUT",
            # The session URL already identifies the caller
            authenticated=False,
        )
        uri = await self.executor.execute(
            finalize, _decode_file_uri, allow_retry=False, token=token
        )
        logger.info("Upload finished: %s", uri)
        return uri
