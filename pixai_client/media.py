from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from .errors import ApiError, UsageError
from .models import (
    DIRECT_STORAGE_PROVIDERS,
    FileUpload,
    GenerationTask,
    MediaDescriptor,
    MediaProvider,
    MediaRecord,
    MediaType,
    UploadDestination,
    UrlUpload,
    as_upload_source,
    filename_from_url,
    media_type_for,
)
from .operations import GET_MEDIA, REGISTER_MEDIA, UPLOAD_MEDIA

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from .gateway import GraphQLGateway

logger = logging.getLogger("pixai_client.media")


class MediaGateway:
    """Uploads media and resolves task outputs into downloadable records."""

    def __init__(self, gateway: GraphQLGateway, *, provider: MediaProvider = MediaProvider.S3) -> None:
        self._gateway = gateway
        self._provider = MediaProvider(provider)

    async def upload_media(
        self,
        source: Any,
        *,
        filename: str | None = None,
        content_type: str | None = None,
        provider: MediaProvider | None = None,
    ) -> MediaRecord:
        """Upload ``source`` and register it as a PixAI media record.

        ``source`` may be a :class:`MediaDescriptor` (registered as is), an
        http(s) URL (downloaded first), or binary content: ``bytes``, a path,
        a binary file object or a :class:`FileUpload`.
        """

        resolved = as_upload_source(source, filename=filename, content_type=content_type)
        if resolved.kind == "descriptor":
            return await self.register_media(resolved)
        if resolved.kind == "url":
            resolved = await self._download_source(resolved)
        return await self._upload_file(resolved, MediaProvider(provider or self._provider))

    async def register_media(self, descriptor: MediaDescriptor) -> MediaRecord:
        variables = {
            "input": {
                "type": MediaType(descriptor.type).value,
                "provider": MediaProvider(descriptor.provider).value,
                "externalId": descriptor.external_id,
            }
        }
        data = await self._gateway.request(REGISTER_MEDIA, variables)
        raw = data.get("registerMedia")
        if not raw:
            raise ApiError("Failed to register media with unknown error.")
        media = MediaRecord.model_validate(raw)
        logger.info("media_registered", extra={"media_id": media.id})
        return media

    async def _download_source(self, source: UrlUpload) -> FileUpload:
        response = await self._gateway.fetch(source.url)
        return FileUpload(
            content=response.content,
            filename=filename_from_url(source.url),
            content_type=response.headers.get("content-type"),
        )

    async def _upload_file(self, upload: FileUpload, provider: MediaProvider) -> MediaRecord:
        media_type = media_type_for(upload.content_type)
        data = await self._gateway.request(
            UPLOAD_MEDIA,
            {"input": {"type": media_type.value, "provider": provider.value}},
        )
        raw = data.get("uploadMedia")
        if not raw:
            raise ApiError("Failed to request an upload destination with unknown error.")
        destination = UploadDestination.model_validate(raw)

        if provider.value in DIRECT_STORAGE_PROVIDERS:
            headers = {"Content-Type": upload.content_type} if upload.content_type else None
            await self._gateway.transfer("PUT", destination.upload_url, content=upload.content, headers=headers)
        else:
            await self._gateway.transfer(
                "POST",
                destination.upload_url,
                files={"file": (upload.filename, upload.content, upload.content_type)},
            )
        logger.debug(
            "media_transferred",
            extra={"external_id": destination.external_id, "provider": provider.value, "size": len(upload.content)},
        )
        return await self.register_media(
            MediaDescriptor(type=media_type, external_id=destination.external_id, provider=provider)
        )

    async def get_media(self, media_id: str) -> MediaRecord:
        data = await self._gateway.request(GET_MEDIA, {"id": media_id})
        raw = data.get("media")
        if not raw:
            raise ApiError(f"Media '{media_id}' not found.")
        return MediaRecord.model_validate(raw)

    async def get_media_from_task(self, task: GenerationTask) -> MediaRecord | list[MediaRecord]:
        if not task.is_completed:
            raise UsageError(f"Task '{task.id}' is not completed (status: {task.status_value}).")
        outputs = task.outputs
        if outputs is not None and outputs.is_batch:
            records = await asyncio.gather(*(self.get_media(media_id) for media_id in outputs.media_ids()))
            return list(records)
        if outputs is None or outputs.media_id is None:
            raise UsageError(f"Task '{task.id}' has no media output.")
        return await self.get_media(outputs.media_id)

    @staticmethod
    def get_public_url(media: MediaRecord) -> str | None:
        return media.public_url

    async def download_media(self, media: MediaRecord) -> bytes:
        url = self.get_public_url(media)
        if url is None:
            raise UsageError(f"Media '{media.id}' has no public URL.")
        response = await self._gateway.fetch(url)
        return response.content


__all__ = ["MediaGateway"]
