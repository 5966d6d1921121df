"""Typed payloads exchanged with the PixAI API."""

from __future__ import annotations

import mimetypes
import os
import posixpath
import urllib.parse
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import UsageError


class PixAIBaseModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        use_enum_values=True,
    )


# ---------------------------------------------------------------------------
# Generation parameters
# ---------------------------------------------------------------------------


class ControlNet(PixAIBaseModel):
    media_id: str | None = None
    media_url: str | None = None
    # dwpose, openpose_full, canny, depth, hed, mlsd, openpose, seg, normal, scribble
    type: str | None = None
    weight: float | None = None


class IPAdapter(PixAIBaseModel):
    enabled: bool | None = None
    reference_images: list[str] | None = None


class LatentCouple(PixAIBaseModel):
    type: str | None = None
    divisions: list[str] | None = None
    positions: list[str] | None = None
    weights: list[float] | None = None


class Dynthres(PixAIBaseModel):
    mimic_scale: float | None = None
    threshold_percentile: float | None = None
    mimic_mode: str | None = None
    mimic_scale_min: float | None = None
    cfg_mode: str | None = None
    cfg_scale_min: float | None = None
    powerscale_power: float | None = None


class AnimateDiffV2(PixAIBaseModel):
    motion_scale: float | None = None
    denoise: float | None = None


class AnimateDiff(PixAIBaseModel):
    enabled: bool | None = None
    smooth: bool | None = None
    long: bool | None = None
    v2: AnimateDiffV2 | None = None


class TaskParameters(PixAIBaseModel):
    """Parameters of an image generation task.

    Nothing is required and unknown keys are forwarded untouched; the server
    validates the combination. ``media_id``/``media_url`` and
    ``mask_media_id``/``mask_media_url`` are alternatives, only one of each
    pair should be set.
    """

    prompts: str | None = None
    negative_prompts: str | None = None
    model_id: str | None = None
    width: int | None = None
    height: int | None = None
    batch_size: int | None = None
    sampling_steps: int | None = None
    sampling_method: str | None = None
    cfg_scale: float | None = None
    # An empty string asks the server for a random seed.
    seed: int | str | None = None
    clip_skip: int | None = None
    vae_model_id: str | None = None
    strength: float | None = None
    media_id: str | None = None
    media_url: str | None = None
    mask_media_id: str | None = None
    mask_media_url: str | None = None
    enable_tile: bool | None = None
    enable_a_detailer: bool | None = None
    upscale: float | None = None
    upscale_sampler: str | None = None
    upscaler: str | None = None
    upscale_denoising_strength: float | None = None
    upscale_denoising_steps: int | None = None
    enlarge: float | None = None
    enlarge_model: str | None = None
    lora: dict[str, float] | None = None
    lbw: dict[str, Any] | None = None
    control_nets: list[ControlNet] | None = None
    ip_adapter: IPAdapter | None = None
    latent_couple: LatentCouple | None = None
    dynthres: Dynthres | None = None
    animate_diff: AnimateDiff | None = None
    ref_task_id: str | None = None
    workflow: dict[str, Any] | None = None
    workflow_name: str | None = None
    inputs: dict[str, Any] | None = None

    def to_variables(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def parameters_to_variables(parameters: TaskParameters | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(parameters, TaskParameters):
        return parameters.to_variables()
    return TaskParameters.model_validate(dict(parameters)).to_variables()


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskStatus(str, Enum):
    WAITING = "waiting"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED.value, TaskStatus.FAILED.value, TaskStatus.CANCELLED.value})
FAILURE_STATUSES = frozenset({TaskStatus.FAILED.value, TaskStatus.CANCELLED.value})


class TaskBatchItem(PixAIBaseModel):
    media_id: str


class TaskOutputs(PixAIBaseModel):
    media_id: str | None = None
    batch: list[TaskBatchItem] | None = None

    @property
    def is_batch(self) -> bool:
        return self.batch is not None

    def media_ids(self) -> list[str]:
        if self.batch is not None:
            return [item.media_id for item in self.batch]
        if self.media_id is not None:
            return [self.media_id]
        return []


class GenerationTask(PixAIBaseModel):
    id: str
    # Unknown statuses reported by the server are kept verbatim.
    status: TaskStatus | str | None = None
    parameters: dict[str, Any] | None = None
    outputs: TaskOutputs | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def status_value(self) -> str | None:
        if isinstance(self.status, Enum):
            return self.status.value
        return self.status

    @property
    def is_completed(self) -> bool:
        return self.status_value == TaskStatus.COMPLETED.value

    @property
    def is_failed(self) -> bool:
        return self.status_value in FAILURE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status_value in TERMINAL_STATUSES


class PersonalEvent(PixAIBaseModel):
    """One envelope of the account event feed.

    Only ``taskUpdated`` is modelled; other event kinds are kept as extra
    fields so they still reach ``events()`` consumers.
    """

    task_updated: GenerationTask | None = None

    @property
    def kind(self) -> str | None:
        if self.task_updated is not None:
            return "taskUpdated"
        for key, value in (self.model_extra or {}).items():
            if value is not None and key != "__typename":
                return key
        return None


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


class MediaType(str, Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"


class MediaProvider(str, Enum):
    S3 = "S3"
    CLOUDFLARE = "CLOUDFLARE"


DIRECT_STORAGE_PROVIDERS = frozenset({MediaProvider.S3.value})


class MediaUrl(PixAIBaseModel):
    variant: str
    url: str


class MediaRecord(PixAIBaseModel):
    id: str
    type: MediaType | str | None = None
    urls: list[MediaUrl] = Field(default_factory=list)
    width: int | None = None
    height: int | None = None

    @property
    def public_url(self) -> str | None:
        for entry in self.urls:
            if entry.variant.upper() == "PUBLIC":
                return entry.url
        return None


class UploadDestination(PixAIBaseModel):
    external_id: str
    upload_url: str


def media_type_for(content_type: str | None) -> MediaType:
    kind = (content_type or "").split(";", 1)[0].strip().lower()
    if kind.startswith("image/"):
        return MediaType.IMAGE
    if kind.startswith("video/"):
        return MediaType.VIDEO
    raise UsageError(f"Unsupported media type: {content_type or 'unknown'}")


# ---------------------------------------------------------------------------
# Upload sources
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class MediaDescriptor:
    """Media already transferred to storage, only needs registering."""

    type: MediaType
    external_id: str
    provider: MediaProvider = MediaProvider.S3
    kind: Literal["descriptor"] = field(default="descriptor", init=False)


@dataclass(slots=True)
class FileUpload:
    content: bytes
    filename: str = "file"
    content_type: str | None = None
    kind: Literal["file"] = field(default="file", init=False)


@dataclass(slots=True)
class UrlUpload:
    url: str
    kind: Literal["url"] = field(default="url", init=False)


UploadSource = Union[MediaDescriptor, FileUpload, UrlUpload]


def filename_from_url(url: str) -> str:
    path = urllib.parse.urlparse(url).path
    name = posixpath.basename(path) if path else ""
    return urllib.parse.unquote(name) or "file"


def _guess_content_type(filename: str) -> str | None:
    guessed, _encoding = mimetypes.guess_type(filename)
    return guessed


def as_upload_source(
    value: Any,
    *,
    filename: str | None = None,
    content_type: str | None = None,
) -> UploadSource:
    """Resolve whatever the caller passed into one of the upload variants."""

    if isinstance(value, (MediaDescriptor, FileUpload, UrlUpload)):
        return value
    if isinstance(value, str):
        if urllib.parse.urlparse(value).scheme in {"http", "https"}:
            return UrlUpload(value)
        raise UsageError(f"Expected an http(s) URL, got {value!r}")
    if isinstance(value, os.PathLike):
        path = Path(value)
        name = filename or path.name
        return FileUpload(
            content=path.read_bytes(),
            filename=name,
            content_type=content_type or _guess_content_type(name),
        )
    if isinstance(value, (bytes, bytearray, memoryview)):
        name = filename or "file"
        return FileUpload(
            content=bytes(value),
            filename=name,
            content_type=content_type or _guess_content_type(name),
        )
    read = getattr(value, "read", None)
    if callable(read):
        content = read()
        if isinstance(content, str):
            raise UsageError("File-like uploads must be opened in binary mode")
        name = filename or os.path.basename(str(getattr(value, "name", "") or "")) or "file"
        declared = content_type or getattr(value, "content_type", None)
        return FileUpload(
            content=bytes(content),
            filename=name,
            content_type=declared or _guess_content_type(name),
        )
    raise UsageError(f"Unsupported upload input: {type(value).__name__}")


__all__ = [
    "AnimateDiff",
    "AnimateDiffV2",
    "ControlNet",
    "DIRECT_STORAGE_PROVIDERS",
    "Dynthres",
    "FAILURE_STATUSES",
    "FileUpload",
    "GenerationTask",
    "IPAdapter",
    "LatentCouple",
    "MediaDescriptor",
    "MediaProvider",
    "MediaRecord",
    "MediaType",
    "MediaUrl",
    "PersonalEvent",
    "PixAIBaseModel",
    "TERMINAL_STATUSES",
    "TaskBatchItem",
    "TaskOutputs",
    "TaskParameters",
    "TaskStatus",
    "UploadDestination",
    "UploadSource",
    "UrlUpload",
    "as_upload_source",
    "filename_from_url",
    "media_type_for",
    "parameters_to_variables",
]
