from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
import math

from xjposs_py.common.date import iso_8601_to_timestamp
from xjposs_py.common.path import PathType, guess_content_type
from xjposs_py.oss.errors import PlanningError


@dataclass(frozen=True)
class Credential:
    """The bearer token and its expiry

    A credential is never mutated. Login and refresh create a new one.
    """

    token: str
    expires_at: int  # epoch seconds
    issued_at: int  # epoch seconds
    token_type: str = "Bearer"

    @staticmethod
    def from_(info: Dict[str, Any], now: int) -> "Credential":
        """Make a credential from the response of login or refresh

        `expires_in` is relative to `now`.
        """

        token = info.get("access_token")
        if not token:
            raise ValueError(f"No access_token in {info!r}")

        expires_in = int(info.get("expires_in") or 0)
        token_type = info.get("token_type") or "Bearer"
        if token_type.lower() == "bearer":
            token_type = "Bearer"

        return Credential(token=token, expires_at=now + expires_in, issued_at=now, token_type=token_type)

    def authorization(self) -> str:
        return f"{self.token_type} {self.token}"

    def __repr__(self) -> str:
        # Do not leak the token to logs
        return f"Credential(token='***{self.token[-4:]}', expires_at={self.expires_at}, issued_at={self.issued_at})"


@dataclass
class OssUser:
    id: int
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    is_active: bool = True
    created_at: Optional[int] = None

    @staticmethod
    def from_(info) -> "OssUser":
        created_at = None
        if info.get("created_at"):
            created_at = iso_8601_to_timestamp(info["created_at"])

        return OssUser(
            id=info.get("id", 0),
            username=info.get("username", ""),
            email=info.get("email"),
            full_name=info.get("full_name"),
            is_active=info.get("is_active", True),
            created_at=created_at,
        )


@dataclass
class OssFile:
    """
    A file record of the backend

    id: int  # backend file-record id
    filename: str  # stored name
    original_filename: str  # name of the uploaded local file
    oss_key: str  # object key in the object store
    oss_url: str  # public url of the object
    """

    id: int
    filename: str
    original_filename: str = ""
    content_type: str = ""
    file_size: int = 0
    oss_key: str = ""
    oss_url: str = ""
    description: Optional[str] = None
    tags: Optional[str] = None

    created_at: Optional[int] = None  # server created time
    updated_at: Optional[int] = None  # server updated time

    @staticmethod
    def from_(info) -> "OssFile":
        created_at = None
        if info.get("created_at"):
            created_at = iso_8601_to_timestamp(info["created_at"])
        updated_at = None
        if info.get("updated_at"):
            updated_at = iso_8601_to_timestamp(info["updated_at"])

        return OssFile(
            id=info.get("id", 0),
            filename=info.get("filename", ""),
            original_filename=info.get("original_filename", ""),
            content_type=info.get("content_type", ""),
            file_size=info.get("file_size", 0),
            oss_key=info.get("oss_key", ""),
            oss_url=info.get("oss_url", ""),
            description=info.get("description"),
            tags=info.get("tags"),
            created_at=created_at,
            updated_at=updated_at,
        )


@dataclass
class OssDownloadUrl:
    url: str
    expires_in: Optional[int] = None

    @staticmethod
    def from_(info) -> "OssDownloadUrl":
        return OssDownloadUrl(
            url=info.get("download_url") or info.get("url") or "",
            expires_in=info.get("expires_in"),
        )


@dataclass
class FileMeta:
    """Metadata of a local file to upload"""

    filename: str
    content_type: str
    file_size: int
    description: Optional[str] = None
    tags: Optional[str] = None

    @staticmethod
    def from_path(localpath: PathType, description: Optional[str] = None, tags: Optional[str] = None) -> "FileMeta":
        path = Path(localpath)
        return FileMeta(
            filename=path.name,
            content_type=guess_content_type(path),
            file_size=path.stat().st_size,
            description=description or None,
            tags=tags or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(
            filename=self.filename,
            content_type=self.content_type,
            file_size=self.file_size,
        )
        if self.description:
            data["description"] = self.description
        if self.tags:
            data["tags"] = self.tags
        return data


class UploadMode(Enum):
    Single = "single"
    Multipart = "multipart"


@dataclass(frozen=True)
class PartDescriptor:
    part_number: int  # 1-based
    upload_url: str
    byte_range_size: int


@dataclass(frozen=True)
class PartResult:
    part_number: int
    integrity_tag: str

    def to_dict(self) -> Dict[str, Any]:
        return dict(part_number=self.part_number, etag=self.integrity_tag)


@dataclass(frozen=True)
class UploadPlan:
    """The transfer plan of one upload attempt, returned from the smart-upload endpoint"""

    mode: UploadMode
    file_size: int
    oss_key: Optional[str] = None
    file_id: Optional[int] = None
    single_upload_url: Optional[str] = None
    upload_id: Optional[str] = None
    part_size: Optional[int] = None
    parts: List[PartDescriptor] = field(default_factory=list)

    @property
    def total_parts(self) -> int:
        return len(self.parts) if self.mode == UploadMode.Multipart else 1

    @staticmethod
    def from_(info, file_size: int) -> "UploadPlan":
        """Validate the plan returned from backend

        Raise `PlanningError` if any field required by the declared mode is missing.
        Missing urls are never inferred.
        """

        if not isinstance(info, dict):
            raise PlanningError(f"Upload plan is not an object: {info!r}", plan=info)

        try:
            mode = UploadMode(info.get("mode"))
        except ValueError:
            raise PlanningError(f"Unknown upload mode: {info.get('mode')!r}", plan=info)

        oss_key = info.get("oss_key")
        file_id = info.get("file_id")
        if not oss_key and file_id is None:
            raise PlanningError("Upload plan has neither `oss_key` nor `file_id`", plan=info)

        if mode == UploadMode.Single:
            upload_url = info.get("upload_url")
            if not upload_url:
                raise PlanningError("Single upload plan has no `upload_url`", plan=info)
            return UploadPlan(
                mode=mode,
                file_size=file_size,
                oss_key=oss_key,
                file_id=file_id,
                single_upload_url=upload_url,
            )

        upload_id = info.get("upload_id")
        if not upload_id:
            raise PlanningError("Multipart upload plan has no `upload_id`", plan=info)

        part_size = info.get("part_size")
        if not isinstance(part_size, int) or part_size <= 0:
            raise PlanningError(f"Multipart upload plan has invalid `part_size`: {part_size!r}", plan=info)

        raw_parts = info.get("parts") or []
        if not isinstance(raw_parts, list) or not raw_parts:
            raise PlanningError("Multipart upload plan has no parts", plan=info)

        for raw in raw_parts:
            if not isinstance(raw, dict):
                raise PlanningError(f"Part is not an object: {raw!r}", plan=info)
            part_number = raw.get("part_number")
            if not isinstance(part_number, int) or isinstance(part_number, bool):
                raise PlanningError(f"Part has invalid `part_number`: {part_number!r}", plan=info)

        expected = math.ceil(file_size / part_size)
        if len(raw_parts) != expected:
            raise PlanningError(
                f"Multipart upload plan has {len(raw_parts)} parts, but {expected} are needed "
                f"for {file_size} bytes with part size {part_size}",
                plan=info,
            )

        parts: List[PartDescriptor] = []
        for raw in sorted(raw_parts, key=lambda p: p["part_number"]):
            part_number = raw.get("part_number")
            url = raw.get("upload_url")
            if not url:
                raise PlanningError(f"Part {part_number} has no `upload_url`", plan=info)
            if part_number != len(parts) + 1:
                raise PlanningError(f"Part numbers are not 1..{expected}: got {part_number}", plan=info)

            start = (part_number - 1) * part_size
            parts.append(
                PartDescriptor(
                    part_number=part_number,
                    upload_url=url,
                    byte_range_size=min(part_size, file_size - start),
                )
            )

        return UploadPlan(
            mode=mode,
            file_size=file_size,
            oss_key=oss_key,
            file_id=file_id,
            upload_id=upload_id,
            part_size=part_size,
            parts=parts,
        )


@dataclass(frozen=True)
class UploadProgress:
    """Progress of one upload attempt

    For multipart uploads, `completed` and `total` count parts.
    For single uploads, they count bytes.
    """

    completed: int
    total: int
    mode: UploadMode = UploadMode.Single

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 100.0
        return min(100.0, self.completed / self.total * 100)

    @property
    def done(self) -> bool:
        return self.total > 0 and self.completed >= self.total


@dataclass
class MultipartProgress:
    """Server-tracked progress of a multipart upload

    It is advisory only.
    """

    upload_id: str
    total_parts: int = 0
    completed_parts: List[int] = field(default_factory=list)
    status: Optional[str] = None

    @staticmethod
    def from_(info) -> "MultipartProgress":
        completed = info.get("completed_parts") or []
        # Some backends report the count, others the part numbers
        if isinstance(completed, int):
            completed_parts = list(range(1, completed + 1))
        else:
            completed_parts = sorted(
                p.get("part_number") if isinstance(p, dict) else int(p) for p in completed
            )

        return MultipartProgress(
            upload_id=info.get("upload_id", ""),
            total_parts=info.get("total_parts", 0),
            completed_parts=completed_parts,
            status=info.get("status"),
        )

    @property
    def percent(self) -> float:
        if self.total_parts <= 0:
            return 0.0
        return len(self.completed_parts) / self.total_parts * 100
