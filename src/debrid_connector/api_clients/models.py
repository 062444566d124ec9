"""Typed records returned by the Real-Debrid API."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..utils.timestamps import parse_timestamp


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class Download:
    """An entry of the ``/downloads`` listing."""

    id: str
    filename: str
    filesize: int = 0
    mime_type: Optional[str] = None
    link: Optional[str] = None
    host: Optional[str] = None
    download: Optional[str] = None
    generated: Optional[datetime] = None
    expires: Optional[datetime] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "Download":
        return cls(
            id=str(item.get("id", "")),
            filename=item.get("filename") or item.get("name") or "",
            filesize=_as_int(item.get("filesize", item.get("size"))),
            mime_type=item.get("mimeType") or item.get("mimetype"),
            link=item.get("link"),
            host=item.get("host") or item.get("hoster"),
            download=item.get("download"),
            generated=parse_timestamp(item.get("generated")),
            expires=parse_timestamp(item.get("expires")),
        )


@dataclass
class RemoteFile:
    """A file as listed by the remote account."""

    id: str
    name: str
    size: int = 0
    hash: str = ""
    mime_type: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    download_url: Optional[str] = None

    @property
    def normalized_hash(self) -> str:
        return (self.hash or "").strip().lower()

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "RemoteFile":
        created = parse_timestamp(item.get("created") or item.get("generated"))
        return cls(
            id=str(item.get("id", "")),
            name=item.get("name") or item.get("filename") or "",
            size=_as_int(item.get("size", item.get("filesize"))),
            hash=item.get("hash") or "",
            mime_type=item.get("mimetype") or item.get("mime") or item.get("mimeType"),
            created_at=created,
            modified_at=parse_timestamp(item.get("modified")) or created,
            download_url=item.get("link") or item.get("download"),
        )

    @classmethod
    def from_download(cls, download: Download) -> "RemoteFile":
        """Reshape a downloads entry; downloads carry no content hash."""
        return cls(
            id=download.id,
            name=download.filename,
            size=download.filesize,
            hash="",
            mime_type=download.mime_type,
            created_at=download.generated,
            modified_at=download.generated,
            download_url=download.download or download.link,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "hash": self.hash,
            "mime_type": self.mime_type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "modified_at": self.modified_at.isoformat() if self.modified_at else None,
            "download_url": self.download_url,
        }


@dataclass
class UserInfo:
    """The ``/user`` payload."""

    id: int
    username: str
    email: Optional[str] = None
    points: int = 0
    locale: Optional[str] = None
    avatar: Optional[str] = None
    type: str = "free"
    premium: int = 0
    expiration: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_premium(self) -> bool:
        return self.type == "premium"

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "UserInfo":
        return cls(
            id=_as_int(item.get("id")),
            username=item.get("username") or "",
            email=item.get("email"),
            points=_as_int(item.get("points")),
            locale=item.get("locale"),
            avatar=item.get("avatar"),
            type=item.get("type") or "free",
            premium=_as_int(item.get("premium")),
            expiration=parse_timestamp(item.get("expiration")),
            raw=dict(item),
        )


@dataclass
class TorrentFile:
    """One file inside a torrent; ``selected`` files are downloaded."""

    id: str
    path: str
    size: int = 0
    selected: bool = False

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "TorrentFile":
        return cls(
            id=str(item.get("id", "")),
            path=item.get("path") or item.get("name") or "",
            size=_as_int(item.get("bytes", item.get("size"))),
            selected=bool(item.get("selected")),
        )


@dataclass
class Torrent:
    """A torrent of the account."""

    id: str
    name: str = ""
    hash: str = ""
    size: int = 0
    status: str = ""
    progress: float = 0.0
    speed: int = 0
    seeders: int = 0
    host: Optional[str] = None
    links: List[str] = field(default_factory=list)
    added_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    files: List[TorrentFile] = field(default_factory=list)

    @property
    def is_downloaded(self) -> bool:
        return self.status == "downloaded"

    @property
    def needs_file_selection(self) -> bool:
        return self.status == "waiting_files_selection"

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "Torrent":
        return cls(
            id=str(item.get("id", "")),
            name=item.get("filename") or item.get("name") or "",
            hash=item.get("hash") or "",
            size=_as_int(item.get("bytes", item.get("size"))),
            status=item.get("status") or "",
            progress=_as_float(item.get("progress")),
            speed=_as_int(item.get("speed")),
            seeders=_as_int(item.get("seeders")),
            host=item.get("host") or item.get("hoster"),
            links=[link for link in item.get("links") or [] if isinstance(link, str)],
            added_at=parse_timestamp(item.get("added") or item.get("created")),
            ended_at=parse_timestamp(item.get("ended") or item.get("finished")),
            files=[TorrentFile.from_api(f) for f in item.get("files") or [] if isinstance(f, dict)],
        )


@dataclass
class Stream:
    """A streamable rendition of a file."""

    id: str
    name: str = ""
    quality: Optional[str] = None
    codec: Optional[str] = None
    bitrate: int = 0
    url: Optional[str] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "Stream":
        return cls(
            id=str(item.get("id", "")),
            name=item.get("name") or "",
            quality=item.get("quality"),
            codec=item.get("codec"),
            bitrate=_as_int(item.get("bitrate")),
            url=item.get("direct") or item.get("url"),
        )
