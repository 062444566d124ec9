"""Typed Real-Debrid operations on top of the resilient client."""

from typing import Any, Dict, List, Optional, Sequence

from .errors import ApiError, ErrorClassifier
from .http_client import ApiResponse, ResilientHttpClient
from .models import Download, RemoteFile, Stream, Torrent, UserInfo
from ..utils.logging import get_logger


logger = get_logger(__name__)


class DebridService:
    """Domain facade: failed responses become ``DebridServiceError`` subclasses."""

    def __init__(self, client: ResilientHttpClient, classifier: Optional[ErrorClassifier] = None):
        self.client = client
        self.classifier = classifier or client.classifier

    def _unwrap(self, response: ApiResponse, operation: str) -> Any:
        if response.success:
            return response.data

        error = response.error or ApiError.from_response(response.status, response.data)
        context = self.classifier.classify(error)
        self.classifier.log_error(error, context, operation=operation, status=response.status)
        raise self.classifier.exception_for(error, response.status, context)

    @staticmethod
    def _items(data: Any, key: str) -> List[Dict[str, Any]]:
        """Listings come either bare or wrapped as ``{key: [...]}``."""
        if isinstance(data, dict):
            data = data.get(key)
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    async def get_user_info(self) -> UserInfo:
        response = await self.client.get("/user")
        return UserInfo.from_api(self._unwrap(response, "get_user_info") or {})

    # Files

    async def get_files(self, page: int = 1, per_page: int = 100, search: Optional[str] = None) -> List[RemoteFile]:
        """List one page of account files.

        Falls back to the downloads listing when ``/files`` answers 404.
        """
        params: Dict[str, Any] = {"page": page, "perPage": per_page}
        if search:
            params["search"] = search

        response = await self.client.get("/files", params=params)
        if not response.success and response.status == 404:
            logger.warning("Files listing unavailable, falling back to downloads", page=page)
            downloads = await self.get_downloads(page=page, per_page=per_page)
            return [RemoteFile.from_download(download) for download in downloads]

        data = self._unwrap(response, "get_files")
        return [RemoteFile.from_api(item) for item in self._items(data, "files")]

    async def get_file(self, file_id: str) -> RemoteFile:
        response = await self.client.get(f"/files/{file_id}")
        return RemoteFile.from_api(self._unwrap(response, "get_file") or {})

    async def search_files(self, query: str, page: int = 1) -> List[RemoteFile]:
        response = await self.client.get("/files/search", params={"query": query, "page": page})
        data = self._unwrap(response, "search_files")
        return [RemoteFile.from_api(item) for item in self._items(data, "files")]

    async def delete_file(self, file_id: str) -> None:
        response = await self.client.delete(f"/files/{file_id}")
        self._unwrap(response, "delete_file")
        logger.info("Remote file deleted", file_id=file_id)

    # Torrents

    async def get_torrents(self, page: int = 1, per_page: int = 100) -> List[Torrent]:
        response = await self.client.get("/torrents", params={"page": page, "limit": per_page})
        data = self._unwrap(response, "get_torrents")
        return [Torrent.from_api(item) for item in self._items(data, "torrents")]

    async def get_torrent(self, torrent_id: str) -> Torrent:
        response = await self.client.get(f"/torrents/{torrent_id}")
        return Torrent.from_api(self._unwrap(response, "get_torrent") or {})

    async def add_magnet(self, magnet: str) -> Torrent:
        """Add a magnet link; the returned torrent may only carry its id."""
        response = await self.client.post("/torrents/add/magnet", form={"magnet": magnet})
        torrent = Torrent.from_api(self._unwrap(response, "add_magnet") or {})
        logger.info("Magnet added", torrent_id=torrent.id)
        return torrent

    async def select_torrent_files(self, torrent_id: str, file_ids: Sequence[str] = ()) -> Torrent:
        """Choose which files of a torrent to download; no ids selects all of them."""
        files = ",".join(str(file_id) for file_id in file_ids) or "all"
        response = await self.client.post(f"/torrents/selectFiles/{torrent_id}", form={"files": files})
        data = self._unwrap(response, "select_torrent_files")
        if isinstance(data, dict) and data:
            return Torrent.from_api(data)
        # 204 No Content
        return await self.get_torrent(torrent_id)

    async def delete_torrent(self, torrent_id: str) -> None:
        response = await self.client.delete(f"/torrents/{torrent_id}")
        self._unwrap(response, "delete_torrent")
        logger.info("Torrent deleted", torrent_id=torrent_id)

    # Streams

    async def get_streams(self, file_id: str, quality: Optional[str] = None) -> List[Stream]:
        params = {"quality": quality} if quality else None
        response = await self.client.get(f"/streams/{file_id}", params=params)
        data = self._unwrap(response, "get_streams")
        return [Stream.from_api(item) for item in self._items(data, "streams")]

    # Downloads

    async def get_downloads(self, page: int = 1, per_page: int = 100) -> List[Download]:
        response = await self.client.get("/downloads", params={"page": page, "limit": per_page})
        data = self._unwrap(response, "get_downloads")
        return [Download.from_api(item) for item in self._items(data, "downloads")]

    async def get_download(self, download_id: str) -> Download:
        response = await self.client.get(f"/downloads/{download_id}")
        return Download.from_api(self._unwrap(response, "get_download") or {})

    async def create_download(self, link: str, password: Optional[str] = None) -> Download:
        form = {"link": link}
        if password:
            form["password"] = password
        response = await self.client.post("/downloads", form=form)
        return Download.from_api(self._unwrap(response, "create_download") or {})

    async def delete_download(self, download_id: str) -> None:
        response = await self.client.delete(f"/downloads/{download_id}")
        self._unwrap(response, "delete_download")
        logger.info("Download deleted", download_id=download_id)

    async def health_check(self) -> bool:
        """Call ``/time``; healthy when it answers with a timestamp string."""
        response = await self.client.get(
            "/time",
            skip_rate_limit=True,
            retries=1,
            timeout=5,
            authenticate=False
        )
        healthy = response.success and isinstance(response.data, str)
        if not healthy:
            logger.warning("Real-Debrid health check failed", status=response.status)
        return healthy

    def get_rate_limit_info(self) -> Dict[str, Any]:
        snapshot = self.client.rate_limit_snapshot()
        return {
            "requests_remaining": int(snapshot.tokens),
            "reset_time": snapshot.reset_time,
            "burst_size": snapshot.config.burst_size,
            "requests_per_window": snapshot.config.requests_per_window,
        }
