import enum
import logging
import stat
import threading
import time
import weakref
from datetime import datetime
from typing import Dict, Optional

from drivefs.config.sync_states import (
    SYNC_STATE_SYNCHRONIZED,
    SYNC_STATE_PENDING_PUSH,
)

logger = logging.getLogger(__name__)

# All parent paths returned by the Graph API carry this prefix
ROOT_PREFIX = "/drive/root:"

# Folders are reported with size 0 remotely
DIR_SIZE = 4096


class UnsavedChangesError(Exception):
    """Raised when a remote fetch would overwrite local changes that were never uploaded."""


class CacheState(enum.Enum):
    UNFETCHED = "unfetched"
    FETCHED = "fetched"
    DIRTY = "dirty"


def parse_timestamp(value: Optional[str]) -> float:
    """Converts a Graph API ISO 8601 timestamp into a unix timestamp."""
    if not value:
        return time.time()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        logger.warning(f"Unparseable timestamp {value!r}, using current time")
        return time.time()


class ItemParent:
    """A parent's id and full API path, plus a non-owning reference to the parent item."""

    def __init__(self, item_id: str = "", path: str = "", item: Optional["DriveItem"] = None):
        self.id = item_id
        self.path = path
        self._item = weakref.ref(item) if item is not None else None

    @property
    def item(self) -> Optional["DriveItem"]:
        return self._item() if self._item is not None else None

    @classmethod
    def from_json(cls, data: Optional[dict]):
        data = data or {}
        return cls(data.get("id", ""), data.get("path", ""))


class DriveItem:
    """
    A file or folder in the cached drive tree.

    Children are fetched lazily: `children` stays None until the first listing
    and is a (possibly empty) dict afterwards. File content is buffered in
    `data` and only leaves the process through `upload`.
    """

    def __init__(self, name: str, item_id: str = "", size: int = 0,
                 modify_time: Optional[float] = None, folder: Optional[dict] = None,
                 file: Optional[dict] = None, parent: Optional[ItemParent] = None):
        self.id = item_id
        self.name = name
        self.size = size
        self.modify_time = modify_time if modify_time is not None else time.time()
        self.folder = folder
        self.file = file
        self.parent = parent or ItemParent()

        self.data: Optional[bytearray] = None
        self.has_changes = False
        self.deleted = False
        self.sync_state = SYNC_STATE_SYNCHRONIZED
        self.children: Optional[Dict[str, "DriveItem"]] = None
        self.children_fetched_at: Optional[float] = None

        # Only populated on the root item
        self.auth = None
        self.uploader = None
        self.cache_ttl = 0

        self.lock = threading.RLock()
        self._mode = 0
        self._generation = 0

    def __repr__(self):
        return f"DriveItem({self.name!r}, id={self.id!r})"

    # --- Construction ---

    @classmethod
    def from_json(cls, data: dict):
        return cls(
            name=data.get("name", ""),
            item_id=data.get("id", ""),
            size=int(data.get("size", 0) or 0),
            modify_time=parse_timestamp(data.get("lastModifiedDateTime")),
            folder=data.get("folder"),
            file=data.get("file"),
            parent=ItemParent.from_json(data.get("parentReference")),
        )

    @classmethod
    def new_root(cls, data: dict, auth, uploader=None, cache_ttl: float = 0):
        root = cls.from_json(data)
        root.name = "root"
        root.parent = ItemParent()
        root.file = None
        if root.folder is None:
            root.folder = {}
        root.auth = auth
        root.uploader = uploader
        root.cache_ttl = cache_ttl or 0
        return root

    @classmethod
    def new_local(cls, name: str, parent: "DriveItem"):
        """A regular file that only exists locally until its first upload, so it starts dirty."""
        item = cls(name=name, file={})
        item.data = bytearray()
        item.has_changes = True
        item.sync_state = SYNC_STATE_PENDING_PUSH
        item.set_parent(parent)
        return item

    def apply_json(self, data: dict):
        """Refreshes identity and metadata in place, keeping buffered content."""
        with self.lock:
            self.id = data.get("id", self.id)
            self.name = data.get("name", self.name)
            self.size = int(data.get("size", self.size) or 0)
            if "lastModifiedDateTime" in data:
                self.modify_time = parse_timestamp(data["lastModifiedDateTime"])
            if "folder" in data or "file" in data:
                self.folder = data.get("folder")
                self.file = data.get("file")
            ref = data.get("parentReference")
            if ref:
                self.parent.id = ref.get("id", self.parent.id)
                self.parent.path = ref.get("path", self.parent.path)
            if self.data is not None and self.has_changes:
                self.size = len(self.data)

    # --- Tree links ---

    def set_parent(self, parent: "DriveItem"):
        self.parent = ItemParent(parent.id, parent.api_path(), parent)

    def is_root(self) -> bool:
        return self.parent.path == "" and self.name == "root"

    def api_path(self) -> str:
        """Path in the form the Graph API uses for parentReference.path."""
        if self.is_root():
            return ROOT_PREFIX
        return ROOT_PREFIX + self.path()

    def path(self) -> str:
        if self.is_root():
            return "/"
        full = self.parent.path + "/" + self.name
        if full.startswith(ROOT_PREFIX):
            full = full[len(ROOT_PREFIX):]
        return full

    def get_root(self) -> "DriveItem":
        item = self
        while item.parent.path != "":
            parent = item.parent.item
            if parent is None:
                break
            item = parent
        return item

    def add_child(self, child: "DriveItem"):
        with self.lock:
            child.set_parent(self)
            if self.children is not None:
                self.children[child.name] = child

    def remove_child(self, name: str) -> Optional["DriveItem"]:
        with self.lock:
            if self.children is None:
                return None
            return self.children.pop(name, None)

    # --- Attributes ---

    def mode(self) -> int:
        if self._mode == 0:
            if self.file is None:
                self._mode = stat.S_IFDIR | 0o755
            else:
                self._mode = stat.S_IFREG | 0o644
        return self._mode

    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode())

    def fake_size(self) -> int:
        if self.is_dir():
            return DIR_SIZE
        return self.size

    def nlink(self) -> int:
        if not self.is_dir():
            return 1
        children = self.children or {}
        return 2 + sum(1 for child in children.values() if child.is_dir())

    def mtime(self) -> int:
        return int(self.modify_time)

    @property
    def cache_state(self) -> CacheState:
        if self.has_changes:
            return CacheState.DIRTY
        cached = self.children if self.is_dir() else self.data
        return CacheState.UNFETCHED if cached is None else CacheState.FETCHED

    # --- Remote fills ---

    def _children_stale(self) -> bool:
        if self.children is None:
            return True
        ttl = self.get_root().cache_ttl
        return bool(ttl) and time.monotonic() - self.children_fetched_at > ttl

    def get_children(self, auth) -> Optional[Dict[str, "DriveItem"]]:
        with self.lock:
            if not self.is_dir() or not self._children_stale():
                return self.children

            logger.debug(f"Fetching children of {self.path()}")
            listing = auth.list_children(self.path())

            previous = self.children or {}
            children = {}
            for data in listing:
                name = data.get("name", "")
                existing = previous.get(name)
                if existing is not None:
                    # Keep the same object so open handles stay valid
                    if not existing.has_changes:
                        existing.apply_json(data)
                    children[name] = existing
                    continue
                child = DriveItem.from_json(data)
                child.set_parent(self)
                children[name] = child

            # Locally created files are not on the server yet
            for name, existing in previous.items():
                if name not in children and (existing.id == "" or existing.has_changes):
                    children[name] = existing

            self.children = children
            self.children_fetched_at = time.monotonic()
            return self.children

    def fetch_content(self, auth):
        with self.lock:
            if self.has_changes:
                raise UnsavedChangesError(f"{self.path()} has local changes that were not uploaded")
            logger.debug(f"Fetching content of {self.path()}")
            body = auth.fetch_content(self.id)
            self.data = bytearray(body)
            self.size = len(self.data)

    # --- Buffered I/O ---

    def read(self, size: int, offset: int) -> bytes:
        with self.lock:
            if self.data is None:
                return b""
            end = min(offset + size, len(self.data))
            logger.debug(f"Read({self.name!r}): {max(end - offset, 0)} bytes at offset {offset}")
            return bytes(self.data[offset:end])

    def _mark_changed(self):
        self.size = len(self.data)
        self.has_changes = True
        self.sync_state = SYNC_STATE_PENDING_PUSH
        self.modify_time = time.time()
        self._generation += 1

    def write(self, data: bytes, offset: int) -> int:
        with self.lock:
            logger.debug(f"Write({self.name!r}): {len(data)} bytes at offset {offset}")
            if self.data is None:
                self.data = bytearray()
            if offset > len(self.data):
                self.data.extend(b"\0" * (offset - len(self.data)))
            self.data[offset:offset + len(data)] = data
            self._mark_changed()
            return len(data)

    def truncate(self, size: int):
        with self.lock:
            if self.data is None:
                self.data = bytearray()
            if size <= len(self.data):
                del self.data[size:]
            else:
                self.data.extend(b"\0" * (size - len(self.data)))
            self._mark_changed()

    def utimens(self, mtime: float):
        with self.lock:
            self.modify_time = mtime

    # --- Upload ---

    def flush(self):
        """Schedules a background upload if there are local changes. Never blocks on the network."""
        logger.debug(f"Flush({self.name!r})")
        if not self.has_changes or self.deleted:
            return None
        root = self.get_root()
        if root.uploader is None:
            logger.warning(f"No upload worker attached, {self.path()} stays dirty")
            return None
        logger.info(f"Triggering upload of {self.path()}")
        return root.uploader.schedule(self, root.auth)

    def mark_deleted(self, deleted: bool = True):
        """Tombstones the item so queued or retried uploads skip it."""
        with self.lock:
            self.deleted = deleted

    def upload(self, auth) -> Optional[dict]:
        with self.lock:
            if self.deleted:
                logger.info(f"Skipping upload of deleted item {self.name!r}")
                return None
            payload = bytes(self.data or b"")
            generation = self._generation
            item_id = self.id
            parent_id = self.parent.id
            name = self.name

        if item_id:
            response = auth.upload_content(payload, item_id=item_id)
        else:
            response = auth.upload_content(payload, parent_id=parent_id, name=name)

        with self.lock:
            self.apply_json(response)
            if self._generation == generation:
                self.has_changes = False
                self.sync_state = SYNC_STATE_SYNCHRONIZED
                self.size = len(payload)
            else:
                # Written to again while the upload was in flight
                self.size = len(self.data)
                self.sync_state = SYNC_STATE_PENDING_PUSH
        return response
