import errno
import logging
import os
import threading
import time
from typing import Optional

from drivefs.fs.paths import ignore, normalize, split_leaf
from drivefs.graph_client.errors import GraphAPIError, NotFoundError
from drivefs.objects.item import DriveItem, UnsavedChangesError
from drivefs.objects.tree import get_children, get_item

logger = logging.getLogger(__name__)

# Writes to files that already exist remotely only happen through create/flush
WRITE_FLAGS = os.O_WRONLY | os.O_RDWR | os.O_APPEND | os.O_TRUNC


def fs_error(code: int, path: Optional[str] = None) -> OSError:
    """An OSError carrying the errno the kernel should see for a failed call."""
    return OSError(code, os.strerror(code), path)


class DriveOperations:
    """
    Filesystem calls for a memory-backed OneDrive tree.

    Failures are raised as OSError with an errno, which fusepy hands back to
    the kernel. The FUSE binding itself lives in driveFS.py.
    """

    def __init__(self, root: DriveItem):
        self.root = root
        self.auth = root.auth
        self.fd = 0
        self._fd_lock = threading.Lock()
        logger.info("DriveFS initialized.")

    def _next_fd(self):
        with self._fd_lock:
            self.fd += 1
            return self.fd

    def _resolve(self, path: str) -> DriveItem:
        path = normalize(path)
        if ignore(path):
            raise fs_error(errno.ENOENT, path)
        try:
            return get_item(path, self.root)
        except NotFoundError:
            raise fs_error(errno.ENOENT, path)
        except GraphAPIError as e:
            # Doesn't exist or the network is down, either way there's nothing to serve
            logger.error(f"Lookup of {path} failed: {e}")
            raise fs_error(errno.ENOENT, path)

    def _resolve_file(self, path: str) -> DriveItem:
        item = self._resolve(path)
        if item.is_dir():
            raise fs_error(errno.EISDIR, path)
        return item

    def _list(self, path: str):
        path = normalize(path)
        if ignore(path):
            raise fs_error(errno.ENOENT, path)
        try:
            return get_children(path, self.root)
        except NotADirectoryError:
            raise fs_error(errno.ENOTDIR, path)
        except NotFoundError:
            raise fs_error(errno.ENOENT, path)
        except GraphAPIError as e:
            logger.error(f"Listing {path} failed: {e}")
            raise fs_error(errno.ENOENT, path)

    def _get_item_attrs(self, item: DriveItem) -> dict:
        mtime = item.mtime()
        return {
            'st_mode': item.mode(),
            'st_nlink': item.nlink(),
            'st_size': item.fake_size(),
            'st_uid': os.getuid(),
            'st_gid': os.getgid(),
            'st_atime': mtime,
            'st_mtime': mtime,
            'st_ctime': mtime,
        }

    def _evict(self, item: DriveItem):
        parent = item.parent.item
        if parent is not None:
            parent.remove_child(item.name)

    # --- Filesystem calls ---

    def getattr(self, path, fh=None):
        logger.debug(f"getattr({path})")
        return self._get_item_attrs(self._resolve(path))

    def chown(self, path, uid, gid):
        # Remote storage has no UNIX ownership
        raise fs_error(errno.EPERM, path)

    def chmod(self, path, mode):
        raise fs_error(errno.EPERM, path)

    def opendir(self, path):
        logger.debug(f"opendir({path})")
        self._list(path)
        return 0

    def readdir(self, path, fh):
        logger.debug(f"readdir({path})")
        children = self._list(path)

        entries = ['.', '..']
        for name, child in list(children.items()):
            entries.append((name, {'st_mode': child.mode()}, 0))
        return entries

    def mkdir(self, path, mode):
        path = normalize(path)
        logger.debug(f"mkdir({path})")
        parent_path, name = split_leaf(path)
        if not name:
            raise fs_error(errno.EEXIST, path)

        parent = self._resolve(parent_path)
        if not parent.is_dir():
            raise fs_error(errno.ENOTDIR, path)
        try:
            if name in parent.get_children(self.auth):
                raise fs_error(errno.EEXIST, path)
            data = self.auth.create_item(parent_path, name, "folder")
        except GraphAPIError as e:
            logger.error(f"mkdir {path} failed: {e}")
            if e.status_code == 409:
                raise fs_error(errno.EEXIST, path)
            raise fs_error(errno.EREMOTEIO, path)

        logger.info(f"Created folder {path}")
        parent.add_child(DriveItem.from_json(data))
        return 0

    def rmdir(self, path):
        logger.debug(f"rmdir({path})")
        item = self._resolve(path)
        if not item.is_dir():
            raise fs_error(errno.ENOTDIR, path)
        if item is self.root:
            raise fs_error(errno.EBUSY, path)

        try:
            if item.get_children(self.auth):
                raise fs_error(errno.ENOTEMPTY, path)
            self.auth.delete_item(item.id)
        except GraphAPIError as e:
            logger.error(f"rmdir {path} failed: {e}")
            raise fs_error(errno.EREMOTEIO, path)

        logger.info(f"Removed folder {path}")
        self._evict(item)
        return 0

    def unlink(self, path):
        logger.debug(f"unlink({path})")
        item = self._resolve_file(path)

        # A running upload may still assign the item an id
        item.mark_deleted()
        if self.root.uploader is not None:
            self.root.uploader.wait_for(item)

        if item.id:
            try:
                self.auth.delete_item(item.id)
            except GraphAPIError as e:
                logger.error(f"unlink {path} failed: {e}")
                item.mark_deleted(False)
                raise fs_error(errno.EREMOTEIO, path)
        logger.info(f"Removed file {path}")
        self._evict(item)
        return 0

    def open(self, path, flags):
        logger.debug(f"open({path}, {flags:#o})")
        item = self._resolve_file(path)

        if flags & WRITE_FLAGS and item.id:
            raise fs_error(errno.EPERM, path)

        if item.id and not item.has_changes:
            try:
                item.fetch_content(self.auth)
            except UnsavedChangesError:
                logger.debug(f"{path} changed locally, serving buffered content")
            except GraphAPIError as e:
                logger.error(f"Failed to fetch content for {path}: {e}")
                raise fs_error(errno.ENOENT, path)
        return self._next_fd()

    def create(self, path, mode, fi=None):
        path = normalize(path)
        logger.debug(f"create({path})")
        parent_path, name = split_leaf(path)
        parent = self._resolve(parent_path)
        if not parent.is_dir():
            raise fs_error(errno.ENOTDIR, path)

        try:
            children = parent.get_children(self.auth)
        except GraphAPIError as e:
            logger.error(f"create {path} failed: {e}")
            raise fs_error(errno.EREMOTEIO, path)
        if name in children:
            raise fs_error(errno.EEXIST, path)

        parent.add_child(DriveItem.new_local(name, parent))
        return self._next_fd()

    def read(self, path, size, offset, fh):
        return self._resolve_file(path).read(size, offset)

    def write(self, path, data, offset, fh):
        return self._resolve_file(path).write(data, offset)

    def truncate(self, path, length, fh=None):
        logger.debug(f"truncate({path}, {length})")
        item = self._resolve_file(path)
        if item.data is None and item.id:
            try:
                item.fetch_content(self.auth)
            except GraphAPIError as e:
                logger.error(f"Failed to fetch content for {path}: {e}")
                raise fs_error(errno.EREMOTEIO, path)
        item.truncate(length)
        if fh is None:
            # truncate(2) on a path, no close will follow
            item.flush()
        return 0

    def flush(self, path, fh):
        self._resolve(path).flush()
        return 0

    def fsync(self, path, datasync, fh):
        return self.flush(path, fh)

    def release(self, path, fh):
        return 0

    def utimens(self, path, times=None):
        item = self._resolve(path)
        item.utimens(times[1] if times else time.time())
        return 0

    def statfs(self, path):
        return dict(f_bsize=4096, f_frsize=4096, f_blocks=0, f_bfree=0, f_bavail=0, f_namemax=255)

    def destroy(self, path):
        """Called on unmount. Waits for uploads still in flight."""
        if self.root.uploader is not None:
            logger.info("Unmounting, waiting for pending uploads...")
            self.root.uploader.shutdown(wait=True)
