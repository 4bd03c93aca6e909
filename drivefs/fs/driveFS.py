import logging
import os
from fuse import FUSE, Operations

from drivefs.fs.operations import DriveOperations
from drivefs.objects.item import DriveItem

logger = logging.getLogger(__name__)


class DriveFS(DriveOperations, Operations):
    """
    A memory-backed FUSE filesystem for a OneDrive account.
    """


def mount_daemon(root: DriveItem, mount_point: str):
    if not os.path.exists(mount_point):
        os.makedirs(mount_point)
    logger.info(f"Starting FUSE at {mount_point}")
    FUSE(DriveFS(root), mount_point, foreground=True, nothreads=False)
