import logging

from drivefs.graph_client.errors import NotFoundError
from drivefs.objects.item import DriveItem

logger = logging.getLogger(__name__)


def get_item(path: str, root: DriveItem) -> DriveItem:
    """
    Resolves an absolute path to an item, listing each directory on the way
    the first time it is traversed.
    """
    if path in ("", "/"):
        return root

    item = root
    for segment in path.strip('/').split('/'):
        if not segment:
            continue
        children = item.get_children(root.auth)
        if children is None or segment not in children:
            raise NotFoundError(f"{path} not found", None)
        item = children[segment]
    return item


def get_children(path: str, root: DriveItem):
    item = get_item(path, root)
    if not item.is_dir():
        raise NotADirectoryError(path)
    return item.get_children(root.auth)
