import re

# These files will never exist remotely; the OS probes them on every mount
IGNORED_PATHS = {
    '/BDMV',
    '/.Trash',
    '/.Trash-1000',
    '/.xdg-volume-info',
    '/autorun.inf',
    '/.localized',
    '/.DS_Store',
    '/._.',
    '/.hidden',
}

LEAF_RE = re.compile(r'[^/]+$')


def ignore(path: str) -> bool:
    return path in IGNORED_PATHS


def normalize(path: str) -> str:
    if not path.startswith('/'):
        path = '/' + path
    if len(path) > 1:
        path = path.rstrip('/') or '/'
    return path


def split_leaf(path: str):
    """Splits '/a/b/c' into ('/a/b', 'c'). The root has an empty leaf."""
    path = normalize(path)
    match = LEAF_RE.search(path)
    if not match:
        return '/', ''
    parent = path[:match.start()].rstrip('/') or '/'
    return parent, match.group()
