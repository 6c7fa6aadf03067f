"""
Content digests of files and build context trees.
"""
import fnmatch
import hashlib
import os
import posixpath
from typing import Iterable, List

CHUNK_SIZE = 1024 * 64


def digest_bytes(*parts: str) -> str:
    """
    Hashes a sequence of strings; separators keep ('ab', 'c') and ('a', 'bc') apart.
    """
    h = hashlib.sha256()
    for part in parts:
        h.update(part.encode('utf-8'))
        h.update(b'\x00')
    return f"sha256:{h.hexdigest()}"


def digest_file(path: str) -> str:
    """
    Returns the sha256 digest of a file's contents. A symlink is digested by
    its target, as the container tool copies the link itself.
    """
    if os.path.islink(path):
        return digest_bytes("symlink", os.readlink(path))
    h = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            h.update(chunk)
    return f"sha256:{h.hexdigest()}"


def load_ignore_patterns(context_dir: str) -> List[str]:
    """
    Reads .dockerignore patterns from the build context, if present.
    """
    path = os.path.join(context_dir, ".dockerignore")
    if not os.path.isfile(path):
        return []
    patterns = []
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#'):
                patterns.append(line.rstrip('/'))
    return patterns


def _match_segments(pattern: List[str], path: List[str]) -> bool:
    # '*' stays inside one path segment; only '**' spans directories
    if not pattern:
        return not path
    head = pattern[0]
    if head == '**':
        return any(_match_segments(pattern[1:], path[i:]) for i in range(len(path) + 1))
    if not path:
        return False
    return fnmatch.fnmatchcase(path[0], head) and _match_segments(pattern[1:], path[1:])


def is_ignored(rel_path: str, patterns: Iterable[str]) -> bool:
    """
    Applies .dockerignore patterns in order; a later '!' pattern re-includes.
    Patterns are anchored at the context root. A pattern matching a directory
    also ignores everything under it.
    """
    parts = posixpath.normpath(rel_path.replace(os.sep, '/')).split('/')
    ignored = False
    for pattern in patterns:
        negate = pattern.startswith('!')
        if negate:
            pattern = pattern[1:]
        pattern = posixpath.normpath(pattern.strip().lstrip('/'))
        segments = pattern.split('/')
        hit = any(_match_segments(segments, parts[:depth]) for depth in range(1, len(parts) + 1))
        if hit:
            ignored = not negate
    return ignored


def list_context_files(context_dir: str, exclude: Iterable[str] = ()) -> List[str]:
    """
    Lists the files the container tool would send with the build context,
    as sorted paths relative to the context directory. Symlinks are listed
    as entries of their own and never followed.

    :param context_dir: The build context directory.
    :param exclude: Context-relative directories to leave out, such as the
        builder's own output directory.
    """
    patterns = load_ignore_patterns(context_dir)
    skipped = [e.replace(os.sep, '/').rstrip('/') + '/' for e in exclude]
    files = []
    for root, dirs, names in os.walk(context_dir):
        dirs.sort()
        links = [d for d in dirs if os.path.islink(os.path.join(root, d))]
        for name in names + links:
            full = os.path.join(root, name)
            rel = os.path.relpath(full, context_dir).replace(os.sep, '/')
            if any(rel.startswith(prefix) for prefix in skipped):
                continue
            if not is_ignored(rel, patterns):
                files.append(rel)
    return sorted(files)


def digest_tree(context_dir: str, files: Iterable[str] = None) -> str:
    """
    Digest of the given context files (default: the whole context).
    Both names and contents take part, so renames change the digest.
    """
    if files is None:
        files = list_context_files(context_dir)
    h = hashlib.sha256()
    for rel in sorted(files):
        h.update(rel.encode('utf-8'))
        h.update(b'\x00')
        h.update(digest_file(os.path.join(context_dir, rel)).encode('ascii'))
        h.update(b'\n')
    return f"sha256:{h.hexdigest()}"
