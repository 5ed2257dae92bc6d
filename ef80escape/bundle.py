"""Pack a directory tree into a single JSON document and restore it.

File names are read as raw bytes (os.fsencode) and both names and contents
go through encode(), so trees with binary files or non-UTF-8 names survive
any JSON round trip byte-for-byte.
"""

import json
import os
import sys
import time

from tqdm import tqdm

from .transcoder import encode, decode

BUNDLE_FORMAT = 'ef80escape-bundle'
BUNDLE_VERSION = 1


def _collect_files(root: bytes):
    """Relative byte paths of all regular files under root, sorted."""
    paths = []
    for dirpath, dirs, fnames in os.walk(root):
        dirs.sort()
        for fn in fnames:
            full = os.path.join(dirpath, fn)
            if os.path.isfile(full) and not os.path.islink(full):
                paths.append(os.path.relpath(full, root))
    paths.sort()
    return paths


def pack_tree(src_dir, progress=True) -> dict:
    """Read every regular file under src_dir into a bundle document."""
    root = os.fsencode(src_dir)
    entries = []
    for relpath in tqdm(_collect_files(root), desc="Packing", disable=not progress):
        full = os.path.join(root, relpath)
        with open(full, 'rb') as f:
            data = f.read()
        entries.append({
            # Always '/'-separated so bundles move between platforms
            'path': encode(relpath.replace(os.sep.encode(), b'/')),
            'mode': os.stat(full).st_mode & 0o777,
            'data': encode(data),
        })
    return {
        'format': BUNDLE_FORMAT,
        'version': BUNDLE_VERSION,
        'files': entries,
    }


def write_bundle(src_dir, bundle_path, progress=True):
    """Pack src_dir and write the bundle to bundle_path as UTF-8 JSON."""
    print(f"Packing {src_dir}...")
    t0 = time.time()
    bundle = pack_tree(src_dir, progress=progress)
    with open(bundle_path, 'w', encoding='utf-8') as f:
        json.dump(bundle, f, ensure_ascii=False)
    size = os.path.getsize(bundle_path) / 1024
    print(f"  {len(bundle['files'])} files in {time.time() - t0:.1f}s")
    print(f"  Written to {bundle_path} ({size:.1f} KiB)")
    return bundle


def validate_bundle(bundle):
    """Raise ValueError unless bundle looks like a pack_tree() document."""
    if not isinstance(bundle, dict):
        raise ValueError(f"bundle must be a JSON object, got {type(bundle).__name__}")
    if bundle.get('format') != BUNDLE_FORMAT:
        raise ValueError(f"not an {BUNDLE_FORMAT} document "
                         f"(format={bundle.get('format')!r})")
    if bundle.get('version') != BUNDLE_VERSION:
        raise ValueError(f"unsupported bundle version {bundle.get('version')!r}")
    files = bundle.get('files')
    if not isinstance(files, list):
        raise ValueError("bundle has no 'files' list")
    for i, entry in enumerate(files):
        if not isinstance(entry, dict):
            raise ValueError(f"file entry {i} is not an object")
        for key in ('path', 'data'):
            if not isinstance(entry.get(key), str):
                raise ValueError(f"file entry {i} has no string '{key}'")
        if 'mode' in entry and not isinstance(entry['mode'], int):
            raise ValueError(f"file entry {i} has a non-integer 'mode'")


def read_bundle(bundle_path) -> dict:
    with open(bundle_path, 'r', encoding='utf-8') as f:
        try:
            bundle = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"{bundle_path}: invalid JSON: {e}") from e
    validate_bundle(bundle)
    return bundle


def safe_relpath(path: bytes) -> bytes:
    """Return path as a native relative path, refusing anything that
    could land outside the destination directory."""
    if not path:
        raise ValueError("empty path")
    if path.startswith(b'/') or os.path.isabs(path):
        raise ValueError("absolute path")
    parts = path.split(b'/')
    if any(p in (b'', b'.', b'..') for p in parts):
        raise ValueError("path has empty, '.' or '..' components")
    return os.path.join(*parts)


def unpack_bundle(bundle, dest_dir, progress=True):
    """Recreate the files of bundle under dest_dir.

    Returns (ok, fail) counts.  A bad entry is reported on stderr and
    skipped; the remaining entries are still written.
    """
    validate_bundle(bundle)
    dest = os.fsencode(dest_dir)
    os.makedirs(dest, exist_ok=True)

    print(f"Unpacking {len(bundle['files'])} files into {dest_dir}...")
    t0 = time.time()
    ok = 0
    fail = 0
    for entry in tqdm(bundle['files'], desc="Unpacking", disable=not progress):
        shown = entry['path'].encode('utf-8', errors='backslashreplace').decode('utf-8')
        try:
            raw_path = decode(entry['path'])
            shown = raw_path.decode('utf-8', errors='backslashreplace')
            out_path = os.path.join(dest, safe_relpath(raw_path))
            os.makedirs(os.path.dirname(out_path), exist_ok=True)
            data = decode(entry['data'])
            with open(out_path, 'wb') as f:
                f.write(data)
            if 'mode' in entry:
                os.chmod(out_path, entry['mode'] & 0o777)
            ok += 1
        except Exception as e:
            fail += 1
            print(f"  FAIL: {shown} - {type(e).__name__}: {e}", file=sys.stderr)

    print(f"  Unpacked {ok} files ({fail} failures) in {time.time() - t0:.1f}s")
    return ok, fail
