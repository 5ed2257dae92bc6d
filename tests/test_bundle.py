import json
import os
import sys

import pytest

from ef80escape.bundle import (
    BUNDLE_FORMAT, BUNDLE_VERSION, pack_tree, write_bundle, read_bundle,
    unpack_bundle, safe_relpath,
)
from ef80escape.transcoder import encode


def make_tree(root):
    (root / 'sub').mkdir()
    (root / 'a.txt').write_bytes(b'hello\n')
    (root / 'sub' / 'bin.dat').write_bytes(bytes(range(256)))
    (root / 'sub' / 'pua.txt').write_bytes('\uef00\uefff'.encode('utf-8'))
    (root / 'empty').write_bytes(b'')


def read_tree(root):
    files = {}
    root = os.fsencode(root)
    for dirpath, _dirs, fnames in os.walk(root):
        for fn in fnames:
            full = os.path.join(dirpath, fn)
            with open(full, 'rb') as f:
                files[os.path.relpath(full, root)] = f.read()
    return files


def test_pack_tree(tmp_path):
    make_tree(tmp_path)
    bundle = pack_tree(tmp_path, progress=False)
    assert bundle['format'] == BUNDLE_FORMAT
    assert bundle['version'] == BUNDLE_VERSION
    paths = [entry['path'] for entry in bundle['files']]
    assert paths == ['a.txt', 'empty', 'sub/bin.dat', 'sub/pua.txt']
    by_path = {entry['path']: entry for entry in bundle['files']}
    assert by_path['sub/bin.dat']['data'] == encode(bytes(range(256)))
    assert by_path['sub/pua.txt']['data'] == '\uef00\uef00\uef00\uefff'


def test_round_trip_through_json(tmp_path):
    src = tmp_path / 'src'
    src.mkdir()
    make_tree(src)
    bundle_path = tmp_path / 'tree.json'
    write_bundle(src, bundle_path, progress=False)

    # Strictly valid UTF-8 JSON on disk
    json.loads(bundle_path.read_bytes().decode('utf-8'))

    dest = tmp_path / 'dest'
    ok, fail = unpack_bundle(read_bundle(bundle_path), dest, progress=False)
    assert (ok, fail) == (4, 0)
    assert read_tree(dest) == read_tree(src)


@pytest.mark.skipif(sys.platform != 'linux', reason='needs arbitrary byte file names')
def test_non_utf8_file_names(tmp_path):
    src = os.fsencode(tmp_path / 'src')
    os.makedirs(src)
    with open(os.path.join(src, b'caf\xe9.bin'), 'wb') as f:
        f.write(b'\x00\xff')

    bundle = pack_tree(src, progress=False)
    assert bundle['files'][0]['path'] == 'caf\uefe9.bin'

    dest = tmp_path / 'dest'
    unpack_bundle(json.loads(json.dumps(bundle)), dest, progress=False)
    assert os.listdir(os.fsencode(dest)) == [b'caf\xe9.bin']


@pytest.mark.skipif(sys.platform == 'win32', reason='POSIX permission bits')
def test_mode_is_restored(tmp_path):
    src = tmp_path / 'src'
    src.mkdir()
    script = src / 'run.sh'
    script.write_bytes(b'#!/bin/sh\n')
    os.chmod(script, 0o750)

    dest = tmp_path / 'dest'
    unpack_bundle(pack_tree(src, progress=False), dest, progress=False)
    assert os.stat(dest / 'run.sh').st_mode & 0o777 == 0o750


def test_unsafe_entries_are_skipped(tmp_path, capsys):
    bundle = {
        'format': BUNDLE_FORMAT,
        'version': BUNDLE_VERSION,
        'files': [
            {'path': '../evil', 'data': 'x'},
            {'path': '/etc/evil', 'data': 'x'},
            {'path': 'good.txt', 'data': 'fine'},
        ],
    }
    dest = tmp_path / 'dest'
    ok, fail = unpack_bundle(bundle, dest, progress=False)
    assert (ok, fail) == (1, 2)
    assert (dest / 'good.txt').read_bytes() == b'fine'
    assert not (tmp_path / 'evil').exists()
    err = capsys.readouterr().err
    assert 'FAIL: ../evil - ValueError' in err
    assert 'FAIL: /etc/evil - ValueError' in err


def test_safe_relpath():
    assert safe_relpath(b'a/b/c') == os.path.join(b'a', b'b', b'c')
    for bad in (b'', b'/abs', b'a/../b', b'a//b', b'./a', b'a/'):
        with pytest.raises(ValueError):
            safe_relpath(bad)


def test_read_bundle_rejects_bad_documents(tmp_path):
    path = tmp_path / 'bad.json'
    path.write_text('{not json', encoding='utf-8')
    with pytest.raises(ValueError, match='invalid JSON'):
        read_bundle(path)

    path.write_text(json.dumps({'format': 'zip', 'version': 1, 'files': []}),
                    encoding='utf-8')
    with pytest.raises(ValueError, match='format'):
        read_bundle(path)

    path.write_text(json.dumps({'format': BUNDLE_FORMAT, 'version': 99,
                                'files': []}), encoding='utf-8')
    with pytest.raises(ValueError, match='version'):
        read_bundle(path)

    path.write_text(json.dumps({'format': BUNDLE_FORMAT, 'version': 1,
                                'files': [{'path': 'a'}]}), encoding='utf-8')
    with pytest.raises(ValueError, match="'data'"):
        read_bundle(path)


def test_lone_surrogates_are_failures(tmp_path, capsys):
    bundle = json.loads(
        '{"format": "%s", "version": 1, "files": ['
        '{"path": "bad\\udc80", "data": ""}, {"path": "bad.bin", "data": "x\\udc80"}, '
        '{"path": "ok", "data": ""}]}'
        % BUNDLE_FORMAT)
    dest = tmp_path / 'dest'
    ok, fail = unpack_bundle(bundle, dest, progress=False)
    assert (ok, fail) == (1, 2)
    # A file whose contents fail to decode is not created at all
    assert not (dest / 'bad.bin').exists()
    assert (dest / 'ok').read_bytes() == b''
    err = capsys.readouterr().err
    assert 'FAIL: bad.bin - UnicodeEncodeError' in err
    assert err.count('UnicodeEncodeError') == 2
