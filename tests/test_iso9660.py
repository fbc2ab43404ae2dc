import io
import struct

import pytest

from osinstaller.iso9660 import (
    Address,
    Directory,
    File,
    IsoError,
    IsoFs,
    NotFound,
    path_components,
)

SECTOR = 2048


def _dir_record(name: bytes, lba: int, size: int, is_dir: bool) -> bytes:
    n = len(name)
    length = 33 + n + (1 if n % 2 == 0 else 0)
    rec = bytearray(length)
    rec[0] = length
    struct.pack_into("<I", rec, 2, lba)
    struct.pack_into(">I", rec, 6, lba)
    struct.pack_into("<I", rec, 10, size)
    struct.pack_into(">I", rec, 14, size)
    rec[25] = 2 if is_dir else 0
    struct.pack_into("<H", rec, 28, 1)
    struct.pack_into(">H", rec, 30, 1)
    rec[32] = n
    rec[33:33 + n] = name
    return bytes(rec)


def _pack(records):
    out = bytearray()
    for rec in records:
        if len(out) % SECTOR + len(rec) > SECTOR:
            out.extend(bytes(-len(out) % SECTOR))
        out.extend(rec)
    out.extend(bytes(-len(out) % SECTOR))
    return bytes(out) or bytes(SECTOR)


def _descriptor(type_id: int, ident: bytes = b"CD001", version: int = 1) -> bytearray:
    sector = bytearray(SECTOR)
    sector[0] = type_id
    sector[1:6] = ident
    sector[6] = version
    return sector


def build_iso(
    tree,
    *,
    system_id="system-ID-string",
    volume_id="volume-ID-string",
    descriptors=(),
    primary=True,
    primary_ident=b"CD001",
    primary_version=1,
):
    dirs = []

    def collect(path, node):
        dirs.append((path, node))
        for name in sorted(node):
            if isinstance(node[name], dict):
                collect(path + (name,), node[name])

    collect((), tree)
    layout = {}

    def records(path, node):
        own_lba, own_size = layout.get(path, (0, 0))
        recs = [
            _dir_record(b"\x00", own_lba, own_size, True),
            _dir_record(b"\x01", own_lba, own_size, True),
        ]
        for name in sorted(node):
            lba, size = layout.get(path + (name,), (0, 0))
            recs.append(
                _dir_record(name.encode("latin-1"), lba, size, isinstance(node[name], dict))
            )
        return _pack(recs)

    lba = 16 + len(descriptors) + (1 if primary else 0) + 1
    for path, node in dirs:
        size = len(records(path, node))
        layout[path] = (lba, size)
        lba += size // SECTOR
    for path, node in dirs:
        for name in sorted(node):
            child = node[name]
            if not isinstance(child, dict):
                layout[path + (name,)] = (lba, len(child))
                lba += max(1, -(-len(child) // SECTOR))

    image = bytearray(lba * SECTOR)
    sector = 16
    for d in descriptors:
        image[sector * SECTOR:sector * SECTOR + len(d)] = d
        sector += 1
    if primary:
        pvd = _descriptor(1, primary_ident, primary_version)
        pvd[8:40] = system_id.encode("ascii").ljust(32)
        pvd[40:72] = volume_id.encode("ascii").ljust(32)
        root_lba, root_size = layout[()]
        pvd[156:190] = _dir_record(b"\x00", root_lba, root_size, True)
        image[sector * SECTOR:(sector + 1) * SECTOR] = pvd
        sector += 1
    image[sector * SECTOR:(sector + 1) * SECTOR] = _descriptor(255)

    for path, node in dirs:
        dir_lba, _ = layout[path]
        data = records(path, node)
        image[dir_lba * SECTOR:dir_lba * SECTOR + len(data)] = data
        for name in sorted(node):
            child = node[name]
            if not isinstance(child, dict):
                file_lba, _ = layout[path + (name,)]
                image[file_lba * SECTOR:file_lba * SECTOR + len(child)] = child
    return bytes(image)


TREE = {
    "CONTENT": {"DIR": {"SUBFILE.TXT;1": b"sub\n"}, "FILE.TXT;1": b"hello\n"},
    "LARGEDIR": {f"{i}.DAT;1": f"{i}\n".encode() for i in range(1, 151)},
    "NAMES": {
        "!\"%&'()*.+,-;1": b"",
        ":<=>?.;1": b"",
        "A;B;1": b"",
        "ABC.;1": b"",
        "ABC.D;1": b"",
    },
    "REALLY": {"VERY": {"DEEPLY": {"NESTED": {"FILE.TXT;1": b"foo\n"}}}},
}


def open_iso(tree=TREE, **kwargs):
    return IsoFs.from_file(io.BytesIO(build_iso(tree, **kwargs)))


def test_primary_volume_descriptor():
    iso = open_iso()
    desc = iso.descriptors[0]
    assert desc.system_id == "system-ID-string"
    assert desc.volume_id == "volume-ID-string"
    assert desc.root.name == "."
    assert iso.get_root_directory().name == "."


def test_get_path():
    iso = open_iso()
    assert iso.get_path("/").try_into_dir().name == "."
    assert iso.get_path("./CONTENT").try_into_dir().name == "CONTENT"
    with pytest.raises(IsoError, match="is a directory"):
        iso.get_path("./CONTENT").try_into_file()
    with pytest.raises(IsoError, match="is a file"):
        iso.get_path("CONTENT/FILE.TXT").try_into_dir()
    with pytest.raises(NotFound):
        iso.get_path("MISSING")
    with pytest.raises(NotFound, match="intermediate directory MISSING"):
        iso.get_path("MISSING/STUFF.TXT")
    with pytest.raises(NotFound, match="is not a directory"):
        iso.get_path("CONTENT/FILE.TXT/STUFF.TXT")


def test_get_path_returns_record_details():
    iso = open_iso()
    record = iso.get_path("CONTENT/FILE.TXT")
    assert isinstance(record, File)
    assert record.length == 6
    assert isinstance(iso.get_path("CONTENT/../REALLY/VERY"), Directory)


def test_list_dir():
    iso = open_iso()
    directory = iso.get_path("CONTENT").try_into_dir()
    names = [record.name for record in iso.list_dir(directory)]
    assert names == ["DIR", "FILE.TXT"]


def test_read_file():
    iso = open_iso()
    file = iso.get_path("REALLY/VERY/DEEPLY/NESTED/FILE.TXT").try_into_file()
    assert iso.read_file(file).read() == b"foo\n"


def test_read_file_in_pieces():
    iso = open_iso()
    file = iso.get_path("CONTENT/FILE.TXT").try_into_file()
    reader = iso.read_file(file)
    assert reader.read(2) == b"he"
    assert reader.read(100) == b"llo\n"
    assert reader.read(1) == b""


def test_walk():
    expected = [
        "CONTENT",
        "CONTENT/DIR",
        "CONTENT/DIR/SUBFILE.TXT",
        "CONTENT/FILE.TXT",
        "LARGEDIR",
        "NAMES",
        "NAMES/!\"%&'()*.+,-",
        "NAMES/:<=>?",
        "NAMES/A.B",
        "NAMES/ABC",
        "NAMES/ABC.D",
        "REALLY",
        "REALLY/VERY",
        "REALLY/VERY/DEEPLY",
        "REALLY/VERY/DEEPLY/NESTED",
        "REALLY/VERY/DEEPLY/NESTED/FILE.TXT",
    ]
    expected += [f"LARGEDIR/{i}.DAT" for i in range(1, 151)]
    expected.sort()
    iso = open_iso()
    names = [path for path, _ in iso.walk()]
    assert names == expected


def test_walk_record_types():
    iso = open_iso()
    kinds = {path: type(record) for path, record in iso.walk()}
    assert kinds["REALLY/VERY"] is Directory
    assert kinds["LARGEDIR/150.DAT"] is File


def test_large_directory_spans_sectors():
    iso = open_iso()
    directory = iso.get_path("LARGEDIR").try_into_dir()
    assert directory.length > SECTOR
    record = iso.get_path("LARGEDIR/150.DAT").try_into_file()
    assert iso.read_file(record).read() == b"150\n"


def test_path_components():
    assert path_components("z") == ["z"]
    assert path_components("/a/./../b") == ["b"]
    assert path_components("./a/../../b") == ["b"]
    assert path_components("/") == []
    assert path_components("") == []


def test_overwrite_file():
    iso = open_iso()
    file = iso.get_path("CONTENT/FILE.TXT").try_into_file()
    writer = iso.overwrite_file(file)
    writer.write_all(b"HELLO\n")
    assert iso.read_file(file).read() == b"HELLO\n"


def test_overwrite_file_past_end():
    iso = open_iso()
    file = iso.get_path("REALLY/VERY/DEEPLY/NESTED/FILE.TXT").try_into_file()
    writer = iso.overwrite_file(file)
    with pytest.raises(OSError, match="collision with end of file FILE.TXT at offset 4"):
        writer.write_all(b"12345")


def test_as_file_rewinds():
    iso = open_iso()
    iso.get_path("CONTENT/FILE.TXT")
    f = iso.as_file()
    assert f.tell() == 0
    assert len(f.read()) % SECTOR == 0


def test_address():
    address = Address(3)
    assert address.as_offset() == 3 * SECTOR
    assert address.as_sector() == 3


def test_other_descriptors():
    boot = _descriptor(0)
    boot[7:39] = b"EL TORITO SPECIFICATION".ljust(32, b"\0")
    boot[39:71] = b"BOOT".ljust(32)
    unknown = _descriptor(7)
    supplementary = _descriptor(2)
    iso = open_iso(descriptors=[boot, unknown, supplementary])
    assert len(iso.descriptors) == 4
    assert iso.descriptors[0].boot_system_id == "EL TORITO SPECIFICATION"
    assert iso.descriptors[0].boot_id == "BOOT"
    assert iso.descriptors[1].type_id == 7
    assert iso.get_path("CONTENT").name == "CONTENT"


def test_missing_primary_descriptor():
    iso = open_iso(primary=False)
    with pytest.raises(IsoError, match="no primary volume descriptor"):
        iso.get_root_directory()


def test_bad_descriptor_id():
    data = build_iso(TREE, primary_ident=b"CD002")
    with pytest.raises(IsoError, match="unknown descriptor ID"):
        IsoFs.from_file(io.BytesIO(data))


def test_bad_descriptor_version():
    data = build_iso(TREE, primary_version=2)
    with pytest.raises(IsoError, match="unknown descriptor version: 2"):
        IsoFs.from_file(io.BytesIO(data))


def test_truncated_image():
    data = build_iso(TREE)[: 16 * SECTOR + 100]
    with pytest.raises(IsoError, match="reading volume descriptor"):
        IsoFs.from_file(io.BytesIO(data))


def test_invalid_record_name():
    iso = open_iso({"BAD": {"bad$;1": b"x"}})
    directory = iso.get_path("BAD").try_into_dir()
    with pytest.raises(IsoError, match="invalid string name"):
        list(iso.list_dir(directory))