# osinstaller

Building blocks for preparing an operating-system image and its boot
partition: bounded and decompressing streams, digests, initramfs archives,
Ignition configs, Boot Loader Specification entries and a small ISO 9660
reader. It is a library; it has no command-line entry point.

## What is in it

`osinstaller.streams` holds helpers that wrap file-like objects:

- `copying` — `copy_n` copies at most a given number of bytes and returns how
  many it copied; `copy_exactly_n` raises `EOFError` if the input runs short.
  `BUFFER_SIZE` is the chunk size used throughout (256 KiB).
- `limit` — `LimitReader` reads up to a byte limit and raises `OSError`
  (`collision with <name> at offset <n>`) if the source still has data past
  it; `LimitWriter` raises the same error on any write beyond the limit and
  offers `write_all` and `flush`.
- `tee` — `TeeReader` copies every byte read from its source to a writer;
  `into_inner` returns both.
- `xz` — `XzStreamDecoder` decodes one xz stream from a source that offers
  `peek` (such as `io.BufferedReader`) and leaves any bytes after the stream
  unread in the source.
- `compress` — `DecompressReader` sniffs gzip or xz magic bytes and decodes
  the stream, passing other input through unchanged. Trailing data after a
  compressed stream raises `OSError`, unless the reader was built with
  `DecompressReader.for_concatenated`. `compressed()` tells whether the input
  was compressed, `read_all()` reads to the end, `into_inner()` returns the
  source.
- `hashing` — `IgnitionHash.parse` reads `sha256-<hex>` and `sha512-<hex>`
  digests, `str()` writes them back, and `validate` reads a stream and raises
  `ValueError` on a mismatch. `Sha256Digest` computes SHA-256 from a path,
  an open file or a reader; `WriteHasher` hashes everything written through
  it and returns a `Sha256Digest` from `digest()`.
- `bls` — `visit_bls_entry` passes the contents of the default BLS entry (the
  last `*.conf` in `loader/entries` by sorted name) to a function and
  rewrites the entry if the function returns new text;
  `visit_bls_entry_options` does the same for the single `options` line.
  Problems raise `BlsError`. `KargsEditor` queues `delete`, `append`,
  `append_if_missing` and `replace` (`KEY=OLD=NEW`) edits; `apply_to`
  applies them, and `maybe_apply_to` returns `None` when nothing was queued.
- `ignition` — `Ignition` builds a spec 3.3.0 config with `add_file`,
  `add_unit`, `add_ca` and `merge_config`, embedding data as gzip-compressed
  `data:` URLs, and refuses duplicate file paths or unit names with
  `ValueError`. `to_bytes` returns compact JSON and a newline.
- `initrd` — `Initrd` reads initramfs images made of concatenated newc CPIO
  archives, each uncompressed, gzip or xz, with zero padding between them;
  the last copy of a path wins. `from_reader_filtered` keeps only regular
  files matching a `GlobMatcher`. `to_bytes` writes an xz archive (CRC32
  check) with parent directories created for every file.
  `iter_newc_entries` lists the entries of an uncompressed archive.

`osinstaller.iso9660` is a minimal ISO 9660 reader. `IsoFs.from_file` parses
the volume descriptors of a seekable binary file; `get_path`, `list_dir` and
`walk` find `Directory` and `File` records (raising `NotFound` for missing
paths), `read_file` returns a reader for a file's extent and
`overwrite_file` returns a `LimitWriter` that cannot write past the file's
end. `path_components` normalises paths the way `get_path` does. Rock Ridge
and Joliet extensions are not read.

## Examples

```python
from osinstaller.streams.bls import KargsEditor

editor = KargsEditor()
editor.delete(["quiet"])
editor.append(["console=ttyS0"])
print(editor.apply_to("root=/dev/sda quiet"))
# root=/dev/sda console=ttyS0
```

```python
from osinstaller.iso9660 import IsoFs

with open("image.iso", "rb") as fh:
    iso = IsoFs.from_file(fh)
    for path, record in iso.walk():
        print(path)
```

```python
from osinstaller.streams.hashing import IgnitionHash

digest = IgnitionHash.parse(
    "sha256-ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
)
with open("config.ign", "rb") as fh:
    digest.validate(fh)  # raises ValueError if the contents differ
```

## What it does not do

- It does not check signatures: there is no GPG verification of downloaded
  or local images.
- It does not download images, partition disks or write images to block
  devices; it supplies the stream, archive and configuration pieces such a
  tool would use.
- It has no command-line program.

## Tests

```
pip install -e .[test]
pytest
```