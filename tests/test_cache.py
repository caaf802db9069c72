import json
import os
import pytest

from qqcleaner.database.cache import MANIFEST_SUFFIX, DecryptedCache, clean_path_for, key_fingerprint
from qqcleaner.exceptions import BadKeyError


class CountingDecryptor:
    """Stands in for the cipher: returns a fixed plaintext and counts calls."""

    def __init__(self, plaintext: bytes):
        self.plaintext = plaintext
        self.calls = []

    def __call__(self, encrypted: bytes, key: str) -> bytes:
        self.calls.append(key)
        return self.plaintext


@pytest.fixture
def encrypted_source(tmp_path):
    src = tmp_path / "files_in_chat.db"
    src.write_bytes(b"\x00" * 1024 + b"\xaa" * 4096)
    return src


def test_clean_path_for(tmp_path):
    src = tmp_path / "files_in_chat.db"
    assert clean_path_for(src) == tmp_path / "files_in_chat.clean.db"
    assert clean_path_for(src, tmp_path / "cache") == tmp_path / "cache" / "files_in_chat.clean.db"


def test_first_load_decrypts_and_writes_cache(encrypted_source, sample_dbs):
    decrypt = CountingDecryptor(sample_dbs[0])

    data = DecryptedCache().load(encrypted_source, "secret", decrypt)

    assert data == sample_dbs[0]
    assert decrypt.calls == ["secret"]

    clean = clean_path_for(encrypted_source)
    assert clean.read_bytes() == sample_dbs[0]
    manifest = json.loads(clean.with_name(clean.name + MANIFEST_SUFFIX).read_text(encoding="utf-8"))
    assert manifest["key_sha256"] == key_fingerprint("secret")
    assert manifest["source"] == "files_in_chat.db"


def test_cache_hit_skips_decryption(encrypted_source, sample_dbs):
    decrypt = CountingDecryptor(sample_dbs[0])
    cache = DecryptedCache()

    cache.load(encrypted_source, "secret", decrypt)
    again = cache.load(encrypted_source, "secret", decrypt)

    assert again == sample_dbs[0]
    assert len(decrypt.calls) == 1


def test_changed_key_or_source_invalidates_cache(encrypted_source, sample_dbs):
    decrypt = CountingDecryptor(sample_dbs[0])
    cache = DecryptedCache()

    cache.load(encrypted_source, "secret", decrypt)
    cache.load(encrypted_source, "other", decrypt)
    assert len(decrypt.calls) == 2

    encrypted_source.write_bytes(b"\x00" * 1024 + b"\xbb" * 8192)
    st = encrypted_source.stat()
    os.utime(encrypted_source, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))
    cache.load(encrypted_source, "other", decrypt)
    assert len(decrypt.calls) == 3


def test_unreadable_manifest_forces_decrypt(encrypted_source, sample_dbs):
    decrypt = CountingDecryptor(sample_dbs[0])
    cache = DecryptedCache()
    cache.load(encrypted_source, "secret", decrypt)

    clean = clean_path_for(encrypted_source)
    clean.with_name(clean.name + MANIFEST_SUFFIX).write_text("{not json", encoding="utf-8")

    cache.load(encrypted_source, "secret", decrypt)
    assert len(decrypt.calls) == 2


def test_plaintext_source_passes_through(tmp_path, sample_dbs):
    src = tmp_path / "files_in_chat.db"
    src.write_bytes(sample_dbs[0])
    decrypt = CountingDecryptor(b"")

    assert DecryptedCache().load(src, None, decrypt) == sample_dbs[0]
    assert decrypt.calls == []
    assert not clean_path_for(src).exists()


def test_clean_copy_used_when_source_missing(tmp_path, sample_dbs):
    src = tmp_path / "files_in_chat.db"
    clean_path_for(src).write_bytes(sample_dbs[0])

    assert DecryptedCache().load(src, None, CountingDecryptor(b"")) == sample_dbs[0]


def test_nothing_to_load(tmp_path):
    with pytest.raises(FileNotFoundError):
        DecryptedCache().load(tmp_path / "files_in_chat.db", "k", CountingDecryptor(b""))


def test_encrypted_source_without_key(encrypted_source):
    with pytest.raises(BadKeyError):
        DecryptedCache().load(encrypted_source, None, CountingDecryptor(b""))


def test_decrypt_errors_propagate(encrypted_source):
    def reject(encrypted, key):
        raise BadKeyError("nope")

    with pytest.raises(BadKeyError):
        DecryptedCache().load(encrypted_source, "wrong", reject)
    assert not clean_path_for(encrypted_source).exists()
