"""
Unit tests for the core crypto module.

Tests:
- MD5 key-confirmation tag
- Tag verification
- Per-chunk AES-CTR with IV reset
"""

import hashlib
import io
import os
import tempfile

import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from xcrypt.core_crypto.key_verifier import (
    KeyVerifier, compute_tag, read_tag, TAG_SIZE,
)
from xcrypt.core_crypto.chunked_cipher import (
    AES_BLOCK_SIZE, XCRYPT_AES_IV, TRANSFER_UNIT,
    ChunkedCipher, CipherContext, Direction, transform_chunk,
)
from xcrypt.errors import CipherError, KeyMismatchError


KEY = b"thisisasecretkey12345"


class TestComputeTag:
    """Tests for the key-confirmation tag."""

    def test_tag_size(self):
        """Tag should be 16 bytes."""
        assert len(compute_tag(KEY)) == TAG_SIZE == 16

    def test_tag_is_md5_of_key(self):
        """Tag is the unsalted MD5 of the full key."""
        assert compute_tag(KEY) == hashlib.md5(KEY).digest()

    def test_deterministic(self):
        """Same key should give same tag."""
        assert compute_tag(KEY) == compute_tag(bytes(KEY))

    def test_whole_key_is_digested(self):
        """Keys sharing the first 16 bytes still get different tags."""
        assert compute_tag(b"0123456789abcdefXX") != compute_tag(b"0123456789abcdefYY")


class TestKeyVerifier:
    """Tests for tag verification."""

    def test_verify_correct_tag(self):
        """Matching preamble should verify silently."""
        verifier = KeyVerifier(KEY)
        verifier.verify(compute_tag(KEY))
        assert verifier.matches(verifier.tag)

    def test_wrong_key_rejected(self):
        """Tag of another key should be rejected."""
        verifier = KeyVerifier(KEY)
        with pytest.raises(KeyMismatchError):
            verifier.verify(compute_tag(b"differentkeydifferentkey"))

    def test_short_preamble_rejected(self):
        """Truncated preamble should be a mismatch, not an IndexError."""
        verifier = KeyVerifier(KEY)
        with pytest.raises(KeyMismatchError):
            verifier.verify(verifier.tag[:10])
        assert not verifier.matches(b"")

    def test_read_tag(self):
        """read_tag should return the first 16 bytes of a file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "file.enc")
            with open(path, "wb") as f:
                f.write(compute_tag(KEY) + b"payload")
            assert read_tag(path) == compute_tag(KEY)


class TestTransformChunk:
    """Tests for per-chunk AES-CTR."""

    def test_length_preserved(self):
        """Stream cipher output has the input length."""
        context = CipherContext(KEY)
        for size in (0, 1, 15, 16, 17, 4095, 4096):
            assert len(transform_chunk(context, os.urandom(size))) == size

    def test_encrypt_decrypt_inverse(self):
        """Decrypting an encrypted chunk restores it."""
        data = os.urandom(3000)
        enc = transform_chunk(CipherContext(KEY, direction=Direction.ENCRYPT), data)
        dec = transform_chunk(CipherContext(KEY, direction=Direction.DECRYPT), enc)
        assert enc != data
        assert dec == data

    def test_matches_reference_ctr(self):
        """Output equals AES-128-CTR with the constant IV and key[:16]."""
        data = b"A" * 100
        encryptor = Cipher(
            algorithms.AES(KEY[:AES_BLOCK_SIZE]), modes.CTR(XCRYPT_AES_IV)
        ).encryptor()
        expected = encryptor.update(data) + encryptor.finalize()
        assert transform_chunk(CipherContext(KEY), data) == expected

    def test_iv_reset_every_chunk(self):
        """Identical chunks encrypt identically because the IV restarts."""
        context = CipherContext(KEY)
        chunk = b"same plaintext chunk"
        assert transform_chunk(context, chunk) == transform_chunk(context, chunk)

    def test_only_first_block_of_key_used(self):
        """Keys that share the first 16 bytes produce the same ciphertext."""
        data = b"payload"
        a = transform_chunk(CipherContext(b"0123456789abcdefXX"), data)
        b = transform_chunk(CipherContext(b"0123456789abcdefYY"), data)
        assert a == b

    def test_short_key_is_cipher_error(self):
        """AES rejects a 10-byte key; that surfaces as CipherError."""
        with pytest.raises(CipherError):
            transform_chunk(CipherContext(b"shortkey10"), b"data")

    def test_bad_iv_is_cipher_error(self):
        """A wrong-size IV is a primitive failure."""
        with pytest.raises(CipherError):
            transform_chunk(CipherContext(KEY, initialization_vector=b"short"), b"data")


class TestChunkedCipher:
    """Tests for the ChunkedCipher wrapper."""

    def test_counts_chunks(self):
        cipher = ChunkedCipher(CipherContext(KEY))
        cipher.transform(b"a")
        cipher.transform(b"b")
        assert cipher.chunks == 2

    def test_transform_stream(self):
        """Streaming splits input into transfer units."""
        data = os.urandom(TRANSFER_UNIT * 2 + 10)
        cipher = ChunkedCipher(CipherContext(KEY))
        chunks = list(cipher.transform_stream(io.BytesIO(data)))
        assert [len(c) for c in chunks] == [TRANSFER_UNIT, TRANSFER_UNIT, 10]

        back = ChunkedCipher(CipherContext(KEY, direction=Direction.DECRYPT))
        restored = b"".join(back.transform_stream(io.BytesIO(b"".join(chunks))))
        assert restored == data

    def test_direction_values(self):
        """Wire values of the direction flag."""
        assert Direction(0) is Direction.DECRYPT
        assert Direction(1) is Direction.ENCRYPT
        assert Direction.ENCRYPT.verb == "encrypt"
