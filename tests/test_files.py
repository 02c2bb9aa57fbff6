"""
Unit tests for the file transform module.

Tests:
- Atomic commit / rollback of staging files
- Encrypt/decrypt round trip and on-disk format
- Pipeline state machine and resource bookkeeping
"""

import hashlib
import os
import stat
import tempfile

import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from xcrypt.core_crypto.chunked_cipher import XCRYPT_AES_IV, TRANSFER_UNIT, Direction
from xcrypt.core_crypto.key_verifier import compute_tag
from xcrypt.errors import SelfTransformError
from xcrypt.files.atomic_commit import AtomicFileCommit, ArtifactState
from xcrypt.files.pipeline import (
    PipelineState, TransformPipeline, TransformRequest,
    decrypt_file, encrypt_file, transform_file,
)
from xcrypt.files.storage import STAGING_SUFFIX


KEY = b"thisisasecretkey12345"


def staging_files(directory):
    return [name for name in os.listdir(directory) if name.endswith(STAGING_SUFFIX)]


def write_file(path, data):
    with open(path, "wb") as f:
        f.write(data)


def read_file(path):
    with open(path, "rb") as f:
        return f.read()


def reference_encrypt(data, key, unit=TRANSFER_UNIT):
    """Key tag followed by AES-128-CTR restarted at every chunk."""
    out = hashlib.md5(key).digest()
    for start in range(0, len(data), unit):
        encryptor = Cipher(algorithms.AES(key[:16]), modes.CTR(XCRYPT_AES_IV)).encryptor()
        out += encryptor.update(data[start:start + unit]) + encryptor.finalize()
    return out


class TestAtomicFileCommit:
    """Tests for stage-then-rename."""

    def test_commit_installs_staged_bytes(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            dest = os.path.join(tmpdir, "out.bin")
            committer = AtomicFileCommit()
            artifact = committer.begin(dest)
            committer.append(artifact, b"hello ")
            committer.append(artifact, b"world")

            assert not os.path.exists(dest)
            assert os.path.dirname(artifact.path) == os.path.realpath(tmpdir)

            committer.commit(artifact, dest)
            assert read_file(dest) == b"hello world"
            assert not os.path.exists(artifact.path)
            assert artifact.state is ArtifactState.COMMITTED
            assert artifact.bytes_written == 11

    def test_rollback_removes_staging(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            dest = os.path.join(tmpdir, "out.bin")
            committer = AtomicFileCommit()
            artifact = committer.begin(dest)
            committer.append(artifact, b"partial")
            committer.rollback(artifact)

            assert not os.path.exists(artifact.path)
            assert not os.path.exists(dest)
            assert staging_files(tmpdir) == []

    def test_rollback_idempotent(self):
        """Rollback twice, or with nothing written, is harmless."""
        with tempfile.TemporaryDirectory() as tmpdir:
            committer = AtomicFileCommit()
            artifact = committer.begin(os.path.join(tmpdir, "out.bin"))
            committer.rollback(artifact)
            committer.rollback(artifact)
            committer.rollback()
            assert artifact.state is ArtifactState.ROLLED_BACK

    def test_rollback_after_commit_keeps_destination(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            dest = os.path.join(tmpdir, "out.bin")
            committer = AtomicFileCommit()
            artifact = committer.begin(dest)
            committer.append(artifact, b"data")
            committer.commit(artifact, dest)
            committer.rollback(artifact)
            assert read_file(dest) == b"data"

    def test_context_manager_rolls_back(self):
        """Leaving the block without commit discards the staging file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            dest = os.path.join(tmpdir, "out.bin")
            write_file(dest, b"original")
            with AtomicFileCommit() as committer:
                artifact = committer.begin(dest)
                committer.append(artifact, b"replacement")
            assert read_file(dest) == b"original"
            assert staging_files(tmpdir) == []

    def test_commit_replaces_existing_destination(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            dest = os.path.join(tmpdir, "out.bin")
            write_file(dest, b"old content that is longer")
            committer = AtomicFileCommit()
            artifact = committer.begin(dest)
            committer.append(artifact, b"new")
            committer.commit(artifact, dest)
            assert read_file(dest) == b"new"

    def test_commit_through_symlink_replaces_target(self):
        """A symlinked destination keeps the link; its target gets the bytes."""
        with tempfile.TemporaryDirectory() as tmpdir:
            real_dir = os.path.join(tmpdir, "real")
            os.mkdir(real_dir)
            target = os.path.join(real_dir, "out.bin")
            write_file(target, b"old")
            link = os.path.join(tmpdir, "link.bin")
            os.symlink(target, link)

            committer = AtomicFileCommit()
            artifact = committer.begin(link)
            assert os.path.dirname(artifact.path) == os.path.realpath(real_dir)
            committer.append(artifact, b"new")
            committer.commit(artifact, link)

            assert os.path.islink(link)
            assert read_file(target) == b"new"
            assert staging_files(real_dir) == []

    def test_commit_onto_itself_refused(self):
        """Staging and destination resolving to one file is refused."""
        with tempfile.TemporaryDirectory() as tmpdir:
            committer = AtomicFileCommit()
            artifact = committer.begin(os.path.join(tmpdir, "out.bin"))
            with pytest.raises(SelfTransformError):
                committer.commit(artifact, artifact.path)
            committer.rollback(artifact)
            assert staging_files(tmpdir) == []

    def test_staging_mode(self):
        """Staging file takes the requested permission bits."""
        with tempfile.TemporaryDirectory() as tmpdir:
            committer = AtomicFileCommit()
            artifact = committer.begin(os.path.join(tmpdir, "out.bin"), mode=0o640)
            assert stat.S_IMODE(os.stat(artifact.path).st_mode) == 0o640
            committer.rollback(artifact)

    def test_append_after_commit_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            dest = os.path.join(tmpdir, "out.bin")
            committer = AtomicFileCommit()
            artifact = committer.begin(dest)
            committer.commit(artifact, dest)
            with pytest.raises(RuntimeError):
                committer.append(artifact, b"late")


class TestRoundTrip:
    """Encrypt/decrypt through the full pipeline."""

    @pytest.mark.parametrize("size", [0, 1, 15, 16, 4095, 4096, 4097, 8192, 10000, 70000])
    def test_round_trip_sizes(self, size):
        """decrypt(encrypt(M, K), K) == M across chunk boundaries."""
        data = os.urandom(size)
        with tempfile.TemporaryDirectory() as tmpdir:
            src = os.path.join(tmpdir, "plain")
            enc = os.path.join(tmpdir, "plain.enc")
            dec = os.path.join(tmpdir, "plain.dec")
            write_file(src, data)

            encrypt_file(src, enc, KEY)
            decrypt_file(enc, dec, KEY)

            assert os.path.getsize(enc) == size + 16
            assert read_file(dec) == data
            assert staging_files(tmpdir) == []

    def test_concrete_scenario(self):
        """10,000 bytes encrypt to 10,016 bytes starting with the key tag."""
        data = os.urandom(10000)
        with tempfile.TemporaryDirectory() as tmpdir:
            src = os.path.join(tmpdir, "input.bin")
            enc = os.path.join(tmpdir, "input.enc")
            dec = os.path.join(tmpdir, "output.bin")
            write_file(src, data)

            outcome = encrypt_file(src, enc, "thisisasecretkey12345")
            encrypted = read_file(enc)
            assert len(encrypted) == 10016
            assert encrypted[:16] == compute_tag(b"thisisasecretkey12345")
            assert outcome.bytes_read == 10000
            assert outcome.bytes_written == 10016
            assert outcome.chunks == 3

            outcome = decrypt_file(enc, dec, "thisisasecretkey12345")
            assert read_file(dec) == data
            assert outcome.bytes_read == 10016
            assert outcome.bytes_written == 10000

    def test_file_format_compatible(self):
        """Output equals tag + AES-CTR restarted at every 4096-byte chunk."""
        data = bytes(range(256)) * 50
        with tempfile.TemporaryDirectory() as tmpdir:
            src = os.path.join(tmpdir, "in")
            enc = os.path.join(tmpdir, "out")
            write_file(src, data)
            encrypt_file(src, enc, KEY)
            assert read_file(enc) == reference_encrypt(data, KEY)

    def test_decrypt_reference_file(self):
        """Files written by the reference construction decrypt."""
        data = b"legacy payload " * 1000
        with tempfile.TemporaryDirectory() as tmpdir:
            enc = os.path.join(tmpdir, "legacy.enc")
            dec = os.path.join(tmpdir, "legacy")
            write_file(enc, reference_encrypt(data, KEY))
            decrypt_file(enc, dec, KEY)
            assert read_file(dec) == data

    def test_custom_transfer_unit(self):
        """A different transfer unit still round-trips with itself."""
        data = os.urandom(5000)
        with tempfile.TemporaryDirectory() as tmpdir:
            src = os.path.join(tmpdir, "in")
            enc = os.path.join(tmpdir, "enc")
            dec = os.path.join(tmpdir, "dec")
            write_file(src, data)
            outcome = encrypt_file(src, enc, KEY, transfer_unit=512)
            assert outcome.chunks == 10
            decrypt_file(enc, dec, KEY, transfer_unit=512)
            assert read_file(dec) == data
            assert read_file(enc) == reference_encrypt(data, KEY, unit=512)

    def test_overwrites_existing_destination(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            src = os.path.join(tmpdir, "in")
            enc = os.path.join(tmpdir, "enc")
            write_file(src, b"fresh")
            write_file(enc, b"stale" * 1000)
            encrypt_file(src, enc, KEY)
            assert os.path.getsize(enc) == 16 + 5

    def test_permissions_follow_source(self):
        """Output takes the source file's permission bits."""
        with tempfile.TemporaryDirectory() as tmpdir:
            src = os.path.join(tmpdir, "in")
            enc = os.path.join(tmpdir, "enc")
            write_file(src, b"data")
            os.chmod(src, 0o640)
            encrypt_file(src, enc, KEY)
            assert stat.S_IMODE(os.stat(enc).st_mode) == 0o640

    def test_transform_file_direction(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            src = os.path.join(tmpdir, "in")
            enc = os.path.join(tmpdir, "enc")
            write_file(src, b"data")
            outcome = transform_file(src, enc, KEY, Direction.ENCRYPT)
            assert outcome.direction is Direction.ENCRYPT
            assert outcome.source_path == src
            assert outcome.dest_path == enc


class TestPipelineStateMachine:
    """Tests for states, single use and resource bookkeeping."""

    def make_request(self, tmpdir, direction=Direction.ENCRYPT, data=b"payload"):
        src = os.path.join(tmpdir, "in")
        write_file(src, data)
        return TransformRequest(
            source_path=src,
            dest_path=os.path.join(tmpdir, "out"),
            key_bytes=KEY,
            direction=direction,
        )

    def test_success_history(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            pipeline = TransformPipeline(self.make_request(tmpdir))
            assert pipeline.state is PipelineState.IDLE
            pipeline.run()
            assert pipeline.state is PipelineState.DONE
            assert pipeline.history == [
                PipelineState.IDLE,
                PipelineState.VALIDATING,
                PipelineState.PREPARING_KEY_TAG,
                PipelineState.STREAMING,
                PipelineState.COMMITTING,
                PipelineState.DONE,
            ]

    def test_single_use(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            pipeline = TransformPipeline(self.make_request(tmpdir))
            pipeline.run()
            with pytest.raises(RuntimeError):
                pipeline.run()

    def test_resources_released_in_reverse_order(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            pipeline = TransformPipeline(self.make_request(tmpdir))
            pipeline.run()
            assert pipeline.resource_trace == [
                ("acquire", "source"),
                ("acquire", "read_buffer"),
                ("acquire", "write_buffer"),
                ("acquire", "staging"),
                ("release", "staging"),
                ("release", "write_buffer"),
                ("release", "read_buffer"),
                ("release", "source"),
            ]

    def test_request_is_immutable(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            request = self.make_request(tmpdir)
            with pytest.raises(AttributeError):
                request.direction = Direction.DECRYPT

    def test_key_not_in_repr(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            assert KEY.decode() not in repr(self.make_request(tmpdir))

    def test_invalid_transfer_unit(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ValueError):
                TransformPipeline(self.make_request(tmpdir), transfer_unit=0)
