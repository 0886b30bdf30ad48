"""
Tests for sopdesk/integrations/file_storage.py — LocalFileStorage.
"""

import io
import os
import time

import pytest
from itsdangerous import TimestampSigner

from sopdesk.core.exceptions import NotFoundError, ValidationError
from sopdesk.integrations.file_storage import LocalFileStorage


@pytest.fixture()
def local(tmp_path):
    return LocalFileStorage(str(tmp_path), "test-secret", url_ttl=60, max_bytes=1024)


class TestUpload:

    def test_locator_format(self, local):
        locator = local.upload("doc-1", "node-1", "CD register.pdf", io.BytesIO(b"%PDF"))
        doc_id, node_id, name = locator.split("/")
        assert (doc_id, node_id) == ("doc-1", "node-1")
        stamp, safe = name.split("_", 1)
        assert stamp.isdigit()
        assert safe == "CD_register.pdf"

    def test_file_written(self, local):
        locator = local.upload("doc-1", "node-1", "sop.pdf", io.BytesIO(b"%PDF-1.7"))
        with local.open(locator) as fh:
            assert fh.read() == b"%PDF-1.7"

    def test_traversal_in_filename_is_neutralised(self, local, tmp_path):
        locator = local.upload("doc-1", "node-1", "../../etc/passwd", io.BytesIO(b"x"))
        assert ".." not in locator
        assert os.path.isfile(os.path.join(str(tmp_path), locator))

    def test_empty_filename(self, local):
        with pytest.raises(ValidationError):
            local.upload("doc-1", "node-1", "", io.BytesIO(b"x"))

    def test_too_large_is_removed(self, local, tmp_path):
        with pytest.raises(ValidationError):
            local.upload("doc-1", "node-1", "big.pdf", io.BytesIO(b"x" * 2048))
        assert os.listdir(os.path.join(str(tmp_path), "doc-1", "node-1")) == []


class TestOpen:

    def test_locator_outside_root(self, local):
        with pytest.raises(ValidationError):
            local.open("../outside.pdf")

    def test_missing_file(self, local):
        with pytest.raises(NotFoundError):
            local.open("doc-1/node-1/0_gone.pdf")


class TestSignedUrl:

    def test_round_trip(self, local):
        locator = local.upload("doc-1", "node-1", "sop.pdf", io.BytesIO(b"%PDF"))
        url = local.signed_url(locator)
        assert url.startswith("/api/v1/sop/files/")
        assert local.resolve_token(url.rsplit("/", 1)[-1]) == locator

    def test_tampered_token(self, local):
        url = local.signed_url("doc-1/node-1/1_sop.pdf")
        with pytest.raises(NotFoundError):
            local.resolve_token(url.rsplit("/", 1)[-1] + "x")

    def test_token_from_other_secret(self, local, tmp_path):
        other = LocalFileStorage(str(tmp_path), "another-secret")
        token = other.signed_url("doc-1/node-1/1_sop.pdf").rsplit("/", 1)[-1]
        with pytest.raises(NotFoundError):
            local.resolve_token(token)

    def test_expired_token(self, local, monkeypatch):
        token = local.signed_url("doc-1/node-1/1_sop.pdf", expires_in=5).rsplit("/", 1)[-1]
        later = int(time.time()) + 30
        monkeypatch.setattr(TimestampSigner, "get_timestamp", lambda self: later)
        with pytest.raises(NotFoundError):
            local.resolve_token(token)

    def test_default_ttl_still_valid(self, local, monkeypatch):
        token = local.signed_url("doc-1/node-1/1_sop.pdf").rsplit("/", 1)[-1]
        later = int(time.time()) + 30
        monkeypatch.setattr(TimestampSigner, "get_timestamp", lambda self: later)
        assert local.resolve_token(token) == "doc-1/node-1/1_sop.pdf"

    def test_signed_url_rejects_escape(self, local):
        with pytest.raises(ValidationError):
            local.signed_url("../../secret")

    def test_long_expires_in_capped_at_url_ttl(self, local, monkeypatch):
        token = local.signed_url("doc-1/node-1/1_sop.pdf", expires_in=86400).rsplit("/", 1)[-1]
        later = int(time.time()) + 120
        monkeypatch.setattr(TimestampSigner, "get_timestamp", lambda self: later)
        with pytest.raises(NotFoundError):
            local.resolve_token(token)

    def test_token_ttl_above_current_limit_is_capped(self, local, tmp_path, monkeypatch):
        generous = LocalFileStorage(str(tmp_path), "test-secret", url_ttl=86400)
        token = generous.signed_url("doc-1/node-1/1_sop.pdf").rsplit("/", 1)[-1]
        later = int(time.time()) + 120
        monkeypatch.setattr(TimestampSigner, "get_timestamp", lambda self: later)
        with pytest.raises(NotFoundError):
            local.resolve_token(token)

    @pytest.mark.parametrize("expires_in", [0, -30])
    def test_non_positive_expires_in_rejected(self, local, expires_in):
        with pytest.raises(ValidationError):
            local.signed_url("doc-1/node-1/1_sop.pdf", expires_in=expires_in)
