"""
Tests for artifact collection and upload.
"""
import os
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from app.core.artifact_store import ArtifactStore, collect_files, guess_content_type
from app.core.errors import UploadError
from app.core.jobs import artifact_key


class TestContentType:
    """Tests for content type detection."""

    @pytest.mark.parametrize("name,expected", [
        ("index.html", "text/html"),
        ("assets/style.css", "text/css"),
        ("logo.png", "image/png"),
        ("data.json", "application/json"),
    ])
    def test_known_extensions(self, name, expected):
        assert guess_content_type(name) == expected

    def test_unknown_extension_falls_back(self):
        assert guess_content_type("blob.unknownext") == "application/octet-stream"
        assert guess_content_type("LICENSE") == "application/octet-stream"


class TestCollectFiles:
    """Tests for walking the build output tree."""

    def test_recursive_and_sorted(self, tmp_path):
        (tmp_path / "assets" / "img").mkdir(parents=True)
        (tmp_path / "index.html").write_text("i")
        (tmp_path / "assets" / "app.js").write_text("a")
        (tmp_path / "assets" / "img" / "logo.svg").write_text("l")

        files = collect_files(tmp_path)

        assert [f.relative_to(tmp_path).as_posix() for f in files] == [
            "assets/app.js",
            "assets/img/logo.svg",
            "index.html",
        ]

    def test_directories_are_not_files(self, tmp_path):
        (tmp_path / "empty").mkdir()
        assert collect_files(tmp_path) == []

    def test_missing_directory(self, tmp_path):
        assert collect_files(tmp_path / "nope") == []

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_symlink_outside_tree_is_skipped(self, tmp_path):
        outside = tmp_path / "secret.txt"
        outside.write_text("secret")
        dist = tmp_path / "dist"
        dist.mkdir()
        (dist / "index.html").write_text("i")
        (dist / "leak.txt").symlink_to(outside)

        files = collect_files(dist)

        assert [f.name for f in files] == ["index.html"]


class TestArtifactKey:
    def test_key_layout(self):
        assert artifact_key("__outputs", "demo", "assets/app.js") == "__outputs/demo/assets/app.js"

    def test_empty_prefix(self):
        assert artifact_key("", "demo", "index.html") == "demo/index.html"


class TestUpload:
    """Tests for ArtifactStore.upload_file."""

    def test_put_object_arguments(self, tmp_path):
        client = MagicMock()
        store = ArtifactStore("artifacts", client=client)
        path = tmp_path / "index.html"
        path.write_text("<h1>hi</h1>")

        key = store.upload_file("demo", path, "index.html")

        assert key == "__outputs/demo/index.html"
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "artifacts"
        assert kwargs["Key"] == "__outputs/demo/index.html"
        assert kwargs["ContentType"] == "text/html"
        assert "Body" in kwargs

    def test_custom_prefix(self, tmp_path):
        client = MagicMock()
        store = ArtifactStore("artifacts", prefix="sites", client=client)
        path = tmp_path / "app.js"
        path.write_text("x")

        assert store.upload_file("demo", path, "app.js") == "sites/demo/app.js"

    def test_client_error_becomes_upload_error(self, tmp_path):
        client = MagicMock()
        client.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, "PutObject"
        )
        store = ArtifactStore("artifacts", client=client)
        path = tmp_path / "index.html"
        path.write_text("x")

        with pytest.raises(UploadError) as exc_info:
            store.upload_file("demo", path, "index.html")

        assert str(exc_info.value) == "S3 PutObject error: AccessDenied"

    def test_connection_error_becomes_upload_error(self, tmp_path):
        client = MagicMock()
        client.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.test")
        store = ArtifactStore("artifacts", client=client)
        path = tmp_path / "index.html"
        path.write_text("x")

        with pytest.raises(UploadError):
            store.upload_file("demo", path, "index.html")

    def test_missing_file_becomes_upload_error(self, tmp_path):
        store = ArtifactStore("artifacts", client=MagicMock())

        with pytest.raises(UploadError):
            store.upload_file("demo", tmp_path / "gone.js", "gone.js")

    @pytest.mark.parametrize("relative", ["../escape.js", "/etc/passwd", "a/../../b.js"])
    def test_unsafe_path_rejected(self, tmp_path, relative):
        client = MagicMock()
        store = ArtifactStore("artifacts", client=client)
        path = tmp_path / "x.js"
        path.write_text("x")

        with pytest.raises(UploadError):
            store.upload_file("demo", path, relative)
        client.put_object.assert_not_called()
