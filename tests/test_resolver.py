"""Tests for image identifier classification and byte fetching."""

from pathlib import Path

import pytest
import requests

from nocojs.errors import ResolutionError
from nocojs.http_client import RequestsClient
from nocojs.resolver import LocalFile, RemoteUrl, Unresolvable, fetch_bytes, is_remote_url, resolve


def test_remote_urls(public_dir: Path) -> None:
    source = resolve("https://example.com/a.png", str(public_dir))
    assert source == RemoteUrl("https://example.com/a.png", "https://example.com/a.png")
    assert isinstance(resolve("https://example.com/a.png", str(public_dir), allow_remote=False), Unresolvable)
    assert not is_remote_url("ftp://example.com/a.png")
    assert not is_remote_url("/images/a.png")


@pytest.mark.parametrize(
    "identifier",
    ["/images/red.png", "images/red.png", "./images/red.png", "/images/red.png?v=2#top"],
)
def test_paths_relative_to_public_dir(public_dir: Path, identifier: str) -> None:
    source = resolve(identifier, str(public_dir))
    assert isinstance(source, LocalFile)
    assert source.path == str(public_dir / "images" / "red.png")
    assert source.identifier == identifier


def test_percent_encoded_path(public_dir: Path) -> None:
    source = resolve("/images/my%20pic.png", str(public_dir))
    assert isinstance(source, LocalFile)
    assert source.path.endswith("my pic.png")


def test_missing_and_escaping_paths_are_unresolvable(public_dir: Path) -> None:
    (public_dir.parent / "secret.png").write_bytes(b"x")

    assert isinstance(resolve("/invalid-url.jpg", str(public_dir)), Unresolvable)
    assert isinstance(resolve("../secret.png", str(public_dir)), Unresolvable)
    assert isinstance(resolve("/images", str(public_dir)), Unresolvable)
    assert isinstance(resolve("", str(public_dir)), Unresolvable)


def test_absolute_paths_need_opt_in(public_dir: Path) -> None:
    path = public_dir / "images" / "red.png"

    assert isinstance(resolve(str(path), "/nonexistent"), Unresolvable)
    assert isinstance(resolve(path.as_uri(), "/nonexistent"), Unresolvable)
    assert resolve(str(path), "/nonexistent", allow_absolute=True) == LocalFile(str(path), str(path))
    assert resolve(path.as_uri(), "/nonexistent", allow_absolute=True).path == str(path)
    assert isinstance(resolve("file:///invalid-path.jpg", "/nonexistent", allow_absolute=True), Unresolvable)


def test_local_file_signature_changes_with_content(public_dir: Path) -> None:
    path = public_dir / "images" / "small.png"
    source = LocalFile(str(path), "/images/small.png")
    before = source.signature()
    path.write_bytes(path.read_bytes() + b"\0")
    assert source.signature() != before


def test_fetch_local_bytes(public_dir: Path) -> None:
    source = resolve("/images/red.png", str(public_dir))
    assert fetch_bytes(source) == (public_dir / "images" / "red.png").read_bytes()


def test_fetch_unresolvable_raises() -> None:
    with pytest.raises(ResolutionError) as excinfo:
        fetch_bytes(Unresolvable("/nope.png", "not found"))
    assert excinfo.value.identifier == "/nope.png"
    assert str(excinfo.value) == "Failed to resolve image /nope.png: not found"


def test_fetch_remote_success(mocker) -> None:
    response = mocker.Mock(status_code=200, content=b"imagebytes")
    get = mocker.patch("requests.Session.get", return_value=response)

    data = fetch_bytes(RemoteUrl("https://example.com/a.png", "https://example.com/a.png"), RequestsClient(3.0))

    assert data == b"imagebytes"
    get.assert_called_once_with("https://example.com/a.png", timeout=3.0)


@pytest.mark.parametrize(
    "patch_kwargs, reason",
    [
        ({"side_effect": requests.exceptions.Timeout("slow")}, "timed out after 3.0s"),
        ({"side_effect": requests.exceptions.ConnectionError("refused")}, "refused"),
    ],
)
def test_fetch_remote_failures(mocker, patch_kwargs, reason: str) -> None:
    mocker.patch("requests.Session.get", **patch_kwargs)
    with pytest.raises(ResolutionError) as excinfo:
        RequestsClient(3.0).download_data("https://example.com/a.png")
    assert reason in excinfo.value.reason


def test_fetch_remote_http_error(mocker) -> None:
    mocker.patch("requests.Session.get", return_value=mocker.Mock(status_code=404, content=b"missing"))
    with pytest.raises(ResolutionError, match="HTTP status 404"):
        RequestsClient().download_data("https://example.com/invalid-image.jpg")
