"""End to end tests for transform()."""

import io
import json
from pathlib import Path
from typing import Dict

import pytest
from PIL import Image

from nocojs import LogLevel, OptionsError, TransformOptions, transform
from nocojs.image_processor import unwrap_data_uri
from nocojs.store import CACHE_FILE_NAME

SOURCE = (
    "import { preview } from '@nocojs/client';\n"
    "\n"
    "export const hero = preview('/images/red.png');\n"
)


def _decisions(result):
    return [entry.decision for entry in result.logs if entry.decision]


def _placeholder_in(code: str) -> str:
    start = code.index("preview('") + len("preview('")
    return code[start:code.index("'", start)]


def test_replaces_first_argument(options: Dict[str, object]) -> None:
    result = transform(SOURCE, "src/hero.js", options)

    assert result.code.startswith("import { preview } from '@nocojs/client';\n\nexport const hero = preview('data:image/svg+xml,")
    assert result.code.endswith("');\n")
    source_map = json.loads(result.map)
    assert source_map["sources"] == ["src/hero.js"]
    assert _decisions(result) == ["miss"]
    assert result.logs[-1].message.startswith("Finished processing file src/hero.js in ")


def test_source_without_client_import_is_untouched(options: Dict[str, object]) -> None:
    code = "const preview = (x) => x;\npreview('/images/red.png');\n"
    result = transform(code, "a.js", options)
    assert result.code == code
    assert result.map is None
    assert result.logs == []


def test_cache_idempotence(options: Dict[str, object], cache_dir: Path) -> None:
    first = transform(SOURCE, "a.js", options)
    second = transform(SOURCE, "a.js", options)

    assert (cache_dir / CACHE_FILE_NAME).exists()
    assert second.code == first.code
    assert _decisions(second) == ["hit"]
    hit = [entry for entry in second.logs if entry.decision == "hit"][0]
    assert hit.message == "Cache hit for /images/red.png"
    assert hit.level == LogLevel.VERBOSE


@pytest.mark.parametrize("change", [{"placeholderType": "blurred"}, {"width": 24}, {"height": 4}])
def test_cache_sensitivity(options: Dict[str, object], change: Dict[str, object]) -> None:
    transform(SOURCE, "a.js", options)
    result = transform(SOURCE, "a.js", {**options, **change})
    assert _decisions(result) == ["miss"]


def test_cache_shared_between_importers(options: Dict[str, object]) -> None:
    transform(SOURCE, "a.js", options)
    other = "import { preview as p } from 'nocojs';\nconst x = p(\"images/red.png\");\n"
    result = transform(other, "b/c.jsx", options)
    assert _decisions(result) == ["hit"]
    assert 'p("data:image/svg+xml,' in result.code


def test_no_cache_mode(options: Dict[str, object], cache_dir: Path) -> None:
    no_cache = {**options, "cache": False}
    first = transform(SOURCE, "a.js", no_cache)
    second = transform(SOURCE, "a.js", no_cache)

    assert _decisions(first) == ["miss"]
    assert _decisions(second) == ["miss"]
    assert not (cache_dir / CACHE_FILE_NAME).exists()


def test_invalid_inputs_leave_siblings_working(options: Dict[str, object], mocker) -> None:
    """Failed images stay as written while valid ones are replaced."""
    mocker.patch("requests.Session.get", return_value=mocker.Mock(status_code=404, content=b""))
    code = (
        "import { preview } from '@nocojs/client';\n"
        "const a = preview('/invalid-url.jpg');\n"
        "const b = preview('file:///invalid-path.jpg');\n"
        "const c = preview('https://example.com/invalid-image.jpg');\n"
        "const d = preview('/images/broken.png');\n"
        "const e = preview('/images/red.png');\n"
    )
    result = transform(code, "a.js", options)

    for url in ("/invalid-url.jpg", "file:///invalid-path.jpg",
                "https://example.com/invalid-image.jpg", "/images/broken.png"):
        assert f"preview('{url}')" in result.code
    assert "const e = preview('data:image/svg+xml," in result.code
    assert _decisions(result) == ["error", "error", "error", "error", "miss"]

    errors = [entry for entry in result.logs if entry.level == LogLevel.ERROR]
    assert [entry.identifier for entry in errors] == [
        "/invalid-url.jpg", "file:///invalid-path.jpg", "https://example.com/invalid-image.jpg", "/images/broken.png",
    ]
    assert "HTTP status 404" in errors[2].message


def test_replace_function_call_false(options: Dict[str, object]) -> None:
    result = transform(SOURCE, "a.js", {**options, "replaceFunctionCall": False})
    assert result.code == SOURCE
    assert result.map is None
    miss = [entry for entry in result.logs if entry.decision == "miss"][0]
    assert miss.message.endswith("(call left unchanged)")


def test_wrap_with_svg_false_gives_png(options: Dict[str, object]) -> None:
    result = transform(SOURCE, "a.js", {**options, "wrapWithSvg": False})
    assert "preview('data:image/png;base64," in result.code


def test_per_call_options_override(options: Dict[str, object]) -> None:
    code = (
        "import { preview } from '@nocojs/client';\n"
        "const t = preview('/images/photo.jpg', { placeholderType: 'transparent', width: 8 });\n"
    )
    result = transform(code, "a.js", {**options, "placeholderType": "grayscale"})

    with Image.open(io.BytesIO(unwrap_data_uri(_placeholder_in(result.code)))) as img:
        rgba = img.convert("RGBA")
        assert rgba.size == (8, 10)
        assert all(pixel[3] == 0 for pixel in rgba.getdata())
    assert "{ placeholderType: 'transparent', width: 8 }" in result.code


def test_parse_error_returns_original_code(options: Dict[str, object]) -> None:
    code = "import { preview } from 'nocojs';\nconst a = preview('/images/red.png';\n"
    result = transform(code, "broken.js", options)

    assert result.code == code
    assert result.map is None
    assert len(result.logs) == 1
    assert result.logs[0].level == LogLevel.ERROR
    assert result.logs[0].message.startswith("Failed to parse broken.js")


def test_jsx_file(options: Dict[str, object]) -> None:
    code = (
        "import { preview } from '@nocojs/client';\n"
        "export default function Hero() {\n"
        "  return <img src={preview(\"/images/pic.webp\")} alt=\"hero\" />;\n"
        "}\n"
    )
    result = transform(code, "Hero.jsx", options)
    assert '<img src={preview("data:image/svg+xml,' in result.code
    assert result.code.endswith('" alt="hero" />;\n}\n')


def test_log_level_filtering(options: Dict[str, object]) -> None:
    quiet = transform(SOURCE, "a.js", {**options, "logLevel": "error"})
    assert quiet.logs == []

    missing = SOURCE.replace("red.png", "missing.png")
    errors_only = transform(missing, "a.js", {**options, "logLevel": "error"})
    assert [entry.decision for entry in errors_only.logs] == ["error"]

    silent = transform(missing, "a.js", {**options, "logLevel": "none"})
    assert silent.logs == []

    info = transform(SOURCE, "a.js", {**options, "logLevel": "info", "width": 5})
    assert [entry.level for entry in info.logs] == [LogLevel.INFO]


def test_corrupt_cache_is_not_fatal(options: Dict[str, object], cache_dir: Path) -> None:
    cache_dir.mkdir(parents=True)
    (cache_dir / CACHE_FILE_NAME).write_bytes(b"garbage" * 200)

    first = transform(SOURCE, "a.js", options)
    assert _decisions(first) == ["miss"]
    assert any("unreadable" in entry.message and entry.level == LogLevel.VERBOSE for entry in first.logs)

    second = transform(SOURCE, "a.js", options)
    assert _decisions(second) == ["hit"]


def test_accepts_options_dataclass(public_dir: Path, cache_dir: Path) -> None:
    options = TransformOptions(public_dir=str(public_dir), cache_file_dir=str(cache_dir))
    result = transform(SOURCE, "a.js", options)
    assert "data:image/svg+xml," in result.code


@pytest.mark.parametrize(
    "bad_options",
    [{"bogus": 1}, {"placeholderType": "sepia"}, {"width": 0}, {"logLevel": "loud"}, {"cache": "yes"}],
)
def test_invalid_options_raise(bad_options: Dict[str, object]) -> None:
    with pytest.raises(OptionsError):
        transform(SOURCE, "a.js", bad_options)
    with pytest.raises(ValueError):
        transform(SOURCE, "a.js", bad_options)
