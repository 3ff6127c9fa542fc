"""Tests for call-site discovery in JS/TS/JSX source."""

from typing import List

import pytest

from nocojs.errors import ParseError
from nocojs.scanner import PreviewCallSite, scan, tokenize

HEADER = "import { preview } from '@nocojs/client';\n"


def sites(code: str, file_path: str = "index.js") -> List[PreviewCallSite]:
    return list(scan(code, file_path))


def test_named_import_call_site() -> None:
    """A plain call records its URL, position and first argument span."""
    code = HEADER + "const a = preview('/images/red.png');\n"
    [site] = sites(code)

    assert site.url == "/images/red.png"
    assert site.line == 2
    assert site.column == 10
    assert site.callee == "preview"
    assert site.argument_text == "'/images/red.png'"
    assert code[site.argument_start:site.argument_end] == "'/images/red.png'"
    assert code[site.start:site.end] == "preview('/images/red.png')"
    assert site.rewritable
    assert site.quote == "'"


def test_renamed_import_only_matches_local_name() -> None:
    code = (
        "import { preview as p } from 'nocojs';\n"
        "p(\"/a.png\");\n"
        "preview(\"/b.png\");\n"
    )
    assert [s.url for s in sites(code)] == ["/a.png"]


def test_string_named_import() -> None:
    code = "import { \"preview\" as pv } from 'nocojs';\npv('/a.png');\n"
    assert [s.url for s in sites(code)] == ["/a.png"]


def test_namespace_import() -> None:
    code = "import * as noco from '@nocojs/client';\nnoco.preview('/a.png');\npreview('/b.png');\n"
    [site] = sites(code)
    assert site.callee == "noco.preview"
    assert site.url == "/a.png"


def test_member_calls_and_other_sources_are_ignored() -> None:
    code = HEADER + "obj.preview('/a.png');\nobj?.preview('/b.png');\n"
    assert sites(code) == []

    other = "import { preview } from './local-preview';\npreview('/a.png');\n"
    assert sites(other) == []


def test_type_only_import_binds_nothing() -> None:
    code = "import type { preview } from '@nocojs/client';\npreview('/a.png');\n"
    assert sites(code) == []


def test_comments_and_strings_are_not_calls() -> None:
    code = HEADER + (
        "// preview('/commented.png')\n"
        "/* preview('/block.png') */\n"
        "const s = \"preview('/in-string.png')\";\n"
        "const re = /['\"]preview\\(/g;\n"
        "preview('/real.png');\n"
    )
    assert [s.url for s in sites(code)] == ["/real.png"]


def test_escapes_are_cooked_in_url() -> None:
    code = HEADER + "preview('/images/my\\u0020pic.png');\n"
    [site] = sites(code)
    assert site.url == "/images/my pic.png"
    assert site.argument_text == "'/images/my\\u0020pic.png'"


def test_template_literals() -> None:
    code = HEADER + "preview(`/plain.png`);\npreview(`/images/${name}.png`);\n"
    plain, dynamic = sites(code)

    assert plain.url == "/plain.png"
    assert plain.rewritable
    assert plain.quote == '"'
    assert dynamic.url is None
    assert not dynamic.rewritable


def test_call_inside_template_substitution() -> None:
    code = HEADER + "const html = `<img src=\"${preview('/a.png')}\">`;\n"
    assert [s.url for s in sites(code)] == ["/a.png"]


def test_non_literal_and_missing_arguments_are_not_rewritable() -> None:
    code = HEADER + "preview(src);\npreview();\n"
    variable, empty = sites(code)

    assert not variable.rewritable
    assert variable.reason == "first argument is not a string literal"
    assert variable.argument_text == "src"
    assert not empty.rewritable
    assert empty.reason == "no image URL provided"


def test_options_object_literal() -> None:
    code = HEADER + (
        "preview('/a.png', { placeholderType: 'blurred', width: 32, 'wrapWithSvg': false, "
        "height: size, cache: -1 });\n"
    )
    [site] = sites(code)
    assert site.options == {"placeholderType": "blurred", "width": 32, "wrapWithSvg": False, "cache": -1}
    assert site.ignored_options == ("height",)


def test_options_that_are_not_object_literals() -> None:
    code = HEADER + "preview('/a.png', opts);\n"
    [site] = sites(code)
    assert site.options is None
    assert site.rewritable
    assert site.ignored_options


def test_jsx_attribute_and_children() -> None:
    code = HEADER + (
        "export const App = ({ items }) => (\n"
        "  <div className=\"hero\">\n"
        "    <img src={preview('/images/red.png')} alt=\"Don't\" />\n"
        "    {items.map((i) => <span key={i}>{i} > 0 it's fine</span>)}\n"
        "    <>\n      <p>{preview(\"/images/photo.jpg\")}</p>\n    </>\n"
        "  </div>\n"
        ");\n"
    )
    assert [s.url for s in sites(code, "App.jsx")] == ["/images/red.png", "/images/photo.jpg"]


def test_tsx_generic_arrow_is_not_jsx() -> None:
    code = HEADER + "const id = <T,>(x: T): T => x;\nconst img = preview('/a.png');\n"
    assert [s.url for s in sites(code, "util.tsx")] == ["/a.png"]


def test_ts_type_assertion_without_jsx() -> None:
    code = HEADER + "const n = <number>value;\nconst img: string = preview('/a.png');\n"
    assert [s.url for s in sites(code, "util.ts")] == ["/a.png"]


def test_method_named_preview_is_not_a_call() -> None:
    code = HEADER + "class Card {\n  preview(url) {\n    return url;\n  }\n}\n"
    assert sites(code) == []


def test_object_literal_method_is_not_a_call() -> None:
    code = HEADER + "export default {\n  preview(url) {\n    return url;\n  },\n};\n"
    assert sites(code) == []


def test_call_between_object_valued_jsx_attributes() -> None:
    """A call followed by `{` in the next attribute is still a call, not a method."""
    code = HEADER + (
        "export const Hero = () => (\n"
        "  <img style={{ width: 1 }} src={preview('/images/red.png')} sx={{ m: 0 }} />\n"
        ");\n"
    )
    assert [s.url for s in sites(code, "Hero.jsx")] == ["/images/red.png"]


@pytest.mark.parametrize(
    "body",
    [
        "function show(preview) {\n  return preview('/images/red.png');\n}\n",
        "function show() {\n  const preview = (url) => url;\n  return preview('/images/red.png');\n}\n",
        "try {\n  load();\n} catch (preview) {\n  preview('/images/red.png');\n}\n",
        "const show = ({ preview }) => preview('/images/red.png');\n",
        "for (const preview of loaders) {\n  preview('/images/red.png');\n}\n",
        "function show() {\n  if (ready) {\n    var preview = make();\n  }\n  return preview('/images/red.png');\n}\n",
    ],
    ids=["parameter", "local-const", "catch", "destructured-arrow-parameter", "for-of", "hoisted-var"],
)
def test_local_bindings_shadow_the_import(body: str) -> None:
    code = HEADER + body + "export const hero = preview('/images/hero.png');\n"
    assert [s.url for s in sites(code)] == ["/images/hero.png"]


def test_block_binding_does_not_leak() -> None:
    code = HEADER + (
        "if (custom) {\n  const preview = make();\n  preview('/images/local.png');\n}\n"
        "preview('/images/red.png');\n"
    )
    assert [s.url for s in sites(code)] == ["/images/red.png"]


def test_regex_after_statement_heads_and_blocks() -> None:
    code = HEADER + (
        "if (ok) /'/.test(s);\n"
        "while (busy) /\"/g.exec(s);\n"
        "if (a) {} /x/.test(b);\n"
        "const r = f(x) / 2 / g(y);\n"
        "preview('/a.png');\n"
    )
    assert [s.url for s in sites(code)] == ["/a.png"]


def test_hashbang_and_division() -> None:
    code = "#!/usr/bin/env node\n" + HEADER + "const half = total / 2 / count;\npreview('/a.png');\n"
    assert [s.url for s in sites(code)] == ["/a.png"]


@pytest.mark.parametrize(
    "code, line",
    [
        (HEADER + "preview('/a.png);\n", 2),
        (HEADER + "const x = `unterminated;\n", 2),
        (HEADER + "foo(\n  bar(1, 2);\n", 2),
        (HEADER + "/* never closed\n", 2),
        (HEADER + "const el = <div>\n  <span>text</span>\n", 2),
        (HEADER + "const a = [1, 2};\n", 2),
    ],
)
def test_parse_errors(code: str, line: int) -> None:
    """Malformed input raises ParseError from scan() with a position."""
    with pytest.raises(ParseError) as excinfo:
        scan(code, "broken.jsx")
    assert excinfo.value.line == line


def test_scan_is_lazy_and_single_pass() -> None:
    code = HEADER + "preview('/a.png');\npreview('/b.png');\n"
    iterator = scan(code)
    assert next(iterator).url == "/a.png"
    assert [s.url for s in iterator] == ["/b.png"]
    assert list(iterator) == []


def test_tokenize_regex_after_keyword() -> None:
    tokens = tokenize("return /a}b/.test(x)")
    assert [t.kind for t in tokens][:2] == ["ident", "regex"]
