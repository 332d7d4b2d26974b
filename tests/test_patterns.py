import pytest

from imgcdn.directives import Geometry
from imgcdn.patterns import (
    is_excluded,
    match_asset,
    match_css_urls,
    match_descriptor_width,
    match_filename_geometry,
    match_responsive_list,
    match_sizes_geometry,
    strip_size_suffix,
)


def test_match_asset_splits_prefix_path_and_suffix():
    match = match_asset("https://ex.com/wp-content/uploads/2023/01/cat.jpg?ver=2#top")
    assert match.prefix == "https://ex.com"
    assert match.path == "/wp-content/uploads/2023/01/cat.jpg"
    assert match.suffix == "?ver=2#top"


def test_match_asset_prefix_forms():
    assert match_asset("//cdn.ex.com/wp-content/themes/t/logo.SVG").prefix == "//cdn.ex.com"
    assert match_asset("http://ex.com/wp-content/plugins/p/a.webp").prefix == "http://ex.com"
    relative = match_asset("/wp-content/plugins/p/icon.webp")
    assert relative.prefix == ""
    assert relative.path == "/wp-content/plugins/p/icon.webp"


def test_match_asset_subdirectory_installs():
    absolute = match_asset("https://ex.com/blog/wp-content/uploads/a.jpg")
    assert absolute.prefix == "https://ex.com/blog"
    assert absolute.path == "/wp-content/uploads/a.jpg"

    relative = match_asset("/sites/shop/wp-content/themes/t/logo.png?v=3")
    assert relative.prefix == "/sites/shop"
    assert relative.path == "/wp-content/themes/t/logo.png"
    assert relative.suffix == "?v=3"

    protocol_relative = match_asset("//ex.com/blog/wp-content/plugins/p/a.gif")
    assert protocol_relative.prefix == "//ex.com/blog"


@pytest.mark.parametrize(
    "ext",["jpg", "jpeg", "gif", "png", "webp", "svg", "JPG", "Png", "JPEG"]
)
def test_match_asset_extensions(ext):
    assert match_asset(f"/wp-content/uploads/a.{ext}") is not None


@pytest.mark.parametrize(
    "value",
    [
        None,
        "",
        "/wp-content/uploads/doc.pdf",
        "/wp-content/uploads/a.jpgx",
        "/wp-content/cache/a.jpg",
        "https://ex.com/images/a.jpg",
        "https://ex.com/blog/images/wp-content.jpg",
        "wp-content/uploads/a.jpg",
        "data:image/png;base64,iVBORw0KGgo=",
        "/wp-content/uploads/base64-thumb.png",
        "/cdn-cgi/image/quality=90,format=auto,onerror=redirect/wp-content/uploads/a.jpg",
    ],
)
def test_match_asset_rejects(value):
    assert match_asset(value) is None


def test_match_asset_keeps_surrounding_whitespace():
    match = match_asset("  /wp-content/uploads/a.png \n")
    assert match.lead == "  "
    assert match.trail == " \n"
    assert match.with_directive("/cdn-cgi/image/x") == "  /cdn-cgi/image/x/wp-content/uploads/a.png \n"


def test_match_asset_double_extension():
    assert match_asset("/wp-content/uploads/a.jpg.webp").path == "/wp-content/uploads/a.jpg.webp"


def test_with_directive_replaces_path():
    match = match_asset("https://ex.com/wp-content/uploads/cat-300x200.jpg?v=1")
    result = match.with_directive("/cdn-cgi/image/q", "/wp-content/uploads/cat.jpg")
    assert result == "https://ex.com/cdn-cgi/image/q/wp-content/uploads/cat.jpg?v=1"


def test_is_excluded():
    assert is_excluded("data:image/gif;base64,R0lGOD")
    assert is_excluded("https://ex.com/cdn-cgi/image/width=10/wp-content/uploads/a.jpg")
    assert not is_excluded("https://ex.com/wp-content/uploads/a.jpg")


def test_match_responsive_list_candidates_and_spans():
    value = "a.jpg 300w, b.jpg 600w"
    candidates = match_responsive_list(value)
    assert [(c.url, c.tokens) for c in candidates] == [("a.jpg", ["300w"]), ("b.jpg", ["600w"])]
    assert [value[c.start : c.end] for c in candidates] == ["a.jpg 300w", "b.jpg 600w"]


def test_match_responsive_list_tokenizing():
    assert [c.url for c in match_responsive_list("a.jpg 1x,b.jpg 2x")] == ["a.jpg", "b.jpg"]
    assert [c.url for c in match_responsive_list("a.jpg?x=1,2 300w")] == ["a.jpg?x=1,2"]
    assert [c.url for c in match_responsive_list("a.jpg, b.jpg")] == ["a.jpg", "b.jpg"]
    only_url = match_responsive_list("  a.jpg  ")[0]
    assert only_url.url == "a.jpg"
    assert only_url.tokens == []
    assert match_responsive_list("a.jpg 300w 2x")[0].tokens == ["300w", "2x"]
    assert match_responsive_list("") == []
    assert match_responsive_list(None) == []


def test_match_css_urls_quotes_and_assets():
    css = (
        '.a{background:url("/wp-content/uploads/a.png")}'
        ".b{background:url(/img/b.png)}"
        ".c{background:URL( '//ex.com/wp-content/themes/t/c.gif' )}"
    )
    found = match_css_urls(css)
    assert [occ.quote for occ in found] == ['"', "", "'"]
    assert [occ.url for occ in found] == [
        "/wp-content/uploads/a.png",
        "/img/b.png",
        "//ex.com/wp-content/themes/t/c.gif",
    ]
    assert found[0].asset is not None
    assert found[1].asset is None
    assert found[2].asset.prefix == "//ex.com"
    assert css[found[0].start : found[0].end] == "/wp-content/uploads/a.png"


def test_match_css_urls_skips_data_uris():
    found = match_css_urls(".a{background:url(data:image/png;base64,AAAA)}")
    assert len(found) == 1
    assert found[0].asset is None


def test_match_filename_geometry():
    assert match_filename_geometry("/wp-content/uploads/cat-300x200.jpg") == Geometry(300, 200)
    assert match_filename_geometry("/wp-content/uploads/cat-300x200.PNG") == Geometry(300, 200)
    assert match_filename_geometry("/wp-content/uploads/cat.jpg") is None
    assert match_filename_geometry("/wp-content/uploads/cat-300x200-1.jpg") is None
    assert match_filename_geometry("/wp-content/uploads/300x200/cat.jpg") is None


def test_match_descriptor_width():
    assert match_descriptor_width("480w") == 480
    assert match_descriptor_width(" 1024w ") == 1024
    assert match_descriptor_width("2x") is None
    assert match_descriptor_width("480") is None
    assert match_descriptor_width("w") is None


def test_match_sizes_geometry():
    assert match_sizes_geometry("32x32") == Geometry(32, 32)
    assert match_sizes_geometry("180X180") == Geometry(180, 180)
    assert match_sizes_geometry("any") is None
    assert match_sizes_geometry("16x16 32x32") is None
    assert match_sizes_geometry(None) is None


def test_strip_size_suffix():
    assert strip_size_suffix("/wp-content/uploads/cat-300x200.jpg") == "/wp-content/uploads/cat.jpg"
    assert strip_size_suffix("/wp-content/uploads/cat-1024x768-1.png") == "/wp-content/uploads/cat.png"
    assert strip_size_suffix("/wp-content/uploads/photo-2-300x200.jpg") == "/wp-content/uploads/photo-2.jpg"
    assert strip_size_suffix("/wp-content/uploads/cat.jpg") == "/wp-content/uploads/cat.jpg"
    assert (
        strip_size_suffix("/wp-content/uploads/size-300x200/cat.jpg")
        == "/wp-content/uploads/size-300x200/cat.jpg"
    )
