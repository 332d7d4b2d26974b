from pathlib import Path

import pytest

from imgcdn.config import (
    DEFAULT_CONFIG,
    DEFAULT_SITE,
    ConfigError,
    SiteConfig,
    SiteRegistry,
    SiteTable,
    build_site_table,
    load_config,
    normalize_domain,
    parse_site,
)

CONFIG_YAML = """\
origin: http://origin.local:8080/
port: 5000
default:
  quality: 85
  metadata: none
sites:
  - domain: Example.com
    quality: 70
    REWRITE_HREF_TAGS: false
    gravity: auto
  - domain: other.org
    fit: null
"""


def write_config(tmp_path: Path, text: str = CONFIG_YAML) -> Path:
    path = tmp_path / "imgcdn.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_default_site_values():
    assert DEFAULT_SITE.domain is None
    assert DEFAULT_SITE.quality == 90
    assert DEFAULT_SITE.fit == "crop"
    assert DEFAULT_SITE.gravity is None
    assert DEFAULT_SITE.sharpen is None
    assert DEFAULT_SITE.metadata is None
    assert DEFAULT_SITE.lazy_load is True
    assert all(
        getattr(DEFAULT_SITE, toggle)
        for toggle in (
            "rewrite_link_tags",
            "rewrite_style_tags",
            "rewrite_image_tags",
            "rewrite_href_tags",
            "rewrite_div_tags",
            "rewrite_svg_tags",
        )
    )


def test_site_config_is_immutable():
    with pytest.raises(AttributeError):
        DEFAULT_SITE.quality = 10


def test_normalize_domain():
    assert normalize_domain("WWW.Example.COM:8443") == "www.example.com"
    assert normalize_domain("example.com.") == "example.com"
    assert normalize_domain("[::1]:8080") == "[::1]"
    assert normalize_domain(None) == ""


def test_table_resolves_case_insensitively_with_default_fallback():
    site = SiteConfig(domain="example.com", quality=70)
    table = SiteTable(sites={"Example.com": site})
    assert table.resolve("EXAMPLE.com:8080") is site
    assert table.resolve("unknown.org") is DEFAULT_SITE
    assert table.resolve(None) is DEFAULT_SITE
    assert len(table) == 1


def test_table_sites_are_read_only():
    table = SiteTable(sites={"example.com": SiteConfig(domain="example.com")})
    with pytest.raises(TypeError):
        table.sites["other.org"] = SiteConfig()


def test_registry_snapshot_survives_reload():
    old_site = SiteConfig(domain="example.com", quality=10)
    new_site = SiteConfig(domain="example.com", quality=20)
    registry = SiteRegistry(SiteTable(sites={"example.com": old_site}))
    snapshot = registry.snapshot()

    registry.reload(SiteTable(sites={"example.com": new_site}))

    assert snapshot.resolve("example.com").quality == 10
    assert registry.resolve("example.com").quality == 20
    assert registry.snapshot() is not snapshot


def test_registry_defaults_to_empty_table():
    assert SiteRegistry().resolve("anything.com") is DEFAULT_SITE


def test_parse_site_keys_are_case_insensitive_and_inherit():
    site = parse_site({"REWRITE_HREF_TAGS": False, "Quality": 80})
    assert site.rewrite_href_tags is False
    assert site.quality == 80
    assert site.fit == "crop"
    assert site.rewrite_image_tags is True


def test_parse_site_explicit_null_makes_option_absent():
    site = parse_site({"quality": None, "fit": None})
    assert site.quality is None
    assert site.fit is None


def test_parse_site_normalizes_values():
    site = parse_site({"sharpen": 2, "gravity": " auto ", "domain": "Shop.Example.com"})
    assert site.sharpen == 2.0
    assert isinstance(site.sharpen, float)
    assert site.gravity == "auto"
    assert site.domain == "shop.example.com"


@pytest.mark.parametrize(
    "data, key",
    [
        ({"quality": 0}, "quality"),
        ({"quality": 101}, "quality"),
        ({"quality": True}, "quality"),
        ({"quality": "90"}, "quality"),
        ({"fit": "stretch"}, "fit"),
        ({"metadata": "all"}, "metadata"),
        ({"sharpen": 11}, "sharpen"),
        ({"sharpen": -1}, "sharpen"),
        ({"lazy_load": "yes"}, "lazy_load"),
        ({"rewrite_svg_tags": None}, "rewrite_svg_tags"),
        ({"width": 100}, "width"),
    ],
)
def test_parse_site_rejects_invalid_values(data, key):
    with pytest.raises(ConfigError) as excinfo:
        parse_site(data)
    assert excinfo.value.key == key


def test_parse_site_rejects_non_mapping():
    with pytest.raises(ConfigError):
        parse_site(["quality", 90])


def test_build_site_table_requires_unique_domains():
    with pytest.raises(ConfigError):
        build_site_table({"sites": [{"quality": 50}]})
    with pytest.raises(ConfigError):
        build_site_table({"sites": [{"domain": "a.com"}, {"domain": "A.com"}]})
    with pytest.raises(ConfigError):
        build_site_table({"sites": {"domain": "a.com"}})


def test_build_site_table_default_section_has_no_domain():
    table = build_site_table({"default": {"domain": "ignored.com", "quality": 40}})
    assert table.default.domain is None
    assert table.default.quality == 40


def test_load_config_reads_yaml(tmp_path):
    path = write_config(tmp_path)
    config = load_config(path)

    assert config.origin == "http://origin.local:8080"
    assert config.port == 5000
    assert config.host == DEFAULT_CONFIG["host"]
    assert config.source == path

    example = config.sites.resolve("www.example.com")
    assert example is config.sites.default

    example = config.sites.resolve("example.com")
    assert example.domain == "example.com"
    assert example.quality == 70
    assert example.metadata == "none"
    assert example.rewrite_href_tags is False
    assert example.gravity == "auto"
    assert example.fit == "crop"

    other = config.sites.resolve("other.org")
    assert other.fit is None
    assert other.quality == 85

    assert config.sites.default.quality == 85
    assert config.sites.default.domain is None


def test_load_config_defaults_without_file(tmp_path):
    for config in (load_config(None), load_config(tmp_path / "missing.yaml")):
        assert config.origin == DEFAULT_CONFIG["origin"]
        assert config.port == DEFAULT_CONFIG["port"]
        assert config.sites.resolve("example.com") == DEFAULT_SITE


def test_load_config_errors_name_the_file(tmp_path):
    path = write_config(tmp_path, "- just\n- a list\n")
    with pytest.raises(ConfigError) as excinfo:
        load_config(path)
    assert str(path) in str(excinfo.value)

    path = write_config(tmp_path, "default:\n  quality: 500\n")
    with pytest.raises(ConfigError) as excinfo:
        load_config(path)
    assert excinfo.value.key == "quality"
    assert excinfo.value.source == path

    path = write_config(tmp_path, "default: [unclosed\n")
    with pytest.raises(ConfigError):
        load_config(path)
