import logging
import os
import shutil
from pathlib import Path
from types import SimpleNamespace

import pytest

from folio.build import (
    BuildError,
    BuildResult,
    _format_error_message,
    build_site,
    load_config,
    load_data,
    render_documents,
)
from folio.errors import (
    ConfigError,
    CyclicIncludeError,
    DuplicatePermalinkError,
    MalformedFrontMatterError,
    UnboundVariableError,
    UnknownLayoutError,
    WriteError,
)


def create_site(tmp_path: Path) -> Path:
    site = tmp_path / "site"
    (site / "_layouts").mkdir(parents=True)
    (site / "_partials").mkdir()
    (site / "_data").mkdir()
    (site / "posts").mkdir()
    (site / "css").mkdir()

    (site / "folio.yaml").write_text(
        "title: Test\nurl: https://example.com\n", encoding="utf-8"
    )
    (site / "_data" / "nav.yaml").write_text(
        "- label: Home\n  url: /\n", encoding="utf-8"
    )
    (site / "_layouts" / "default.html.jinja").write_text(
        "<title>{{ page.title }} | {{ site.title }}</title>"
        "{% include 'nav.html.jinja' %}\n<main>{{ content }}</main>\n",
        encoding="utf-8",
    )
    (site / "_partials" / "nav.html.jinja").write_text(
        "<nav>{% for item in site.nav %}<a href=\"{{ url_for(item.url) }}\">"
        "{{ item.label }}</a>{% endfor %}</nav>",
        encoding="utf-8",
    )
    (site / "index.md").write_text("# Hello\n\nWelcome!", encoding="utf-8")
    (site / "posts" / "2024-01-01-old.md").write_text(
        "---\ntags: [x]\n---\n# Old\n\nFirst post.", encoding="utf-8"
    )
    (site / "posts" / "2024-02-01-new.md").write_text(
        "---\ntags: [x, y]\n---\n# New\n\nSecond post.", encoding="utf-8"
    )
    (site / "css" / "main.css").write_text("body { color: red; }", encoding="utf-8")
    return site


def read_tree(root: Path) -> dict[str, bytes]:
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def test_build_site_creates_output(tmp_path):
    site = create_site(tmp_path)
    out = tmp_path / "out"

    result = build_site(site, output_dir=out)

    assert isinstance(result, BuildResult)
    assert result.output_dir == out
    assert result.data["nav"][0]["label"] == "Home"
    assert sorted(read_tree(out)) == [
        "archive/index.html",
        "css/main.css",
        "index.html",
        "posts/new/index.html",
        "posts/old/index.html",
        "rss.xml",
        "sitemap.xml",
        "tags/index.html",
        "tags/x/index.html",
        "tags/y/index.html",
    ]
    assert [p.output_path for p in result.pages] == sorted(p.output_path for p in result.pages)

    home = (out / "index.html").read_text(encoding="utf-8")
    assert "<title>Hello | Test</title>" in home
    assert '<nav><a href="/">Home</a></nav>' in home
    assert '<h1 id="hello">Hello</h1>' in home
    assert (out / "css" / "main.css").read_bytes() == b"body { color: red; }"


def test_tag_page_lists_newest_first(tmp_path):
    site = create_site(tmp_path)
    out = tmp_path / "out"
    build_site(site, output_dir=out)

    tag_page = (out / "tags" / "x" / "index.html").read_text(encoding="utf-8")
    assert "<title>Tagged: x | Test</title>" in tag_page
    newer = tag_page.index('<a href="/posts/new/">New</a>')
    older = tag_page.index('<a href="/posts/old/">Old</a>')
    assert newer < older
    assert '<time datetime="2024-02-01">' in tag_page

    overview = (out / "tags" / "index.html").read_text(encoding="utf-8")
    assert '<a href="/tags/x/">x</a> (2)' in overview
    assert '<a href="/tags/y/">y</a> (1)' in overview


def test_tags_differing_by_case_share_one_page(tmp_path):
    site = create_site(tmp_path)
    (site / "posts" / "2024-01-01-old.md").write_text(
        "---\ntags: [python]\n---\n# Old\n\nFirst post.", encoding="utf-8"
    )
    (site / "posts" / "2024-02-01-new.md").write_text(
        "---\ntags: [Python, PYTHON]\n---\n# New\n\nSecond post.", encoding="utf-8"
    )
    out = tmp_path / "out"

    result = build_site(site, output_dir=out)

    assert list(result.index.tags) == ["PYTHON"]
    assert sorted(p.name for p in (out / "tags").iterdir()) == ["index.html", "python"]
    tag_page = (out / "tags" / "python" / "index.html").read_text(encoding="utf-8")
    assert '<a href="/posts/new/">New</a>' in tag_page
    assert '<a href="/posts/old/">Old</a>' in tag_page
    overview = (out / "tags" / "index.html").read_text(encoding="utf-8")
    assert '<a href="/tags/python/">PYTHON</a> (2)' in overview


def test_non_ascii_tags_get_their_own_pages(tmp_path):
    site = create_site(tmp_path)
    (site / "posts" / "2024-01-01-old.md").write_text(
        "---\ntags: [日本語]\n---\n# Old", encoding="utf-8"
    )
    (site / "posts" / "2024-02-01-new.md").write_text(
        "---\ntags: [русский]\n---\n# New", encoding="utf-8"
    )
    out = tmp_path / "out"

    build_site(site, output_dir=out)

    japanese = (out / "tags" / "日本語" / "index.html").read_text(encoding="utf-8")
    russian = (out / "tags" / "русский" / "index.html").read_text(encoding="utf-8")
    assert '<a href="/posts/old/">Old</a>' in japanese
    assert '<a href="/posts/new/">New</a>' in russian
    assert not (out / "tags" / "tag").exists()


def test_colliding_tag_slugs_get_numbered_pages(tmp_path):
    site = create_site(tmp_path)
    (site / "posts" / "2024-01-01-old.md").write_text(
        "---\ntags: [\"c++\"]\n---\n# Old", encoding="utf-8"
    )
    (site / "posts" / "2024-02-01-new.md").write_text(
        "---\ntags: [\"c#\"]\n---\n# New", encoding="utf-8"
    )
    out = tmp_path / "out"

    build_site(site, output_dir=out)
    first = read_tree(out)
    build_site(site, output_dir=out, jobs=1)

    assert read_tree(out) == first
    assert "<title>Tagged: c# | Test</title>" in first["tags/c/index.html"].decode()
    assert "<title>Tagged: c++ | Test</title>" in first["tags/c-2/index.html"].decode()
    overview = first["tags/index.html"].decode()
    assert '<a href="/tags/c-2/">c++</a> (1)' in overview


def test_impossible_front_matter_date_aborts_build(tmp_path):
    site = create_site(tmp_path)
    broken = site / "posts" / "leap.md"
    broken.write_text("---\ndate: 2024-02-30\n---\n# Leap", encoding="utf-8")
    out = tmp_path / "out"

    with pytest.raises(MalformedFrontMatterError) as excinfo:
        build_site(site, output_dir=out)

    assert excinfo.value.source_path == broken
    assert not out.exists()


def test_include_by_expression_aborts_build(tmp_path):
    site = create_site(tmp_path)
    layout = site / "_layouts" / "default.html.jinja"
    layout.write_text("{% include page.extra.p %}{{ content }}", encoding="utf-8")
    (site / "_partials" / "loop.html.jinja").write_text(
        "{% include page.extra.p %}", encoding="utf-8"
    )
    (site / "index.md").write_text("---\np: loop.html.jinja\n---\n# Hello", encoding="utf-8")
    out = tmp_path / "out"

    with pytest.raises(BuildError) as excinfo:
        build_site(site, output_dir=out)

    assert excinfo.value.source_path == layout
    assert "default.html.jinja" in str(excinfo.value)
    assert not out.exists()


def test_leftover_previous_output_only_warns(tmp_path, monkeypatch, caplog):
    site = create_site(tmp_path)
    out = tmp_path / "out"
    build_site(site, output_dir=out)
    real_rmtree = shutil.rmtree

    def failing_rmtree(path, *args, **kwargs):
        if Path(path).name.endswith(".previous"):
            raise PermissionError(13, "Permission denied")
        return real_rmtree(path, *args, **kwargs)

    monkeypatch.setattr("folio.build.shutil.rmtree", failing_rmtree)
    caplog.set_level(logging.WARNING, logger="folio")
    (site / "about.md").write_text("# About", encoding="utf-8")

    result = build_site(site, output_dir=out)

    assert result.output_dir == out
    assert (out / "about" / "index.html").exists()
    assert "Could not remove previous output" in caplog.text
    assert "Permission denied" in caplog.text


def test_unknown_layout_aborts_without_output(tmp_path):
    site = create_site(tmp_path)
    (site / "essay.md").write_text("---\nlayout: essay\n---\n# Essay", encoding="utf-8")
    out = tmp_path / "out"

    with pytest.raises(UnknownLayoutError) as excinfo:
        build_site(site, output_dir=out)

    assert excinfo.value.source_path == site / "essay.md"
    assert "essay" in str(excinfo.value)
    assert not out.exists()
    assert sorted(os.listdir(tmp_path)) == ["site"]


def test_failed_build_keeps_previous_output(tmp_path):
    site = create_site(tmp_path)
    out = tmp_path / "out"
    build_site(site, output_dir=out)
    before = read_tree(out)

    (site / "_partials" / "nav.html.jinja").write_text(
        "{% include 'footer.html.jinja' %}", encoding="utf-8"
    )
    (site / "_partials" / "footer.html.jinja").write_text(
        "{% include 'nav.html.jinja' %}", encoding="utf-8"
    )
    with pytest.raises(CyclicIncludeError):
        build_site(site, output_dir=out)

    assert read_tree(out) == before
    assert sorted(os.listdir(tmp_path)) == ["out", "site"]


def test_successful_build_replaces_previous_output(tmp_path):
    site = create_site(tmp_path)
    out = tmp_path / "out"
    out.mkdir()
    (out / "stale.html").write_text("old", encoding="utf-8")

    build_site(site, output_dir=out)

    assert not (out / "stale.html").exists()
    assert (out / "index.html").exists()
    assert sorted(os.listdir(tmp_path)) == ["out", "site"]


def test_build_is_deterministic_across_job_counts(tmp_path):
    site = create_site(tmp_path)
    for i in range(12):
        (site / "posts" / f"2023-03-{i + 1:02d}-note-{i}.md").write_text(
            f"---\ntags: [notes]\n---\n# Note {i}\n\nBody {i}.", encoding="utf-8"
        )

    build_site(site, output_dir=tmp_path / "serial", jobs=1)
    build_site(site, output_dir=tmp_path / "parallel", jobs=4)
    build_site(site, output_dir=tmp_path / "again", jobs=4)

    serial = read_tree(tmp_path / "serial")
    assert serial == read_tree(tmp_path / "parallel")
    assert serial == read_tree(tmp_path / "again")


def test_parallel_render_failure_aborts_build(tmp_path):
    site = create_site(tmp_path)
    (site / "_layouts" / "broken.html.jinja").write_text("{{ nothing }}", encoding="utf-8")
    for i in range(10):
        (site / "posts" / f"note-{i}.md").write_text(f"# Note {i}", encoding="utf-8")
    (site / "posts" / "bad.md").write_text("---\nlayout: broken\n---\n", encoding="utf-8")
    out = tmp_path / "out"

    with pytest.raises(UnboundVariableError) as excinfo:
        build_site(site, output_dir=out, jobs=4)

    assert excinfo.value.source_path == site / "posts" / "bad.md"
    assert not out.exists()


def test_render_documents_preserves_order_and_wraps_errors():
    class StubRenderer:
        def render(self, document, template):
            if document.path == Path("boom.md"):
                raise ValueError("boom")
            return document.path.name

    docs = [SimpleNamespace(path=Path(f"{i}.md"), layout="default") for i in range(8)]
    templates = {"default": object()}
    assert render_documents(StubRenderer(), docs, templates, jobs=4) == [f"{i}.md" for i in range(8)]

    docs.append(SimpleNamespace(path=Path("boom.md"), layout="default"))
    with pytest.raises(BuildError) as excinfo:
        render_documents(StubRenderer(), docs, templates, jobs=4)
    assert excinfo.value.source_path == Path("boom.md")
    assert excinfo.value.message == "ValueError: boom"
    assert isinstance(excinfo.value.original_error, ValueError)


def test_document_permalink_colliding_with_archive(tmp_path):
    site = create_site(tmp_path)
    (site / "old-archive.md").write_text("---\npermalink: /archive/\n---\n# Old", encoding="utf-8")

    with pytest.raises(DuplicatePermalinkError) as excinfo:
        build_site(site, output_dir=tmp_path / "out")

    assert excinfo.value.output_path == "archive/index.html"
    assert site / "old-archive.md" in {excinfo.value.source_path, excinfo.value.other_path}
    assert not (tmp_path / "out").exists()


def test_archive_and_feeds_can_be_disabled(tmp_path):
    site = create_site(tmp_path)
    out = tmp_path / "out"
    build_site(site, output_dir=out, config_overrides={"archive": False, "feeds": False})
    files = read_tree(out)
    assert "archive/index.html" not in files
    assert "rss.xml" not in files
    assert "sitemap.xml" not in files
    assert "tags/x/index.html" in files


def test_feeds_need_site_url(tmp_path):
    site = create_site(tmp_path)
    (site / "folio.yaml").write_text("title: Test\n", encoding="utf-8")
    out = tmp_path / "out"
    build_site(site, output_dir=out)
    assert not (out / "rss.xml").exists()
    assert not (out / "sitemap.xml").exists()


def test_rss_feed_contents(tmp_path):
    site = create_site(tmp_path)
    out = tmp_path / "out"
    build_site(site, output_dir=out)
    rss = (out / "rss.xml").read_text(encoding="utf-8")
    assert rss.index("https://example.com/posts/new/") < rss.index("https://example.com/posts/old/")
    assert "<title>Test</title>" in rss


def test_write_failure_cleans_up_staging(tmp_path):
    site = tmp_path / "site"
    site.mkdir()
    (site / "a").write_text("static file named a", encoding="utf-8")
    (site / "a.md").write_text("# A", encoding="utf-8")
    out = tmp_path / "out"

    with pytest.raises(WriteError) as excinfo:
        build_site(site, output_dir=out)

    assert excinfo.value.source_path == site / "a.md"
    assert "a/index.html" in str(excinfo.value)
    assert sorted(os.listdir(tmp_path)) == ["site"]


def test_drafts_are_built_on_request(tmp_path):
    site = create_site(tmp_path)
    (site / "posts" / "_wip.md").write_text("# WIP", encoding="utf-8")
    out = tmp_path / "out"

    build_site(site, output_dir=out)
    assert not (out / "posts" / "wip" / "index.html").exists()

    build_site(site, output_dir=out, include_drafts=True)
    assert (out / "posts" / "wip" / "index.html").exists()


def test_output_inside_source_is_not_loaded(tmp_path):
    site = create_site(tmp_path)
    out = site / "public"

    first = build_site(site, output_dir=out)
    second = build_site(site, output_dir=out)

    assert [p.output_path for p in first.pages] == [p.output_path for p in second.pages]
    assert not (out / "public").exists()


def test_default_output_dir_from_config(tmp_path):
    site = create_site(tmp_path)
    result = build_site(site)
    assert result.output_dir == site / "_site"
    assert (site / "_site" / "index.html").exists()

    again = build_site(site)
    assert len(again.pages) == len(result.pages)


def test_output_dir_must_not_contain_source(tmp_path):
    site = create_site(tmp_path)
    with pytest.raises(ConfigError):
        build_site(site, output_dir=site)
    with pytest.raises(ConfigError):
        build_site(site, output_dir=tmp_path)


def test_missing_source_dir(tmp_path):
    with pytest.raises(ConfigError):
        build_site(tmp_path / "nowhere")


def test_load_config_defaults_and_validation(tmp_path):
    config = load_config(tmp_path)
    assert config["output_dir"] == "_site"
    assert config["default_layout"] == "default"
    assert config["jobs"] == 4

    (tmp_path / "folio.yaml").write_text("jobs: 2\ntitle: Mine\n", encoding="utf-8")
    config = load_config(tmp_path)
    assert config["jobs"] == 2
    assert config["title"] == "Mine"


@pytest.mark.parametrize(
    "text",
    [
        "- not\n- a mapping\n",
        "title: [unclosed\n",
        "released: 2024-02-30\n",
        "jobs: 0\n",
        "jobs: many\n",
        "default_layout: ''\n",
    ],
)
def test_load_config_rejects_bad_values(tmp_path, text):
    (tmp_path / "folio.yaml").write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_config(tmp_path)
    assert excinfo.value.source_path == tmp_path / "folio.yaml"


def test_load_data_merges_site_yaml(tmp_path):
    assert load_data(tmp_path) == {}
    data_dir = tmp_path / "_data"
    data_dir.mkdir()
    (data_dir / "site.yaml").write_text("title: From Data\n", encoding="utf-8")
    (data_dir / "authors.yaml").write_text("- name: Sam\n", encoding="utf-8")
    (data_dir / "empty.yaml").write_text("", encoding="utf-8")
    assert load_data(tmp_path) == {"title": "From Data", "authors": [{"name": "Sam"}]}

    (data_dir / "site.yaml").write_text("- nope\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_data(tmp_path)


def test_build_error_exception():
    source = Path("/some/path/page.md")
    error = BuildError(source, "Something went wrong", ValueError("original"))
    assert error.source_path == source
    assert error.message == "Something went wrong"
    assert isinstance(error.original_error, ValueError)
    assert str(error) == "/some/path/page.md: Something went wrong"


def test_format_error_message():
    assert "Type error" in _format_error_message(TypeError("bad operand"))
    assert "Attribute error" in _format_error_message(AttributeError("no attribute 'bar'"))
    assert _format_error_message(RuntimeError("something else")) == "RuntimeError: something else"
