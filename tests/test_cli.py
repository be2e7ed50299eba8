"""Tests for prerender.cli, prerender.cli_config and prerender.cli_output."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from prerender.cli import _cli_overrides, _parse_args, main
from prerender.cli_config import find_config_file, load_config_file, load_env, resolve_config
from prerender.cli_output import copy_static_assets, output_filename, write_snapshot
from prerender.config import ConfigError, CrawlSettings
from prerender.document import PrerenderResult, SnapshotResult


def _snapshot(url: str = "http://localhost:4173/about", html: str = "<html>about</html>") -> SnapshotResult:
    return SnapshotResult(url=url, html=html, title=None, meta={}, status_code=200, timestamp=1)


class TestOutputFilename:
    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/", "index.html"),
            ("", "index.html"),
            ("/about", "about.html"),
            ("/docs/", "docs/index.html"),
            ("/blog/post", "blog/post.html"),
            ("/legacy/page.html", "legacy/page.html"),
            ("/caf%C3%A9", "café.html"),
            ("/../etc/passwd", "etc/passwd.html"),
        ],
    )
    def test_nested(self, path, expected):
        assert output_filename(f"http://localhost:4173{path}") == expected

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/", "index.html"),
            ("/about", "about.html"),
            ("/blog/post", "blog-post.html"),
            ("/docs/", "docs.html"),
            ("/legacy/page.html", "legacy-page.html"),
        ],
    )
    def test_flat(self, path, expected):
        assert output_filename(f"http://localhost:4173{path}", flat=True) == expected


class TestWriteSnapshot:
    def test_nested(self, tmp_path):
        path = write_snapshot(_snapshot("http://h/blog/post"), tmp_path)
        assert path == tmp_path / "blog" / "post.html"
        assert path.read_text(encoding="utf-8") == "<html>about</html>"

    def test_flat(self, tmp_path):
        path = write_snapshot(_snapshot("http://h/blog/post"), str(tmp_path), flat=True)
        assert path == tmp_path / "blog-post.html"


class TestCopyStaticAssets:
    def test_copies_tree(self, tmp_path):
        dist = tmp_path / "dist"
        (dist / "assets").mkdir(parents=True)
        (dist / "index.html").write_text("<html>shell</html>")
        (dist / "assets" / "app.js").write_text("console.log(1)")
        out = tmp_path / "out"
        out.mkdir()
        (out / "stale.txt").write_text("kept")

        assert copy_static_assets(dist, out) == out
        assert (out / "assets" / "app.js").read_text() == "console.log(1)"
        assert (out / "index.html").read_text() == "<html>shell</html>"
        assert (out / "stale.txt").read_text() == "kept"

    def test_nested_output_is_not_copied_into_itself(self, tmp_path):
        dist = tmp_path / "dist"
        dist.mkdir()
        (dist / "index.html").write_text("x")
        out = dist / "prerendered"

        copy_static_assets(str(dist), str(out))
        assert (out / "index.html").read_text() == "x"
        assert not (out / "prerendered").exists()

    def test_missing_serve_dir(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Serve directory not found"):
            copy_static_assets(tmp_path / "missing", tmp_path / "out")


class TestLoadEnv:
    def test_loads_local_env(self, tmp_path):
        (tmp_path / ".env").write_text("PRERENDER_SERVER_URL=http://x\n")
        loader = MagicMock(return_value=True)
        assert load_env(cwd=tmp_path, load_env=loader) == tmp_path / ".env"
        loader.assert_called_once_with(tmp_path / ".env")

    def test_no_env_file(self, tmp_path):
        loader = MagicMock()
        assert load_env(cwd=tmp_path, load_env=loader) is None
        loader.assert_not_called()


class TestConfigFiles:
    def test_find_default_file(self, tmp_path):
        assert find_config_file(tmp_path) is None
        (tmp_path / "prerender.config.json").write_text("{}")
        assert find_config_file(tmp_path) == tmp_path / "prerender.config.json"

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "c.json"
        path.write_text("{nope")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_config_file(path)

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "c.json"
        path.write_text("[]")
        with pytest.raises(ConfigError, match="JSON object"):
            load_config_file(path)


class TestResolveConfig:
    def test_defaults(self, tmp_path):
        config, source = resolve_config(None, {}, cwd=tmp_path, environ={})
        assert source == "defaults"
        assert config.server_url is None
        assert config.serve_dir == "dist"

    def test_precedence(self, tmp_path):
        path = tmp_path / "prerender.config.json"
        path.write_text(json.dumps({"concurrency": 3, "timeout": 9000, "serve_dir": "build"}))
        config, source = resolve_config(
            None,
            {"concurrency": 7, "timeout": None},
            cwd=tmp_path,
            environ={"PRERENDER_SERVER_URL": "http://env"},
        )
        assert source == str(path)
        assert config.concurrency == 7
        assert config.timeout == 9000
        assert config.serve_dir == "build"
        assert config.server_url == "http://env"

    def test_file_server_url_beats_env(self, tmp_path):
        (tmp_path / "cfg.json").write_text(json.dumps({"server_url": "http://file"}))
        config, _ = resolve_config("cfg.json", {}, cwd=tmp_path, environ={"PRERENDER_SERVER_URL": "http://env"})
        assert config.server_url == "http://file"

    def test_cli_crawl_keys_merge_into_file_value(self, tmp_path):
        (tmp_path / "prerender.config.json").write_text(json.dumps({"crawl_links": {"depth": 5}}))
        config, _ = resolve_config(None, {"crawl_links": {"concurrency": 2}}, cwd=tmp_path, environ={})
        assert config.crawl_settings == CrawlSettings(depth=5, concurrency=2)

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            resolve_config("missing.json", {}, cwd=tmp_path, environ={})


class TestParseArgs:
    def test_defaults_are_unset(self):
        args = _parse_args([])
        assert args.config is None
        assert args.concurrency is None
        assert args.auto_fallback_network_idle is None
        assert args.no_crawl is False
        assert args.verbose is False

    def test_overrides(self):
        args = _parse_args(
            [
                "--server-url", "http://localhost:4173",
                "--strip", "meta", "title",
                "--block-domains", "youtube.com", "googlevideo.com",
                "--no-auto-fallback-network-idle",
                "--crawl-depth", "1",
                "--wait-until", "networkidle",
            ]
        )
        overrides = _cli_overrides(args)
        assert overrides["server_url"] == "http://localhost:4173"
        assert overrides["strip"] == ["meta", "title"]
        assert overrides["block_domains"] == ["youtube.com", "googlevideo.com"]
        assert overrides["auto_fallback_network_idle"] is False
        assert overrides["crawl_links"] == {"depth": 1}
        assert overrides["wait_until"] == "networkidle"

    def test_no_crawl(self):
        assert _cli_overrides(_parse_args(["--no-crawl", "--crawl-depth", "2"]))["crawl_links"] is False

    def test_invalid_choice(self):
        with pytest.raises(SystemExit):
            _parse_args(["--strip", "footer"])


class TestMain:
    @pytest.fixture
    def project(self, tmp_path, monkeypatch) -> Path:
        monkeypatch.chdir(tmp_path)
        dist = tmp_path / "dist"
        (dist / "assets").mkdir(parents=True)
        (dist / "index.html").write_text("<html>shell</html>")
        (dist / "assets" / "app.js").write_text("console.log(1)")
        return tmp_path

    def test_dry_run(self, project):
        with patch("prerender.cli.prerender_async", new_callable=AsyncMock) as run:
            assert main(["--dry-run", "--server-url", "http://localhost:4173"]) == 0
        run.assert_not_awaited()
        assert not (project / "prerendered").exists()

    def test_invalid_config_returns_1(self, project):
        assert main(["--dry-run", "--serve-dir", "same", "--out-dir", "same"]) == 1

    def test_invalid_config_copies_nothing(self, project):
        with patch("prerender.cli.prerender_async", new_callable=AsyncMock) as run:
            assert main(["--serve-dir", "dist", "--out-dir", "dist", "--server-url", "http://x"]) == 1
        run.assert_not_awaited()

    def test_run_copies_assets_then_writes_snapshots(self, project):
        async def fake_run(config, writer):
            assert (project / "out" / "assets" / "app.js").is_file()
            writer(_snapshot("http://localhost:4173/about"))
            writer(_snapshot("http://localhost:4173/", "<html>rendered</html>"))
            return PrerenderResult(stats={"total_pages": 2, "discovered_routes": 2, "crawl_time_ms": 5})

        with patch("prerender.cli.prerender_async", side_effect=fake_run) as run:
            code = main(["--server-url", "http://localhost:4173", "-o", "out", "--crawl-depth", "1"])

        assert code == 0
        config = run.call_args.args[0]
        assert config.crawl_settings == CrawlSettings(depth=1, concurrency=3)
        assert (project / "out" / "about.html").read_text(encoding="utf-8") == "<html>about</html>"
        assert (project / "out" / "index.html").read_text(encoding="utf-8") == "<html>rendered</html>"
        assert (project / "out" / "assets" / "app.js").read_text() == "console.log(1)"

    def test_missing_serve_dir_returns_1(self, project):
        with patch("prerender.cli.prerender_async", new_callable=AsyncMock) as run:
            assert main(["--server-url", "http://localhost:4173", "-s", "nowhere"]) == 1
        run.assert_not_awaited()

    def test_failure_returns_1(self, project):
        with patch("prerender.cli.prerender_async", new_callable=AsyncMock, side_effect=RuntimeError("boom")):
            assert main(["--server-url", "http://localhost:4173"]) == 1

    def test_interrupt_returns_130(self, project):
        with patch("prerender.cli.prerender_async", new_callable=AsyncMock, side_effect=KeyboardInterrupt):
            assert main(["--server-url", "http://localhost:4173"]) == 130
