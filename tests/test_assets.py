import pytest

from mdlive.preview.assets import asset_paths, load_assets, resolve_path, watch_paths

from conftest import write_file


class TestAssetPaths:
    def test_paths_resolve_against_base(self, workspace_root):
        config = {"css": ["styles/a.css"], "js": ["../shared/b.js"], "initializer": "init.js"}

        paths = asset_paths(workspace_root, config)

        root = workspace_root.resolve()
        assert paths['css'] == [root / "styles" / "a.css"]
        assert paths['js'] == [root.parent / "shared" / "b.js"]
        assert paths['initializer'] == [root / "init.js"]

    def test_unusable_entries_are_skipped(self, workspace_root):
        config = {"css": ["", "  ", 5, "ok.css"], "js": "b.js", "initializer": ""}

        paths = asset_paths(workspace_root, config)

        assert paths == {'css': [workspace_root.resolve() / "ok.css"], 'js': [], 'initializer': []}

    def test_resolve_path_rejects_non_strings(self, workspace_root):
        assert resolve_path(workspace_root, None) is None
        assert resolve_path(workspace_root, "a.css") == workspace_root.resolve() / "a.css"

    def test_watch_paths_include_config(self, workspace_root):
        config_path = workspace_root / ".mdlive.json"
        config = {"css": ["a.css", "a.css"], "initializer": "init.js"}

        paths = watch_paths(workspace_root, config, config_path)

        root = workspace_root.resolve()
        assert paths == {root / "a.css", root / "init.js", config_path}

    def test_watch_paths_without_config(self, workspace_root):
        assert watch_paths(workspace_root, {}, None) == set()


class TestLoadAssets:
    @pytest.mark.asyncio
    async def test_reads_assets_in_order(self, workspace_root):
        write_file(workspace_root / "one.css", "h1 {}")
        write_file(workspace_root / "two.css", "h2 {}")
        write_file(workspace_root / "plugin.js", "var x = 1;")
        write_file(workspace_root / "init.js", "window.initMarkdownIt = function () {};")
        config = {"css": ["one.css", "two.css"], "js": ["plugin.js"], "initializer": "init.js"}

        assets = await load_assets(workspace_root, config)

        assert [a.content for a in assets.styles] == ["h1 {}", "h2 {}"]
        assert [a.path.name for a in assets.scripts] == ["plugin.js"]
        assert assets.initializer.content.startswith("window.initMarkdownIt")

    @pytest.mark.asyncio
    async def test_missing_assets_are_left_out(self, workspace_root, caplog):
        write_file(workspace_root / "present.css", "p {}")
        config = {"css": ["missing.css", "present.css"], "initializer": "missing.js"}

        assets = await load_assets(workspace_root, config)

        assert [a.path.name for a in assets.styles] == ["present.css"]
        assert assets.scripts == []
        assert assets.initializer is None
        assert "Skipping asset" in caplog.text

    @pytest.mark.asyncio
    async def test_empty_config(self, workspace_root):
        assets = await load_assets(workspace_root, {})

        assert assets.styles == []
        assert assets.scripts == []
        assert assets.initializer is None
