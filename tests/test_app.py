import asyncio

import pytest

from mdlive.app import PreviewApplication
from mdlive.core.config_manager import ServerSettings
from mdlive.main import build_parser
from mdlive.preview.watcher_registry import WatcherRegistry

from conftest import RecordingWatchFactory, write_file


def make_app(target, **settings):
    values = {'host': '127.0.0.1', 'port': 0, 'open_browser': False}
    values.update(settings)
    app = PreviewApplication(ServerSettings(**values), target)
    app.manager.watcher_registry = WatcherRegistry(watch_factory=RecordingWatchFactory())
    return app


async def wait_until(predicate, timeout=5.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


class TestPreviewApplication:
    def test_folder_target_picks_first_markdown_file(self, workspace_root):
        write_file(workspace_root / "b.md", "# B")
        write_file(workspace_root / "a.markdown", "# A")
        write_file(workspace_root / "0.txt", "plain")

        document = make_app(workspace_root)._initial_document()

        assert document.file_name == "a.markdown"

    def test_file_target(self, workspace_root):
        path = write_file(workspace_root / "notes.md", "# notes")

        app = make_app(path)

        assert app.folder == workspace_root.resolve()
        assert app._initial_document().get_text() == "# notes"

    def test_empty_folder_has_no_initial_document(self, workspace_root):
        assert make_app(workspace_root)._initial_document() is None

    @pytest.mark.asyncio
    async def test_auto_open_for_new_document(self, workspace_root):
        app = make_app(workspace_root, open_preview_on_open=True)
        document = app.workspace.update_document(workspace_root / "new.md", "# new")

        await app._auto_open(document)

        assert app.manager.session.document_id == document.uri
        app.manager.dispose()

    @pytest.mark.asyncio
    async def test_run_follows_saved_documents(self, workspace_root):
        write_file(workspace_root / "a.md", "# A")
        b_path = write_file(workspace_root / "b.md", "# B")
        app = make_app(workspace_root, follow_active=True)

        task = asyncio.create_task(app.run())
        try:
            await wait_until(lambda: app.manager.session is not None)
            assert app.manager.session.document_id.endswith("/a.md")

            await app._on_document_saved(b_path, "# B saved")
            await wait_until(lambda: app.manager.session.document_id.endswith("/b.md"))

            assert "# B saved" in app.server.panel.html
        finally:
            app.monitor.stop()
            await asyncio.wait_for(task, timeout=10)

        assert app.manager.session is None
        assert app.server.panel is None


class TestCommandLine:
    def test_defaults_leave_settings_untouched(self):
        args = build_parser().parse_args([])

        assert str(args.path) == "."
        assert args.port is None
        assert args.follow_active is None
        assert args.open_browser is None

    def test_flags(self):
        args = build_parser().parse_args(
            ["docs/readme.md", "--port", "9000", "--follow", "--no-browser", "--log-level", "DEBUG"]
        )

        assert args.path.name == "readme.md"
        assert args.port == 9000
        assert args.follow_active is True
        assert args.open_browser is False
        assert args.log_level == "DEBUG"
