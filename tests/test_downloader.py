"""
Tests for VideoDownloader (file delivery used by the CLI) and the small
helpers around it: filenames, scratch stores, CLI exit codes.
"""
import argparse
import asyncio
import json
import os
import time

import pytest

from conftest import CDN, PAYLOADS, VIDEO_ID, FakeExtractor, FakeFetcher, FakeMuxer
from tuberelay import cli
from tuberelay.downloader import VideoDownloader
from tuberelay.errors import FormatNotFound, MergeFailed, UpstreamTimeout
from tuberelay.planner import DeliveryStrategy
from tuberelay.utils.filenames import content_disposition, media_type_for, safe_filename
from tuberelay.utils.config import AppConfig
from tuberelay.utils.scratch import StoreScope


class TestSafeFilename:
    def test_strips_unsafe_characters(self):
        assert safe_filename('Rick Astley - Never "Gonna" Give/You Up?') == "Rick_Astley_-_Never_Gonna_GiveYou_Up"

    def test_non_ascii_removed(self):
        assert safe_filename("Café déjà vu") == "Caf_dj_vu"

    def test_truncated(self):
        assert safe_filename("a" * 300, max_length=100) == "a" * 100

    def test_fallback_name(self):
        assert safe_filename("日本語のタイトル") == "video"
        assert safe_filename("") == "video"
        assert safe_filename(None) == "video"

    def test_content_disposition(self):
        assert content_disposition("My Video", "webm") == 'attachment; filename="My_Video.webm"'

    def test_media_types(self):
        assert media_type_for("mp4") == "video/mp4"
        assert media_type_for("WEBM") == "video/webm"
        assert media_type_for("flv") == "application/octet-stream"


class TestStoreScope:
    def test_release_all_is_idempotent(self, tmp_path):
        scope = StoreScope(tmp_path / "scratch")
        stores = [scope.create("video", "mp4"), scope.create("audio", ".m4a")]
        assert all(s.path.exists() for s in stores)
        assert stores[0].path.suffix == ".mp4"
        assert stores[0].path.name.startswith(f"video-{scope.token}-")

        scope.release_all()
        scope.release_all()
        assert all(s.released for s in stores)
        assert list((tmp_path / "scratch").iterdir()) == []

    def test_released_store_reports_zero_size(self, tmp_path):
        scope = StoreScope(tmp_path)
        store = scope.create("output", "mp4")
        store.path.write_bytes(b"data")
        assert store.size() == 4
        scope.release_all()
        assert not store.path.exists()
        assert store.size() == 0


class TestDownloadToDirectory:
    def test_merged_download(self, downloader, temp_dir, scratch_dir):
        path, plan = asyncio.run(downloader.download(VIDEO_ID, "137", temp_dir))

        assert plan.strategy is DeliveryStrategy.ACQUIRE_AND_MERGE
        assert os.path.basename(path) == "Test_Video_Part_1.mp4"
        with open(path, "rb") as f:
            assert f.read() == PAYLOADS[f"{CDN}/137"] + PAYLOADS[f"{CDN}/251"]
        assert os.listdir(temp_dir) == ["Test_Video_Part_1.mp4"]
        assert list(scratch_dir.iterdir()) == []

    def test_direct_download(self, downloader, temp_dir):
        path, plan = asyncio.run(downloader.download(VIDEO_ID, "18", temp_dir))
        assert plan.strategy is DeliveryStrategy.DIRECT_STREAM
        with open(path, "rb") as f:
            assert f.read() == PAYLOADS[f"{CDN}/18"]

    def test_existing_file_is_not_overwritten(self, downloader, temp_dir):
        target = os.path.join(temp_dir, "Test_Video_Part_1.mp4")
        with open(target, "wb") as f:
            f.write(b"keep me")

        with pytest.raises(FileExistsError):
            asyncio.run(downloader.download(VIDEO_ID, "18", temp_dir))
        with open(target, "rb") as f:
            assert f.read() == b"keep me"

    def test_failed_download_leaves_no_partial_file(self, app_config, temp_dir):
        downloader = VideoDownloader(
            config=app_config,
            extractor=FakeExtractor(app_config),
            fetcher=FakeFetcher(),
            muxer=FakeMuxer(fail=True),
        )
        with pytest.raises(MergeFailed):
            asyncio.run(downloader.download(VIDEO_ID, "137", temp_dir))
        assert os.listdir(temp_dir) == []

    def test_unknown_format(self, downloader, temp_dir):
        with pytest.raises(FormatNotFound):
            asyncio.run(downloader.download(VIDEO_ID, "999", temp_dir))


class TestCli:
    def _args(self, output_dir, **kwargs):
        values = {"url": VIDEO_ID, "format": None, "output_dir": output_dir, "list": False, "verbose": False}
        values.update(kwargs)
        return argparse.Namespace(**values)

    def test_list_only(self, downloader, temp_dir, capsys):
        code = asyncio.run(cli._run(downloader, self._args(temp_dir, list=True)))
        assert code == 0
        out = capsys.readouterr().out
        assert "Test Video: Part 1" in out
        assert "1080p60" in out
        assert os.listdir(temp_dir) == []

    def test_defaults_to_best_format(self, downloader, temp_dir):
        output_dir = os.path.join(temp_dir, "downloads")
        code = asyncio.run(cli._run(downloader, self._args(output_dir)))
        assert code == 0
        assert os.listdir(output_dir) == ["Test_Video_Part_1.mp4"]

    def test_delivery_error_exit_code(self, downloader, temp_dir):
        code = asyncio.run(cli._run(downloader, self._args(temp_dir, format="999")))
        assert code == 2

    def test_format_size(self):
        assert cli._format_size(None) == "?"
        assert cli._format_size(50_000_000) == "47.7 MB"

    def test_init_config_writes_defaults(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.json"
        monkeypatch.setattr("tuberelay.utils.config.CONFIG_PATH", config_file)
        assert cli.init_config() == 0
        data = json.loads(config_file.read_text(encoding="utf-8"))
        assert data["resolve_timeout_sec"] == AppConfig().resolve_timeout_sec
        assert data["use_proxy"] is False

    def test_init_config_keeps_existing_values(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"ffmpeg_path": "/opt/ffmpeg"}), encoding="utf-8")
        monkeypatch.setattr("tuberelay.utils.config.CONFIG_PATH", config_file)
        assert cli.init_config() == 0
        data = json.loads(config_file.read_text(encoding="utf-8"))
        assert data["ffmpeg_path"] == "/opt/ffmpeg"
        assert "scratch_dir" in data

    def test_main_init_config_needs_no_url(self, tmp_path, monkeypatch):
        monkeypatch.setattr("tuberelay.utils.config.CONFIG_PATH", tmp_path / "config.json")
        monkeypatch.setattr("sys.argv", ["tuberelay", "--init_config"])
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code == 0
        assert (tmp_path / "config.json").exists()

    def test_main_requires_url(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["tuberelay", "--list"])
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code == 2


class TestResolveDeadline:
    def test_deadline_handed_to_extractor(self, downloader):
        before = time.monotonic()
        asyncio.run(downloader.get_catalog(VIDEO_ID))
        deadline = downloader.extractor.deadlines[0]
        timeout = downloader.config.resolve_timeout_sec
        assert before + timeout <= deadline <= time.monotonic() + timeout

    def test_hung_lookups_do_not_slow_merged_delivery(self, scratch_dir):
        hung_cfg = AppConfig(scratch_dir=str(scratch_dir), resolve_timeout_sec=0.05)
        hung = VideoDownloader(
            config=hung_cfg, extractor=FakeExtractor(hung_cfg, delay=1.0), fetcher=FakeFetcher(), muxer=FakeMuxer()
        )
        healthy_cfg = AppConfig(scratch_dir=str(scratch_dir), resolve_retries=1, retry_backoff_sec=0)
        healthy = VideoDownloader(
            config=healthy_cfg, extractor=FakeExtractor(healthy_cfg), fetcher=FakeFetcher(), muxer=FakeMuxer()
        )

        async def scenario():
            results = await asyncio.gather(
                *(hung.get_catalog(VIDEO_ID) for _ in range(8)), return_exceptions=True
            )
            started = time.monotonic()
            _, delivery = await healthy.prepare_delivery(VIDEO_ID, "137")
            received = b""
            async for chunk in delivery.iter_bytes():
                received += chunk
            return results, received, time.monotonic() - started

        results, received, elapsed = asyncio.run(scenario())
        assert all(isinstance(r, UpstreamTimeout) for r in results)
        assert received == PAYLOADS[f"{CDN}/137"] + PAYLOADS[f"{CDN}/251"]
        assert elapsed < 0.5
        assert list(scratch_dir.iterdir()) == []
