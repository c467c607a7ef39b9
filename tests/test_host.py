"""
Tests for the Qt host glue, the sinks and the headless runner.
"""

import json
import sys

import pytest

from app.host import SceneHost
from app.main import run
from arbor.blend import FrameBatch
from arbor.control.config import DEFAULTS
from arbor.view.sink import QtTransformSink, RecordingSink


class TestSceneHost:
    def test_toggle_emits_state(self, qapp, small_config):
        host = SceneHost(small_config)
        seen = []
        host.stateChanged.connect(seen.append)
        host.toggle()

        assert seen[-1]["target"] == "assembled"
        assert host.getState()["target"] == "assembled"

    def test_set_assembled_only_emits_on_change(self, qapp, small_config):
        host = SceneHost(small_config)
        seen = []
        host.stateChanged.connect(seen.append)
        host.setAssembled(False)
        host.setAssembled(True)
        host.setAssembled(True)

        assert [state["target"] for state in seen] == ["assembled"]

    def test_step_emits_frames_and_batches(self, qapp, small_config):
        host = SceneHost(small_config)
        frames, batches = [], []
        host.frameReady.connect(frames.append)
        host.sink.batchReady.connect(batches.append)
        host.toggle()
        host.step(10.0)
        host.step(10.5)

        assert len(frames) == 2
        assert len(batches) == 2 * len(small_config["families"])
        assert all(isinstance(batch, FrameBatch) for batch in batches)
        assert host.engine.state()["elapsed"] == pytest.approx(0.5)
        assert host.engine.state()["families"]["star"]["progress"] > 0.0

    def test_timer_start_stop(self, qapp, small_config):
        host = SceneHost(small_config, fps=30)
        host.start()
        assert host.isRunning()
        host.stop()
        assert not host.isRunning()


class TestSinks:
    def test_qt_sink_counts_pushes(self, qapp):
        sink = QtTransformSink()
        received = []
        sink.batchReady.connect(received.append)
        sink.push("batch")

        assert sink.pushed == 1
        assert received == ["batch"]

    def test_recording_sink_history(self):
        sink = RecordingSink(history=2)

        class _Batch:
            def __init__(self, family):
                self.family = family

        for name in ("a", "b", "a"):
            sink.push(_Batch(name))

        assert sink.pushed == 3
        assert sorted(sink.families()) == ["a", "b"]
        assert len(sink.history) == 2
        sink.clear()
        assert sink.pushed == 0 and not sink.latest


class TestHeadlessRunner:
    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "small.json"
        overrides = {"families": {name: {"count": 3} for name in DEFAULTS["families"]}}
        path.write_text(json.dumps(overrides), encoding="utf-8")
        return path

    def test_runs_frames(self, qapp, config_file, capsys):
        code = run(["--frames", "30", "--fps", "30", "--seed", "3", "--config", str(config_file)])
        out = capsys.readouterr().out

        assert code == 0
        assert "-> assembled" in out
        assert "frame   30" in out

    def test_list_families(self, capsys):
        assert run(["--list"]) == 0
        out = capsys.readouterr().out

        for name in DEFAULTS["families"]:
            assert name in out

    def test_library_families_are_merged(self, qapp, tmp_path, config_file, capsys):
        library = tmp_path / "families"
        library.mkdir()
        comet = dict(DEFAULTS["families"]["star"], count=2)
        (library / "comet.json").write_text(json.dumps({"family": comet}), encoding="utf-8")

        assert run(["--config", str(config_file), "--library", str(library), "--list"]) == 0
        assert "comet" in capsys.readouterr().out

    def test_quiet_hides_diagnostics_and_restores_stdout(self, qapp, config_file, capsys):
        before = sys.stdout
        assert run(["--frames", "2", "--config", str(config_file), "--quiet"]) == 0
        out = capsys.readouterr().out

        assert sys.stdout is before
        assert "[Arbor][DEBUG]" not in out
        assert "frame    2" in out

    def test_bad_config_exits_with_error(self, qapp, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"families": {"star": {"tau": -1}}}), encoding="utf-8")

        assert run(["--config", str(path), "--frames", "1"]) == 2
