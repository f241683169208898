"""
Tests for the lifecycle controller — command sequencing against the mock
runtime.
"""

import shutil

import pytest

from appctl.core.errors import ManifestError, PreconditionError, RuntimeCallError
from appctl.core.services.hidden_service import SyncState
from appctl.core.services.lifecycle import DEFAULT_TORRC_TEMPLATE, AppLifecycle


def _argvs(runtime, app_id: str) -> list[list[str]]:
    return [c.argv for c in runtime.calls_for(app_id)]


def _publish_on_tor_start(config):
    def hook(call):
        if call.argv == ["up", "--detach", "tor_server"]:
            path = config.hidden_service_file(call.app_id)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(f"{call.app_id}123.onion\n")

    return hook


# ═══════════════════════════════════════════════════════════════════
#  install / uninstall
# ═══════════════════════════════════════════════════════════════════


class TestInstall:
    def test_round_trip(self, lifecycle, config, make_app):
        make_app("lnd")
        lifecycle.install("lnd")
        assert lifecycle.registry.list() == {"lnd"}
        assert config.app_data_path("lnd").is_dir()

        lifecycle.uninstall("lnd")
        assert lifecycle.registry.list() == set()
        assert not config.app_data_path("lnd").exists()

    def test_copies_files_without_bookkeeping(self, lifecycle, config, make_app):
        make_app("lnd", extra_files={"lnd.conf.template": "alias=$APP_ID\n"})
        lifecycle.install("lnd", skip_start=True)

        data = config.app_data_path("lnd")
        assert (data / "app.yml").is_file()
        assert (data / "docker-compose.yml").is_file()
        assert not (data / ".gitkeep").exists()
        assert (data / "lnd.conf").read_text() == "alias=lnd\n"

    def test_default_torrc(self, lifecycle, config, make_app):
        make_app("lnd")
        lifecycle.install("lnd", skip_start=True)

        data = config.app_data_path("lnd")
        assert (data / "torrc.template").read_text() == DEFAULT_TORRC_TEMPLATE
        assert (data / "torrc").read_text() == (
            "HiddenServiceDir /data/app-lnd\n"
            "HiddenServicePort 80 lnd_app_proxy_1:8080\n"
        )

    def test_own_torrc_template_kept(self, lifecycle, config, make_app):
        make_app("lnd", extra_files={"torrc.template": "HiddenServiceDir /custom/$APP_ID\n"})
        lifecycle.install("lnd", skip_start=True)
        assert (config.app_data_path("lnd") / "torrc").read_text() == "HiddenServiceDir /custom/lnd\n"

    def test_sequence(self, lifecycle, runtime, config, make_app):
        make_app("lnd", proxy=True)
        runtime.add_hook(_publish_on_tor_start(config))

        lifecycle.install("lnd")

        assert _argvs(runtime, "lnd") == [
            ["pull"],
            ["up", "--detach", "app_proxy"],
            ["up", "--detach", "tor_server"],
            ["up", "--detach"],
        ]
        assert lifecycle.last_sync["lnd"].trace == [SyncState.WAITING, SyncState.READY]

    def test_project_env_and_fragments(self, lifecycle, runtime, config, make_app):
        make_app("lnd", proxy=True)
        lifecycle.install("lnd", skip_start=True)

        pull = runtime.calls_for("lnd")[0]
        assert pull.env["APP_ID"] == "lnd"
        assert len(pull.env["APP_SEED"]) == 64
        assert [f.name for f in pull.fragments] == [
            "docker-compose.app_proxy.yml",
            "docker-compose.tor.yml",
            "docker-compose.common.yml",
            "docker-compose.yml",
        ]

    def test_rerender_after_hidden_service_ready(self, lifecycle, runtime, config, make_app):
        make_app("lnd", extra_files={"onion.txt.template": "$APP_HIDDEN_SERVICE\n"})
        runtime.add_hook(_publish_on_tor_start(config))

        lifecycle.install("lnd")

        up = runtime.calls_for("lnd")[-1]
        assert up.argv == ["up", "--detach"]
        assert up.env["APP_HIDDEN_SERVICE"] == "lnd123.onion"
        assert (config.app_data_path("lnd") / "onion.txt").read_text() == "lnd123.onion\n"

    def test_skip_start(self, lifecycle, runtime, make_app):
        make_app("lnd")
        lifecycle.install("lnd", skip_start=True)
        assert _argvs(runtime, "lnd") == [["pull"]]
        assert lifecycle.registry.list() == {"lnd"}

    def test_sync_timeout_does_not_fail_install(self, lifecycle, runtime, make_app):
        make_app("lnd")
        lifecycle.install("lnd")
        assert lifecycle.last_sync["lnd"].state is SyncState.TIMED_OUT
        assert _argvs(runtime, "lnd")[-1] == ["up", "--detach"]
        assert "lnd" in lifecycle.registry.list()

    def test_not_in_repo(self, lifecycle, runtime, config):
        with pytest.raises(PreconditionError, match="not found in app repo"):
            lifecycle.install("ghost")
        assert runtime.call_count == 0
        assert not config.app_data_path("ghost").exists()

    def test_invalid_id(self, lifecycle):
        with pytest.raises(PreconditionError, match="not a valid app id"):
            lifecycle.install("../etc")

    def test_runtime_failure_aborts_before_registration(self, lifecycle, runtime, config, make_app):
        make_app("lnd")
        runtime.set_failure("pull", error="no such image", return_code=18)

        with pytest.raises(RuntimeCallError) as exc_info:
            lifecycle.install("lnd")

        assert exc_info.value.returncode == 18
        assert lifecycle.registry.list() == set()
        assert not config.app_data_path("lnd").exists()

    def test_bad_manifest_aborts(self, lifecycle, runtime, config, make_app):
        app_dir = make_app("lnd")
        (app_dir / "app.yml").write_text("version: 1.0.0\n")
        with pytest.raises(ManifestError):
            lifecycle.install("lnd")
        assert runtime.call_count == 0
        assert lifecycle.registry.list() == set()


class TestUninstall:
    def test_sequence(self, lifecycle, runtime, make_app):
        make_app("lnd")
        lifecycle.install("lnd", skip_start=True)
        runtime.reset()

        lifecycle.uninstall("lnd")
        assert _argvs(runtime, "lnd") == [
            ["rm", "--force", "--stop"],
            ["down", "--rmi", "all", "--remove-orphans"],
        ]

    def test_not_installed(self, lifecycle, runtime):
        with pytest.raises(PreconditionError, match="not installed"):
            lifecycle.uninstall("lnd")
        assert runtime.call_count == 0

    def test_runtime_failure_keeps_registration(self, lifecycle, runtime, config, make_app):
        make_app("lnd")
        lifecycle.install("lnd", skip_start=True)
        runtime.set_failure("down")

        with pytest.raises(RuntimeCallError):
            lifecycle.uninstall("lnd")
        assert lifecycle.registry.list() == {"lnd"}
        assert config.app_data_path("lnd").is_dir()

    def test_broken_manifest_still_uninstalls(self, lifecycle, config, make_app):
        make_app("lnd")
        lifecycle.install("lnd", skip_start=True)
        (config.app_data_path("lnd") / "app.yml").unlink()
        (config.repo_path("lnd") / "app.yml").unlink()

        lifecycle.uninstall("lnd")
        assert lifecycle.registry.list() == set()


# ═══════════════════════════════════════════════════════════════════
#  start / stop / restart
# ═══════════════════════════════════════════════════════════════════


class TestStartStop:
    def test_start_requires_installed(self, lifecycle, make_app):
        make_app("lnd")
        with pytest.raises(PreconditionError, match="not installed"):
            lifecycle.start("lnd")

    def test_start(self, lifecycle, runtime, config, make_app):
        make_app("lnd")
        lifecycle.install("lnd", skip_start=True)
        runtime.reset()
        runtime.add_hook(_publish_on_tor_start(config))

        lifecycle.start("lnd")
        assert _argvs(runtime, "lnd") == [
            ["up", "--detach", "tor_server"],
            ["up", "--detach"],
        ]

    def test_start_without_torrc(self, lifecycle, runtime, config, make_app):
        make_app("lnd")
        lifecycle.install("lnd", skip_start=True)
        data = config.app_data_path("lnd")
        (data / "torrc").unlink()
        (data / "torrc.template").unlink()
        runtime.reset()

        lifecycle.start("lnd")
        assert lifecycle.last_sync["lnd"].trace == [SyncState.NOT_REQUIRED]
        assert _argvs(runtime, "lnd") == [["up", "--detach"]]

    def test_stop_needs_no_registration(self, lifecycle, runtime):
        lifecycle.stop("lnd")
        assert _argvs(runtime, "lnd") == [["rm", "--force", "--stop"]]

    def test_restart(self, lifecycle, runtime, config, make_app):
        make_app("lnd")
        lifecycle.install("lnd", skip_start=True)
        runtime.reset()
        runtime.add_hook(_publish_on_tor_start(config))

        lifecycle.restart("lnd")
        assert _argvs(runtime, "lnd") == [
            ["rm", "--force", "--stop"],
            ["up", "--detach", "tor_server"],
            ["up", "--detach"],
        ]


# ═══════════════════════════════════════════════════════════════════
#  update
# ═══════════════════════════════════════════════════════════════════


class TestUpdate:
    def _installed(self, lifecycle, make_app):
        app_dir = make_app("lnd", version="1.0.0", extra_files={"notes.txt": "v1"})
        lifecycle.install("lnd", skip_start=True)
        (app_dir / "app.yml").write_text('version: "2.0.0"\nport: 8080\n')
        (app_dir / "docker-compose.yml").write_text("services:\n  web:\n    image: nginx:2\n")
        (app_dir / "notes.txt").write_text("v2")
        return app_dir

    def test_copies_whitelist_then_manifest(self, lifecycle, runtime, config, make_app):
        self._installed(lifecycle, make_app)
        seen = {}

        def on_pull(call):
            if call.argv == ["pull"]:
                data = config.app_data_path("lnd")
                seen["compose"] = (data / "docker-compose.yml").read_text()
                seen["manifest"] = (data / "app.yml").read_text()

        runtime.add_hook(on_pull)
        lifecycle.update("lnd", skip_start=True)

        data = config.app_data_path("lnd")
        assert "nginx:2" in seen["compose"]
        assert "1.0.0" in seen["manifest"]
        assert "2.0.0" in (data / "app.yml").read_text()
        # Not on the whitelist
        assert (data / "notes.txt").read_text() == "v1"

    def test_sequence(self, lifecycle, runtime, config, make_app):
        self._installed(lifecycle, make_app)
        runtime.reset()
        runtime.add_hook(_publish_on_tor_start(config))

        lifecycle.update("lnd")
        assert _argvs(runtime, "lnd") == [
            ["rm", "--force", "--stop"],
            ["pull"],
            ["up", "--detach", "tor_server"],
            ["up", "--detach"],
        ]

    def test_skip_stop_and_start(self, lifecycle, runtime, make_app):
        self._installed(lifecycle, make_app)
        runtime.reset()
        lifecycle.update("lnd", skip_stop=True, skip_start=True)
        assert _argvs(runtime, "lnd") == [["pull"]]

    def test_manifest_copied_once_on_failure(self, lifecycle, runtime, config, make_app, monkeypatch):
        self._installed(lifecycle, make_app)
        runtime.set_failure("pull")

        copies = []
        original = AppLifecycle._copy_manifest

        def counting(repo_dir, data_dir):
            copies.append(data_dir)
            original(repo_dir, data_dir)

        monkeypatch.setattr(AppLifecycle, "_copy_manifest", staticmethod(counting))

        with pytest.raises(RuntimeCallError):
            lifecycle.update("lnd")

        assert len(copies) == 1
        assert "2.0.0" in (config.app_data_path("lnd") / "app.yml").read_text()
        assert lifecycle.registry.list() == {"lnd"}

    def test_manifest_copied_once_on_success(self, lifecycle, config, make_app, monkeypatch):
        self._installed(lifecycle, make_app)
        copies = []
        original = AppLifecycle._copy_manifest

        def counting(repo_dir, data_dir):
            copies.append(data_dir)
            original(repo_dir, data_dir)

        monkeypatch.setattr(AppLifecycle, "_copy_manifest", staticmethod(counting))
        lifecycle.update("lnd", skip_start=True)
        assert len(copies) == 1

    def test_requires_installed(self, lifecycle, make_app):
        make_app("lnd")
        with pytest.raises(PreconditionError, match="not installed"):
            lifecycle.update("lnd")

    def test_requires_repo(self, lifecycle, config, make_app):
        make_app("lnd")
        lifecycle.install("lnd", skip_start=True)
        shutil.rmtree(config.repo_path("lnd"))
        with pytest.raises(PreconditionError, match="not found in app repo"):
            lifecycle.update("lnd")


# ═══════════════════════════════════════════════════════════════════
#  compose / fan-out / audit
# ═══════════════════════════════════════════════════════════════════


class TestCompose:
    def test_passthrough(self, lifecycle, runtime, make_app):
        make_app("lnd")
        lifecycle.install("lnd", skip_start=True)
        runtime.reset()
        lifecycle.compose("lnd", "logs", "--tail", "20")
        assert _argvs(runtime, "lnd") == [["logs", "--tail", "20"]]

    def test_failure_propagates_code(self, lifecycle, runtime, make_app):
        make_app("lnd")
        runtime.set_failure("ps", return_code=3)
        with pytest.raises(RuntimeCallError) as exc_info:
            lifecycle.compose("lnd", "ps")
        assert exc_info.value.returncode == 3

    def test_requires_subcommand(self, lifecycle):
        with pytest.raises(PreconditionError):
            lifecycle.compose("lnd")


class TestFanOut:
    def _install_all(self, lifecycle, make_app, apps):
        for app in apps:
            make_app(app)
            lifecycle.install(app, skip_start=True)

    def test_runs_for_every_installed_app(self, lifecycle, runtime, make_app):
        self._install_all(lifecycle, make_app, ["bitcoin", "electrs", "lnd"])
        runtime.reset()

        results = lifecycle.dispatch("stop", "installed")

        assert [r.app_id for r in results] == ["bitcoin", "electrs", "lnd"]
        assert all(r.ok for r in results)
        assert {c.app_id for c in runtime.calls} == {"bitcoin", "electrs", "lnd"}

    def test_failure_isolated(self, lifecycle, runtime, make_app):
        self._install_all(lifecycle, make_app, ["bitcoin", "electrs", "lnd"])
        runtime.reset()

        def explode(call):
            if call.app_id == "electrs":
                raise OSError("engine went away")

        runtime.add_hook(explode)
        results = {r.app_id: r for r in lifecycle.run_for_installed("stop")}

        assert results["bitcoin"].ok and results["lnd"].ok
        assert not results["electrs"].ok
        assert "engine went away" in results["electrs"].error

    def test_runtime_return_code_per_app(self, lifecycle, runtime, make_app):
        self._install_all(lifecycle, make_app, ["bitcoin", "lnd"])
        runtime.set_failure("rm", return_code=5)
        results = lifecycle.run_for_installed("stop")
        assert [r.returncode for r in results] == [5, 5]

    def test_concurrent_uninstall_empties_registry(self, lifecycle, make_app):
        self._install_all(lifecycle, make_app, [f"app{i}" for i in range(6)])
        results = lifecycle.run_for_installed("uninstall")
        assert all(r.ok for r in results)
        assert lifecycle.registry.list() == set()

    def test_nothing_installed(self, lifecycle):
        assert lifecycle.dispatch("start", "installed") == []

    def test_single_app_dispatch(self, lifecycle, runtime):
        assert lifecycle.dispatch("stop", "lnd") is None
        assert runtime.call_count == 1

    def test_unknown_command(self, lifecycle):
        with pytest.raises(PreconditionError):
            lifecycle.dispatch("explode", "lnd")


class TestAudit:
    def test_entries_written(self, lifecycle, audit, runtime, make_app):
        make_app("lnd")
        lifecycle.install("lnd", skip_start=True)
        runtime.set_failure("rm")
        with pytest.raises(RuntimeCallError):
            lifecycle.stop("lnd")

        entries = audit.read_all()
        assert [(e.operation_type, e.status) for e in entries] == [
            ("install", "ok"),
            ("stop", "failed"),
        ]
        assert entries[0].context == {"skip_start": True}
        assert "rm" in entries[1].errors[0]
