"""
Tests for the compose planner — fragment selection and ordering.
"""

import shutil

from appctl.core.services.compose_plan import has_proxy_service, plan_fragments


def _install(config, app_id: str) -> None:
    shutil.copytree(config.repo_path(app_id), config.app_data_path(app_id))


class TestHasProxyService:
    def test_declared(self, tmp_path):
        path = tmp_path / "docker-compose.yml"
        path.write_text("services:\n  app_proxy:\n    image: proxy\n  web:\n    image: x\n")
        assert has_proxy_service(path)

    def test_not_declared(self, tmp_path):
        path = tmp_path / "docker-compose.yml"
        path.write_text("services:\n  web:\n    image: x\n")
        assert not has_proxy_service(path)

    def test_missing_or_invalid(self, tmp_path):
        assert not has_proxy_service(tmp_path / "missing.yml")
        bad = tmp_path / "bad.yml"
        bad.write_text("services: [unclosed\n")
        assert not has_proxy_service(bad)
        empty = tmp_path / "empty.yml"
        empty.write_text("")
        assert not has_proxy_service(empty)


class TestPlanFragments:
    def test_neither(self, config, make_app):
        make_app("lnd")
        _install(config, "lnd")
        assert plan_fragments("lnd", config) == [
            config.fragment("common"),
            config.app_data_path("lnd") / "docker-compose.yml",
        ]

    def test_proxy_and_tor(self, config, make_app):
        make_app("lnd", proxy=True)
        _install(config, "lnd")
        (config.app_data_path("lnd") / "torrc").write_text("HiddenServiceDir /data\n")
        assert plan_fragments("lnd", config) == [
            config.fragment("app_proxy"),
            config.fragment("tor"),
            config.fragment("common"),
            config.app_data_path("lnd") / "docker-compose.yml",
        ]

    def test_proxy_only(self, config, make_app):
        make_app("lnd", proxy=True)
        _install(config, "lnd")
        names = [p.name for p in plan_fragments("lnd", config)]
        assert names == [
            "docker-compose.app_proxy.yml",
            "docker-compose.common.yml",
            "docker-compose.yml",
        ]

    def test_tor_only(self, config, make_app):
        make_app("lnd")
        _install(config, "lnd")
        (config.app_data_path("lnd") / "torrc").write_text("")
        names = [p.name for p in plan_fragments("lnd", config)]
        assert names == [
            "docker-compose.tor.yml",
            "docker-compose.common.yml",
            "docker-compose.yml",
        ]

    def test_torrc_template_alone_is_not_enough(self, config, make_app):
        make_app("lnd", extra_files={"torrc.template": "HiddenServiceDir /x\n"})
        _install(config, "lnd")
        assert config.fragment("tor") not in plan_fragments("lnd", config)
