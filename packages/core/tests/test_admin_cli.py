"""管理 CLI 与配置测试"""

import sys

import pytest
from aigateway.core import config
from aigateway.core.__main__ import main


@pytest.fixture
def cli_db(tmp_path, monkeypatch):
    db_path = tmp_path / "sqlite" / "cli.db"
    monkeypatch.setenv("AIGW_DB_PATH", str(db_path))
    return db_path


def _run(monkeypatch, *args: str) -> None:
    monkeypatch.setattr(sys, "argv", ["aigateway-admin", *args])
    main()


class TestAdminCli:
    """python -m aigateway.core"""

    def test_init_db_creates_file(self, cli_db, monkeypatch, capsys):
        _run(monkeypatch, "init-db")
        assert cli_db.exists()
        assert "数据库已初始化" in capsys.readouterr().out

    def test_create_grant_balance(self, cli_db, monkeypatch, capsys):
        _run(monkeypatch, "create-wallet", "organization", "org-1", "ORG_PRO")
        _run(monkeypatch, "grant", "organization", "org-1", "250")
        _run(monkeypatch, "balance", "organization", "org-1")

        out = capsys.readouterr().out
        assert "plan=ORG_PRO" in out
        assert "balance=100250.0000" in out
        assert "limit=100000" in out

    def test_balance_missing_wallet_exits(self, cli_db, monkeypatch):
        with pytest.raises(SystemExit) as exc_info:
            _run(monkeypatch, "balance", "organization", "nope")
        assert exc_info.value.code == 1

    def test_invalid_wallet_type(self, cli_db, monkeypatch, capsys):
        with pytest.raises(SystemExit):
            _run(monkeypatch, "balance", "team", "x")
        assert "参数错误" in capsys.readouterr().out

    def test_no_command_prints_usage(self, monkeypatch, capsys):
        with pytest.raises(SystemExit):
            _run(monkeypatch)
        assert "用法" in capsys.readouterr().out


class TestCacheConfig:
    """缓存相关环境变量"""

    def test_defaults(self, monkeypatch):
        for name in ("AIGW_CACHE_ENABLED", "AIGW_CACHE_TTL_SECONDS", "AIGW_CACHE_BACKEND"):
            monkeypatch.delenv(name, raising=False)
        assert config.is_cache_enabled() is True
        assert config.get_cache_ttl_seconds() == 3600
        assert config.get_cache_backend() == "memory"

    def test_disable_and_ttl(self, monkeypatch):
        monkeypatch.setenv("AIGW_CACHE_ENABLED", "FALSE")
        monkeypatch.setenv("AIGW_CACHE_TTL_SECONDS", "120")
        assert config.is_cache_enabled() is False
        assert config.get_cache_ttl_seconds() == 120

    def test_invalid_ttl_falls_back(self, monkeypatch):
        monkeypatch.setenv("AIGW_CACHE_TTL_SECONDS", "forever")
        assert config.get_cache_ttl_seconds() == 3600
