"""
Engine Configuration and CLI Unit Tests
"""

import json
from unittest.mock import patch

import pytest

from guardsymbi.config import DEFAULT_AI_FIXABLE, EngineConfig, parse_kinds, parse_policies
from guardsymbi.errors import ErrorKind
from guardsymbi.main import build_parser, main
from guardsymbi.models import RecoveryAction

from conftest import PIPELINE


class TestEngineConfig:

    def test_defaults(self):
        config = EngineConfig.from_env({})

        assert config.max_parallel == 5
        assert config.default_max_attempts == 1
        assert config.ai_fixable_kinds == DEFAULT_AI_FIXABLE
        assert config.default_policies == {}
        assert config.mcp_url is None
        assert config.run_timeout is None

    def test_from_env(self):
        config = EngineConfig.from_env({
            "GUARDSYMBI_MAX_PARALLEL": "8",
            "GUARDSYMBI_STEP_TIMEOUT": "2.5",
            "GUARDSYMBI_RUN_TIMEOUT": "60",
            "GUARDSYMBI_AI_FIXABLE_KINDS": "ParseError, IOError",
            "GUARDSYMBI_DEFAULT_POLICIES": "IOError=retry",
            "GUARDSYMBI_MCP_URL": "https://mcp.example.com",
            "GUARDSYMBI_LOG_LEVEL": "debug",
            "UNRELATED": "ignored",
        })

        assert config.max_parallel == 8
        assert config.step_timeout == 2.5
        assert config.run_timeout == 60.0
        assert config.ai_fixable_kinds == frozenset({ErrorKind.PARSE_ERROR, ErrorKind.IO_ERROR})
        assert ErrorKind.IO_ERROR in config.default_policies
        assert config.mcp_url == "https://mcp.example.com"
        assert config.log_level == "DEBUG"

    def test_empty_values_fall_back_to_defaults(self):
        config = EngineConfig.from_env({"GUARDSYMBI_MAX_PARALLEL": ""})
        assert config.max_parallel == 5

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            EngineConfig(max_parallel=0)
        with pytest.raises(ValueError):
            EngineConfig(default_max_attempts=0)

    def test_parse_policies(self):
        policies = parse_policies("IOError=retry; ParseError=ai_fix,retry")

        assert policies[ErrorKind.IO_ERROR].actions[0].action == RecoveryAction.RETRY
        assert [a.action for a in policies[ErrorKind.PARSE_ERROR].actions] == [
            RecoveryAction.AI_FIX,
            RecoveryAction.RETRY,
        ]

    def test_parse_policies_rejects_malformed_entry(self):
        with pytest.raises(ValueError):
            parse_policies("IOError")

    def test_parse_kinds_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            parse_kinds("ParseError,DiskFull")


class TestCommandLine:

    def test_parser(self):
        args = build_parser().parse_args(
            ["run", "a.yaml", "b.yaml", "--entry", "report", "--operations", "pkg.one", "--operations", "pkg.two"]
        )

        assert args.files == ["a.yaml", "b.yaml"]
        assert args.entry == "report"
        assert args.operations == ["pkg.one", "pkg.two"]

    def test_run_prints_report(self, registry, capsys, monkeypatch):
        monkeypatch.delenv("GUARDSYMBI_MCP_URL", raising=False)
        monkeypatch.delenv("GUARDSYMBI_REDIS_URL", raising=False)

        with patch("guardsymbi.main.OperationRegistry", return_value=registry), \
                patch("guardsymbi.main.load_dotenv"), \
                patch("guardsymbi.main.setup_logging"):
            code = main(["run", PIPELINE, "--entry", "load"])

        assert code == 0
        report = json.loads(capsys.readouterr().out)
        assert report["status"] == "succeeded"
        assert report["events"] == []

    def test_build_error_exit_code(self, registry, capsys, monkeypatch):
        monkeypatch.delenv("GUARDSYMBI_MCP_URL", raising=False)
        monkeypatch.delenv("GUARDSYMBI_REDIS_URL", raising=False)

        with patch("guardsymbi.main.OperationRegistry", return_value=registry), \
                patch("guardsymbi.main.load_dotenv"), \
                patch("guardsymbi.main.setup_logging"):
            code = main(["run", PIPELINE, "--entry", "ghost"])

        assert code == 2
        assert "ENTRY_TASK_MISSING" in capsys.readouterr().err
