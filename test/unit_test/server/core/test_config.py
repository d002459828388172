"""Unit tests for server configuration settings model.

Tests verify that the Settings model binds environment variables and that the
grouped configuration views are built from the flat keys.
"""

import pytest

from lakitu_ai.server.core.config import (
    AgentLoopConfig,
    CORSConfig,
    ExecutorConfig,
    GatewayConfig,
    Settings,
)


class TestSettingsBinding:
    """Test Settings model environment variable binding."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = Settings()

        assert settings.server_host == "0.0.0.0"
        assert settings.server_port == 8000
        assert settings.log_level == "INFO"
        assert settings.enable_file_logging is False
        assert settings.database_url.startswith("postgresql+asyncpg://")

    def test_server_binding(self, monkeypatch):
        monkeypatch.setenv("LAKITU_AI_SERVER_HOST", "127.0.0.1")
        monkeypatch.setenv("LAKITU_AI_SERVER_PORT", "9000")
        monkeypatch.setenv("LAKITU_AI_LOG_LEVEL", "DEBUG")

        settings = Settings()

        assert settings.server_host == "127.0.0.1"
        assert settings.server_port == 9000
        assert settings.log_level == "DEBUG"

    def test_database_url_binding(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./lakitu.db")
        assert Settings().database_url == "sqlite+aiosqlite:///./lakitu.db"

    def test_keys_are_case_sensitive(self, monkeypatch):
        monkeypatch.setenv("agent_max_steps", "99")
        monkeypatch.delenv("AGENT_MAX_STEPS", raising=False)
        assert Settings().agent_max_steps == 10

    def test_invalid_integer_is_rejected(self, monkeypatch):
        monkeypatch.setenv("AGENT_MAX_STEPS", "many")
        with pytest.raises(ValueError):
            Settings()


class TestGroupedConfigurations:
    """Test the grouped configuration properties."""

    def test_gateway(self, monkeypatch):
        monkeypatch.setenv("LLM_GATEWAY_URL", "http://gateway:8080")
        monkeypatch.setenv("LLM_GATEWAY_TOKEN", "secret")
        monkeypatch.setenv("LLM_GATEWAY_TIMEOUT", "30")

        gateway = Settings().gateway

        assert isinstance(gateway, GatewayConfig)
        assert gateway.url == "http://gateway:8080"
        assert gateway.token == "secret"
        assert gateway.timeout == 30.0
        assert gateway.path == "services.OpenRouter.internal.chatCompletion"

    def test_executor(self, monkeypatch):
        monkeypatch.setenv("CODE_EXECUTOR_URL", "http://sandbox/execute")
        monkeypatch.delenv("CODE_EXECUTOR_TOKEN", raising=False)

        executor = Settings().executor

        assert isinstance(executor, ExecutorConfig)
        assert executor.url == "http://sandbox/execute"
        assert executor.token is None

    def test_agent_defaults(self):
        agent = Settings().agent

        assert isinstance(agent, AgentLoopConfig)
        assert agent.max_steps == 10
        assert agent.exec_timeout_ms == 60_000
        assert agent.run_timeout_ms == 600_000
        assert agent.max_checkpoint_messages == 50
        assert agent.default_model == "balanced"
        assert agent.subagent_max_steps == 5
        assert agent.subagent_workers == 2
        assert agent.workspace_dir is None

    def test_agent_from_init_aliases(self):
        agent = Settings(AGENT_MAX_STEPS=3, AGENT_RUN_TIMEOUT_MS=0, AGENT_DEFAULT_MODEL="fast").agent

        assert agent.max_steps == 3
        assert agent.run_timeout_ms == 0
        assert agent.default_model == "fast"

    def test_cors(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", '["http://localhost:3000"]')
        monkeypatch.setenv("CORS_ALLOW_CREDENTIALS", "false")

        cors = Settings().cors

        assert isinstance(cors, CORSConfig)
        assert cors.origins == ["http://localhost:3000"]
        assert cors.allow_credentials is False
        assert cors.allow_methods == ["*"]
