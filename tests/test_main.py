"""Tests for the command-line entry point."""

import uuid

import pytest

from newsletter_queue.main import create_parser, main


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.setenv("NEWSLETTER_DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("NEWSLETTER_OPENAI_API_KEY", "")
    monkeypatch.setenv("NEWSLETTER_BREVO_API_KEY", "")


class TestParser:
    def test_generate_arguments(self):
        newsletter_id = uuid.uuid4()

        args = create_parser().parse_args(
            ["generate", str(newsletter_id), "--process", "--sections", "welcome", "practical_tips"]
        )

        assert args.newsletter_id == newsletter_id
        assert args.process
        assert args.sections == ["welcome", "practical_tips"]

    def test_rejects_malformed_id(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["status", "not-a-uuid"])


class TestMain:
    @pytest.mark.asyncio
    async def test_init_db_and_onboard(self, cli_env):
        assert await main(["init-db"]) == 0
        assert await main([
            "onboard",
            "--company", "Acme",
            "--industry", "Robotics",
            "--email", "owner@acme.io",
        ]) == 0

    @pytest.mark.asyncio
    async def test_invalid_input_exit_code(self, cli_env):
        assert await main([
            "onboard",
            "--company", "Acme",
            "--industry", "Robotics",
            "--email", "not-an-email",
        ]) == 2

    @pytest.mark.asyncio
    async def test_unknown_newsletter_exit_code(self, cli_env):
        assert await main(["status", str(uuid.uuid4())]) == 1

    @pytest.mark.asyncio
    async def test_no_command_prints_help(self, cli_env):
        assert await main([]) == 1
