"""Tests for the CLI surface: argument parsing, command mapping and output."""

import asyncio

import pytest

from conftest import make_articles
from review_assistant import main as cli
from review_assistant import transitions
from review_assistant.commands import ExecuteSearch, ScrapeOne, StartGathering, StartResearch
from review_assistant.models import FailedAction, Stage


def test_make_command():
    args = cli.parse_args(["new", "gut microbiome"])
    command = cli.make_command(args, "sid")
    assert isinstance(command, StartResearch) and command.topic == "gut microbiome"

    assert isinstance(cli.make_command(cli.parse_args(["confirm"]), "sid"), ExecuteSearch)

    command = cli.make_command(cli.parse_args(["select", "1001", "1002"]), "sid")
    assert isinstance(command, StartGathering) and command.item_ids == ["1001", "1002"]

    command = cli.make_command(cli.parse_args(["scrape", "--url", "https://x.org"]), "sid")
    assert isinstance(command, ScrapeOne) and command.url == "https://x.org"


def test_parse_args_requires_command():
    with pytest.raises(SystemExit):
        cli.parse_args([])


def test_summarize_shows_results_and_retry_hint():
    s = transitions.new_session("gut microbiome and autism")
    scored = [a.model_copy(update={"score": 9 - i}) for i, a in enumerate(make_articles(2))]
    s = transitions.update(
        s,
        stage=Stage.SCREENING,
        scored_abstracts=scored,
        error="upstream 503",
        last_failed_action=FailedAction(type="EXECUTE_SEARCH"),
    )

    text = cli.summarize(s)

    assert "Stage: SCREENING" in text
    assert "PubMed articles (2):" in text
    assert " 9  1001  Article 1" in text
    assert "Error: upstream 503" in text
    assert "replay EXECUTE_SEARCH" in text


def test_list_and_show_need_no_credentials(capsys):
    assert asyncio.run(cli.main(["list"])) == 0
    assert asyncio.run(cli.main(["show"])) == 1
    assert "No active session." in capsys.readouterr().err


def test_pipeline_command_without_key_is_a_configuration_error(capsys):
    assert asyncio.run(cli.main(["new", "topic"])) == 2
    assert "Configuration error" in capsys.readouterr().err
