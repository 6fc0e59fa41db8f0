import asyncio

import pytest

from ytrelay.chain import classify, last_lines, run_chain
from ytrelay.errors import ChainFailed, StrategyFailed
from ytrelay.strategies import Strategy


def make_attempt(outcomes, seen):
    async def attempt(strategy):
        seen.append(strategy.name)
        outcome = outcomes[strategy.name]
        if isinstance(outcome, StrategyFailed):
            raise outcome
        return outcome

    return attempt


STRATEGIES = [Strategy("first"), Strategy("second"), Strategy("third")]


def test_first_success_short_circuits():
    seen = []
    outcomes = {"first": {"title": "one"}, "second": {"title": "two"}, "third": {"title": "three"}}

    strategy, payload = asyncio.run(run_chain(STRATEGIES, make_attempt(outcomes, seen)))

    assert strategy.name == "first"
    assert payload == {"title": "one"}
    assert seen == ["first"]


def test_recoverable_failures_fall_through_in_order():
    seen = []
    outcomes = {
        "first": StrategyFailed("bot check"),
        "second": StrategyFailed("timeout"),
        "third": "payload",
    }

    strategy, payload = asyncio.run(run_chain(STRATEGIES, make_attempt(outcomes, seen)))

    assert strategy.name == "third"
    assert payload == "payload"
    assert seen == ["first", "second", "third"]


def test_fatal_failure_aborts_the_chain():
    seen = []
    outcomes = {
        "first": StrategyFailed("bot check"),
        "second": StrategyFailed("Video unavailable", fatal=True),
        "third": "never reached",
    }

    with pytest.raises(ChainFailed) as excinfo:
        asyncio.run(run_chain(STRATEGIES, make_attempt(outcomes, seen)))

    assert excinfo.value.fatal
    assert excinfo.value.reason == "Video unavailable"
    assert excinfo.value.tried == ["first", "second"]
    assert seen == ["first", "second"]


def test_exhausted_chain_reports_last_reason_and_all_tried():
    seen = []
    outcomes = {name: StrategyFailed(f"{name} broke") for name in ("first", "second", "third")}

    with pytest.raises(ChainFailed) as excinfo:
        asyncio.run(run_chain(STRATEGIES, make_attempt(outcomes, seen), delay=0.01))

    assert not excinfo.value.fatal
    assert excinfo.value.reason == "third broke"
    assert excinfo.value.tried == ["first", "second", "third"]


def test_empty_chain_fails():
    with pytest.raises(ChainFailed) as excinfo:
        asyncio.run(run_chain([], make_attempt({}, [])))
    assert excinfo.value.tried == []


@pytest.mark.parametrize("stderr, fatal", [
    ("ERROR: [youtube] abc: Video unavailable", True),
    ("ERROR: [youtube] abc: Private video. Sign in if you've been granted access", True),
    ("ERROR: Unsupported URL: https://example.com/", True),
    ("ERROR: [youtube] abc: Sign in to confirm you're not a bot", False),
    ("ERROR: unable to download video data: HTTP Error 403: Forbidden", False),
    ("", False),
])
def test_classify(stderr, fatal):
    assert classify(stderr) is fatal


def test_last_lines_skips_blank_lines():
    text = "one\n\ntwo\nthree\n   \nfour\n"
    assert last_lines(text, 2) == "three\nfour"
