"""Tests for brain/intent.py — local keyword intent classification."""

import pytest

from cecilia.brain.intent import INTENT_TASKS, classify_command


def test_send_email_with_recipient():
    intent = classify_command("Send an email to Sam")
    assert intent.name == "send_email"
    assert intent.entities == {"recipient": "Sam"}
    assert intent.confidence == 0.8
    assert (intent.category, intent.action) == ("email", "send_email")


def test_calendar_with_date():
    intent = classify_command("schedule a meeting on Friday")
    assert intent.name == "create_calendar_event"
    assert intent.entities["date"] == "Friday"
    assert intent.action == "create_event"


def test_analyze_data():
    intent = classify_command("analyze the sales figures")
    assert intent.name == "analyze_data"
    assert intent.category == "data"


def test_take_notes_with_title():
    intent = classify_command("take a note for standup")
    assert intent.name == "take_notes"
    assert intent.entities["title"] == "standup"


def test_open_application():
    intent = classify_command("launch spotify")
    assert intent.name == "open_application"
    assert intent.entities["app_name"] == "spotify"


def test_url_is_browse():
    intent = classify_command("go to https://example.com/docs now")
    assert intent.name == "browse"
    assert intent.entities == {"url": "https://example.com/docs"}
    assert intent.category == "web"


def test_first_rule_wins():
    # Mentions both email and calendar; the email rule is checked first.
    assert classify_command("email the calendar invite").name == "send_email"


@pytest.mark.parametrize("text", ["", "   ", "tell me a joke", None])
def test_unknown(text):
    intent = classify_command(text)
    assert intent.name == "unknown"
    assert not intent.known
    assert intent.category is None
    assert intent.action is None
    assert intent.confidence == 0.5


def test_every_intent_maps_to_valid_category():
    from cecilia.brain.task_engine import TaskCategory

    valid = {c.value for c in TaskCategory}
    for category, action in INTENT_TASKS.values():
        assert category in valid
        assert action
