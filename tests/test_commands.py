from __future__ import annotations

import pytest

from calls.commands import CallCommand, HangupCommand, normalize_phone, parse_command


def test_call_command_with_trailing_punctuation() -> None:
    command = parse_command("call 435-555-1212 and tell Dr. Lee the results are ready.")
    assert command == CallCommand(
        raw_number="435-555-1212",
        to_number="+14355551212",
        prompt="Dr. Lee the results are ready",
    )


def test_call_command_variants() -> None:
    command = parse_command("Call +1 435 555 1212 and ask how the interview went")
    assert isinstance(command, CallCommand)
    assert command.to_number == "+14355551212"
    assert command.prompt == "how the interview went"

    command = parse_command("call (435) 555-1212 say dinner is at six!")
    assert isinstance(command, CallCommand)
    assert command.prompt == "dinner is at six"


def test_unusable_number_is_reported_not_dropped() -> None:
    command = parse_command("call 12345 and tell them hi")
    assert isinstance(command, CallCommand)
    assert command.raw_number == "12345"
    assert command.to_number is None


@pytest.mark.parametrize("text", ["hang up", "Hang up now", "end the call", "END CALL"])
def test_hang_up_commands(text) -> None:
    assert parse_command(text) == HangupCommand()


@pytest.mark.parametrize("text", ["", "hello", "call me maybe", "tell 4355551212 hi"])
def test_unrecognized_text(text) -> None:
    assert parse_command(text) is None


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("4355551212", "+14355551212"),
        ("1 (435) 555-1212", "+14355551212"),
        ("+447911123456", "+447911123456"),
        ("555-1212", None),
        ("+12", None),
    ],
)
def test_normalize_phone(raw, expected) -> None:
    assert normalize_phone(raw) == expected
