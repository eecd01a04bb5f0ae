from datetime import datetime, timedelta, timezone

from pydantic import ValidationError
import pytest

from pollbox.schemas import LoginRequest, NewPollRequest, RegisterRequest
from pollbox.validation import normalize_email, password_problem, sanitize_input, sanitize_poll_input


def _first_error(exc_info) -> str:
    return exc_info.value.errors()[0]["msg"]


def test_valid_poll_with_all_fields():
    closes_at = datetime.now(timezone.utc) + timedelta(days=1)
    poll = NewPollRequest(
        title="What should we have for lunch?",
        description="Please choose your preferred lunch option",
        options=["Pizza", "Burger", "Salad"],
        allow_multiple=True,
        closes_at=closes_at,
    )

    assert poll.title == "What should we have for lunch?"
    assert poll.options == ["Pizza", "Burger", "Salad"]
    assert poll.allow_multiple is True
    assert poll.closes_at == closes_at


def test_minimal_poll_defaults():
    poll = NewPollRequest(title="Test Poll", options=["Option 1", "Option 2"])

    assert poll.description is None
    assert poll.allow_multiple is False
    assert poll.closes_at is None


def test_empty_description_is_allowed():
    poll = NewPollRequest(title="Test Poll", description="", options=["A", "B"])
    assert poll.description == ""


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"title": "Hi"}, "Title must be at least 3 characters"),
        ({"title": "A" * 121}, "Title is too long"),
        ({"description": "A" * 501}, "Description is too long"),
        ({"options": ["Only one option"]}, "Provide at least 2 options"),
        ({"options": [f"Option {idx}" for idx in range(1, 12)]}, "Maximum of 10 options allowed"),
        ({"options": ["Valid Option", ""]}, "Option cannot be empty"),
        ({"closes_at": datetime.now(timezone.utc) - timedelta(hours=1)}, "Closing date must be in the future"),
    ],
)
def test_poll_rules(overrides, message):
    data = {"title": "Test Poll", "options": ["Option 1", "Option 2"]}
    data.update(overrides)

    with pytest.raises(ValidationError) as exc_info:
        NewPollRequest(**data)

    assert message in _first_error(exc_info)


def test_poll_rejects_unknown_fields():
    with pytest.raises(ValidationError):
        NewPollRequest(title="Test Poll", options=["A", "B"], votes=3)


def test_naive_closing_date_is_treated_as_utc():
    naive = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(days=2)
    poll = NewPollRequest(title="Test Poll", options=["A", "B"], closes_at=naive)
    assert poll.closes_at.tzinfo == timezone.utc


def test_poll_input_is_sanitized_before_validation():
    poll = NewPollRequest(
        title="  <b>Lunch</b>  ",
        description=" <script>x</script> ",
        options=[" <i>Pizza</i> ", "Salad"],
    )

    assert poll.title == "bLunch/b"
    assert poll.description == "scriptx/script"
    assert poll.options == ["iPizza/i", "Salad"]


def test_whitespace_only_option_is_empty():
    with pytest.raises(ValidationError) as exc_info:
        NewPollRequest(title="Test Poll", options=["A", "   "])
    assert "Option cannot be empty" in _first_error(exc_info)


def test_sanitize_input():
    assert sanitize_input("  hello  ") == "hello"
    assert sanitize_input("<tag>") == "tag"
    assert len(sanitize_input("x" * 5000)) == 1000


def test_sanitize_poll_input_leaves_other_keys_alone():
    cleaned = sanitize_poll_input({"title": " <a> ", "options": ["<x>", 3], "allow_multiple": True})
    assert cleaned == {"title": "a", "options": ["x", 3], "allow_multiple": True}


def test_normalize_email():
    assert normalize_email("  User@Example.COM ") == "user@example.com"


@pytest.mark.parametrize(
    "password, expected",
    [
        ("Sh0rt!", "Password must be at least 8 characters long"),
        ("A1!" + "a" * 130, "Password must be less than 128 characters"),
        ("alllowercase1!", "Password must contain"),
        ("NoDigitsHere!", "Password must contain"),
        ("NoSpecial123", "Password must contain"),
        ("Str0ng!Pass", None),
    ],
)
def test_password_problem(password, expected):
    problem = password_problem(password)
    if expected is None:
        assert problem is None
    else:
        assert problem.startswith(expected)


def test_register_request_normalizes_email():
    request = RegisterRequest(email="  New.User@Example.com ", password="Str0ng!Pass")
    assert request.email == "new.user@example.com"


def test_register_request_rejects_weak_password():
    with pytest.raises(ValidationError) as exc_info:
        RegisterRequest(email="user@example.com", password="weakpassword")
    assert "Password must contain" in _first_error(exc_info)


def test_login_request_does_not_check_strength():
    request = LoginRequest(email="USER@example.com", password="weak")
    assert request.email == "user@example.com"
    assert request.password == "weak"


def test_invalid_email_is_rejected():
    with pytest.raises(ValidationError):
        LoginRequest(email="not-an-email", password="whatever")
