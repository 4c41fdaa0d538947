from __future__ import annotations

import pytest

from postbox.routing import RouteError, Router, RoutingRule, candidate_addresses, parse_address
from postbox.types import (
    REASON_MISSING_TOKEN,
    REASON_NO_MATCH,
    Bounced,
    FailureKind,
    Message,
    RoutedMessage,
)

POST_RULE = RoutingRule.compile(r"blog@", "post")
COMMENT_RULE = RoutingRule.compile(r"^comment\+(\d+)@", "comment", 1)


def _message(*recipients: str) -> Message:
    return Message(sender="a@b.com", subject="Hi", recipients=recipients, raw_body="hello")


def _router() -> Router:
    return Router([POST_RULE, COMMENT_RULE])


def test_routes_to_post_handler() -> None:
    routed = _router().route(_message("blog@x.com"))

    assert isinstance(routed, RoutedMessage)
    assert routed.handler == "post"
    assert routed.address == "blog@x.com"
    assert routed.token is None


def test_routes_comment_with_token() -> None:
    routed = _router().route(_message("comment+42@x.com"))

    assert isinstance(routed, RoutedMessage)
    assert routed.handler == "comment"
    assert routed.token == "42"


def test_matching_is_case_insensitive() -> None:
    routed = _router().route(_message("BLOG@X.COM"))

    assert isinstance(routed, RoutedMessage)
    assert routed.handler == "post"
    assert routed.address == "BLOG@X.COM"


def test_unmatched_recipient_bounces() -> None:
    outcome = _router().route(_message("random@x.com"))

    assert outcome == Bounced(REASON_NO_MATCH, FailureKind.ROUTING)


def test_empty_recipient_list_bounces() -> None:
    outcome = _router().route(_message())

    assert isinstance(outcome, Bounced)
    assert outcome.reason == REASON_NO_MATCH


def test_all_malformed_recipients_bounce() -> None:
    outcome = _router().route(_message("", "   ", "not-an-address", "@x.com", "user@"))

    assert isinstance(outcome, Bounced)
    assert outcome.reason == REASON_NO_MATCH


def test_empty_first_entry_is_skipped() -> None:
    routed = _router().route(_message("", "blog@x.com"))

    assert isinstance(routed, RoutedMessage)
    assert routed.handler == "post"


def test_first_matching_recipient_wins_over_later_ones() -> None:
    routed = _router().route(_message("comment+7@x.com", "blog@x.com"))

    assert isinstance(routed, RoutedMessage)
    assert routed.handler == "comment"
    assert routed.token == "7"


def test_lookalike_earlier_recipient_does_not_match() -> None:
    routed = _router().route(_message("comment+abc@x.com", "reply-comment+1@x.com", "blog@x.com"))

    assert isinstance(routed, RoutedMessage)
    assert routed.handler == "post"
    assert routed.address == "blog@x.com"


def test_rule_order_decides_between_overlapping_patterns() -> None:
    broad = RoutingRule.compile(r"@x\.com$", "catchall")
    router = Router([broad, POST_RULE])

    routed = router.route(_message("blog@x.com"))

    assert isinstance(routed, RoutedMessage)
    assert routed.handler == "catchall"


def test_recipient_order_is_not_resorted() -> None:
    routed = _router().route(_message("zeta@x.com", "blog@x.com", "comment+1@x.com"))

    assert isinstance(routed, RoutedMessage)
    assert routed.address == "blog@x.com"


def test_display_name_entries_route_on_address() -> None:
    routed = _router().route(_message("Blog Inbox <blog@x.com>"))

    assert isinstance(routed, RoutedMessage)
    assert routed.address == "blog@x.com"


def test_empty_token_downgrades_to_bounce() -> None:
    rule = RoutingRule.compile(r"^comment\+(\d*)@", "comment", 1)
    outcome = Router([rule]).route(_message("comment+@x.com"))

    assert outcome == Bounced(REASON_MISSING_TOKEN, FailureKind.TOKEN_EXTRACTION)


def test_unmatched_optional_group_downgrades_to_bounce() -> None:
    rule = RoutingRule.compile(r"^comment(?:\+(\d+))?@", "comment", 1)
    outcome = Router([rule]).route(_message("comment@x.com"))

    assert isinstance(outcome, Bounced)
    assert outcome.kind is FailureKind.TOKEN_EXTRACTION


def test_named_token_group() -> None:
    rule = RoutingRule.compile(r"^comment\+(?P<post>\d+)@", "comment", "post")
    routed = Router([rule]).route(_message("comment+99@x.com"))

    assert isinstance(routed, RoutedMessage)
    assert routed.token == "99"


def test_invalid_pattern_raises_route_error() -> None:
    with pytest.raises(RouteError):
        RoutingRule.compile(r"blog(@", "post")


def test_missing_token_group_raises_route_error() -> None:
    with pytest.raises(RouteError):
        RoutingRule.compile(r"^comment\+\d+@", "comment", 1)
    with pytest.raises(RouteError):
        RoutingRule.compile(r"^comment\+(\d+)@", "comment", "post")


def test_candidate_addresses_keep_order_and_duplicates() -> None:
    entries = ["b@x.com", "", "a@x.com", "b@x.com", "junk"]

    assert list(candidate_addresses(entries)) == ["b@x.com", "a@x.com", "b@x.com"]


@pytest.mark.parametrize(
    "entry, expected",
    [
        ("blog@x.com", "blog@x.com"),
        (" blog@x.com ", "blog@x.com"),
        ("", None),
        ("nobody", None),
        ("@x.com", None),
    ],
)
def test_parse_address(entry: str, expected: str | None) -> None:
    assert parse_address(entry) == expected


def test_describe_mentions_token_group() -> None:
    assert COMMENT_RULE.describe() == r"/^comment\+(\d+)@/i -> comment (token group 1)"
    assert POST_RULE.describe() == "/blog@/i -> post"
