"""Testes dos geradores de ids determinísticos."""

from __future__ import annotations

import re

from rotaflow.utils.ids import (
    content_digest,
    new_session_id,
    route_id_for,
    slugify,
    step_id_for,
    tool_id_for,
)


class TestIds:
    """IDs como função pura do conteúdo."""

    def test_slugify(self):
        assert slugify("Hotel Booking!") == "hotel_booking"
        assert slugify("  ") == ""
        assert len(slugify("x" * 100)) == 40

    def test_content_digest_is_stable_and_short(self):
        assert content_digest("a", "b") == content_digest("a", "b")
        assert content_digest("a", "b") != content_digest("ab")
        assert len(content_digest("a")) == 8

    def test_route_id_format(self):
        rid = route_id_for("Hotel Booking")
        assert re.fullmatch(r"route_hotel_booking_[0-9a-f]{8}", rid)
        assert route_id_for("").startswith("route_untitled_")

    def test_step_id_depends_on_route_description_and_position(self):
        base = step_id_for("r1", "Ask name", 0)
        assert base.startswith("step_ask_name_")
        assert base == step_id_for("r1", "Ask name", 0)
        assert base != step_id_for("r1", "Ask name", 1)
        assert base != step_id_for("r2", "Ask name", 0)
        assert step_id_for("r1", None, 0).startswith("step_step_")

    def test_tool_id(self):
        assert tool_id_for("lookup_order").startswith("tool_lookup_order_")
        assert tool_id_for("").startswith("tool_anonymous_")

    def test_new_session_id_is_unique(self):
        assert new_session_id() != new_session_id()
