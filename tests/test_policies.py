from __future__ import annotations

import pytest

from models import Application, Document, JobOffer, Message, Notification, Profile
from policies import Actor, PolicyContext, filter_visible, is_allowed, monotonic_field, rules_for


def _ctx(user_id: str, role: str = "candidate") -> PolicyContext:
    return PolicyContext(actor=Actor(user_id=user_id, role=role))


def test_message_read_flag_is_receiver_only_and_monotonic():
    msg = Message(id="m1", sender_id="alice", receiver_id="bob", content="hi", read=False)

    assert is_allowed(_ctx("bob"), "update", msg, {"read": True})
    assert not is_allowed(_ctx("alice"), "update", msg, {"read": True})
    assert not is_allowed(_ctx("bob"), "update", msg, {"read": True, "content": "edited"})

    msg.read = True
    assert not is_allowed(_ctx("bob"), "update", msg, {"read": False})
    assert not is_allowed(_ctx("bob"), "update", msg, {"read": True})


def test_monotonic_field_allows_unchanged_extra_keys():
    n = Notification(id="n1", user_id="u1", type="message", title="t", content="c", read=False)
    pred = monotonic_field("read", True)
    assert pred(_ctx("u1"), n, {"read": True, "user_id": "u1"})
    assert not pred(_ctx("u1"), n, {"read": True, "user_id": "u2"})
    assert not pred(_ctx("u1"), n, {})


def test_closed_offers_hidden_from_candidates():
    open_offer = JobOffer(id="o1", title="a", description="d", requirements="r", status="open", created_by="hr1")
    closed = JobOffer(id="o2", title="b", description="d", requirements="r", status="closed", created_by="hr1")

    assert filter_visible(_ctx("c1"), [open_offer, closed]) == [open_offer]
    assert filter_visible(_ctx("hr2", "hr"), [open_offer, closed]) == [open_offer, closed]
    # The author keeps sight of their own closed offer.
    assert is_allowed(_ctx("hr1", "candidate"), "select", closed)


def test_profile_role_is_immutable_for_owner():
    prof = Profile(id="u1", role="candidate", first_name="A", last_name="B")

    assert is_allowed(_ctx("u1"), "update", prof, {"first_name": "Z"})
    assert not is_allowed(_ctx("u1"), "update", prof, {"role": "hr"})
    assert not is_allowed(_ctx("u2"), "update", prof, {"first_name": "Z"})
    assert not is_allowed(_ctx("u1"), "insert", prof)


def test_ownership_cannot_be_transferred():
    doc = Document(id="d1", title="t", type="other_title", file_url="/files/documents/u1/x.pdf", status="pending", user_id="u1")

    assert is_allowed(_ctx("u1"), "update", doc, {"title": "new"})
    assert not is_allowed(_ctx("u1"), "update", doc, {"user_id": "u2"})


def test_document_status_rules():
    doc = Document(id="d1", title="t", type="other_title", file_url="x", status="rejected", user_id="u1")
    hr = _ctx("hr1", "hr")

    assert not is_allowed(_ctx("u1"), "update", doc, {"status": "approved"})
    assert is_allowed(_ctx("u1"), "update", doc, {"status": "pending", "version": 2})
    assert is_allowed(hr, "update", doc, {"status": "approved"})
    assert not is_allowed(hr, "update", doc, {"status": "approved", "title": "x"})


def test_candidate_applications_must_start_pending():
    row = Application(id="a1", job_offer_id="o1", user_id="c1", status="accepted")
    assert not is_allowed(_ctx("c1"), "insert", row)
    row.status = "pending"
    assert is_allowed(_ctx("c1"), "insert", row)
    assert not is_allowed(_ctx("c2"), "insert", row)


def test_tables_without_rules_deny_everything():
    assert rules_for("activities", "insert") == ()
    assert rules_for("no_such_table", "select") == ()
    with pytest.raises(ValueError):
        is_allowed(_ctx("u1"), "truncate", Profile(id="u1"))
