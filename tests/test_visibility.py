"""Tests for the read/write permission rules."""
import pytest

from quillnote_mcp.models.schema import Note, Principal, Visibility
from quillnote_mcp.visibility import can_read, can_write, classify

OWNER = Principal(id="owner", email="owner@example.com")
FRIEND = Principal(id="friend", email="Friend@Example.com")
STRANGER = Principal(id="stranger", email="stranger@example.com")


def note(is_public=False, shared_with=()):
    return Note(
        title="N", owner_id=OWNER.id, is_public=is_public, shared_with=list(shared_with)
    )


@pytest.mark.parametrize(
    "principal, is_public, shared_with, readable",
    [
        (OWNER, False, [], True),
        (OWNER, True, [], True),
        (FRIEND, False, [], False),
        (FRIEND, False, ["friend@example.com"], True),
        (FRIEND, True, [], True),
        (STRANGER, False, ["friend@example.com"], False),
        (STRANGER, True, ["friend@example.com"], True),
    ],
)
def test_read_truth_table(principal, is_public, shared_with, readable):
    assert can_read(principal, note(is_public, shared_with)) is readable


@pytest.mark.parametrize("principal", [FRIEND, STRANGER])
def test_only_owner_writes(principal):
    shared = note(is_public=True, shared_with=["friend@example.com"])
    assert can_write(OWNER, shared)
    assert not can_write(principal, shared)


def test_collaborator_email_match_is_case_insensitive():
    shared = note(shared_with=["FRIEND@example.com"])
    assert can_read(Principal(id="x", email="friend@EXAMPLE.com"), shared)


def test_classify():
    assert classify(note()) == Visibility.PRIVATE
    assert classify(note(shared_with=["a@b.co"])) == Visibility.SHARED
    assert classify(note(is_public=True)) == Visibility.PUBLIC
    assert classify(note(is_public=True, shared_with=["a@b.co"])) == Visibility.PUBLIC
