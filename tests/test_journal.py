import pytest

from services.claims.journal import ClaimJournal


@pytest.fixture
def journal(tmp_path):
    return ClaimJournal(tmp_path / "data" / "claims.db")


def test_append_is_idempotent_on_event_id(journal):
    journal.append_event("ClaimSubmitted", event_id="e1", note_id="n1", signature="s1")
    journal.append_event("ClaimSubmitted", event_id="e1", note_id="n1", signature="s1")
    assert len(journal.events()) == 1


def test_projection_follows_events(journal):
    journal.append_event("ClaimSubmitted", note_id="n1", signature="s1")
    assert journal.claim_status("n1")["status"] == "submitted"
    journal.append_event("ClaimConfirmed", note_id="n1", signature="s1")
    status = journal.claim_status("n1")
    assert status["status"] == "confirmed"
    assert status["signature"] == "s1"
    assert journal.claim_status("unknown") is None


def test_failed_reclaim_does_not_overwrite_a_landed_sweep(journal):
    journal.append_event("BookkeepingDivergence", note_id="n1", signature="s1", error="store down")
    journal.append_event("ClaimFailed", note_id="n1", signature=None, error="InsufficientBalance")
    assert journal.claim_status("n1")["status"] == "divergent"
    assert journal.pending_bookkeeping() == [("n1", "s1")]


def test_failed_attempt_keeps_earlier_signature(journal):
    journal.append_event("ClaimSubmitted", note_id="n1", signature="s1")
    journal.append_event("ClaimFailed", note_id="n1", error="ConfirmationTimeout")
    status = journal.claim_status("n1")
    assert status["status"] == "failed"
    assert status["signature"] == "s1"


def test_replay_rebuilds_projection(journal):
    journal.append_event("ClaimSubmitted", note_id="n1", signature="s1")
    journal.append_event("ClaimConfirmed", note_id="n1", signature="s1")
    journal.append_event("ClaimFailed", note_id="n2", error="ZeroBalance")
    before = (journal.claim_status("n1"), journal.claim_status("n2"))

    assert journal.replay() == 3
    assert (journal.claim_status("n1"), journal.claim_status("n2")) == before


def test_unknown_event_kind_rejected(journal):
    with pytest.raises(ValueError):
        journal.append_event("Bogus", note_id="n1")


@pytest.mark.asyncio
async def test_reconcile_leaves_still_failing_notes_pending(journal, store):
    journal.append_event("BookkeepingDivergence", note_id="n1", signature="s1")
    store.fail_mark_claimed = 1

    assert await journal.reconcile(store) == []
    assert journal.pending_bookkeeping() == [("n1", "s1")]


@pytest.mark.asyncio
async def test_reconcile_marks_note_claimed(journal, store):
    note_id = store.add_note({"id": "n1", "recipientHash": "h", "stealthAddress": "a", "ephemeralPublicKey": "e"})
    journal.append_event("BookkeepingDivergence", note_id=note_id, signature="s1")

    assert await journal.reconcile(store) == ["n1"]
    assert store.get("n1")["claimTransactionSignature"] == "s1"
    assert journal.pending_bookkeeping() == []
    assert [e["kind"] for e in journal.events("n1")] == ["BookkeepingDivergence", "BookkeepingReconciled"]
