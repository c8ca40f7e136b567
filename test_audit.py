import pytest

from bakeledger.errors import ValidationError
from bakeledger.services.mirror import EVENT_HISTORY
from bakeledger.util.serialize import SERVER_TIMESTAMP, UNDEFINED


@pytest.mark.asyncio
async def test_entry_requires_event_and_entity_type(local_ws):
    with pytest.raises(ValidationError):
        await local_ws.audit.record({"eventType": "TRANSACTION_CREATED"})
    with pytest.raises(ValidationError):
        await local_ws.audit.record({"entityType": "Income"})


@pytest.mark.asyncio
async def test_local_entry_goes_to_front_of_mirror_log(local_ws):
    first = await local_ws.audit.record({"eventType": "A", "entityType": "Income"})
    second = await local_ws.audit.record({"eventType": "B", "entityType": "Income", "note": UNDEFINED})
    log = local_ws.history_log.items
    assert [e["id"] for e in log] == [second, first]
    assert log[0]["userId"] is None
    assert log[0]["userName"] == "local system"
    assert log[0]["note"] is None
    # persisted, not only in memory
    assert local_ws.mirror_store.get(local_ws.history_log.key)[0]["id"] == second


@pytest.mark.asyncio
async def test_remote_entry_is_staged_into_callers_batch(remote_ws, docstore, baker):
    batch = docstore.batch()
    entry_id = await remote_ws.audit.record({"eventType": "A", "entityType": "Recipe", "id": "spoofed"}, batch)
    assert len(batch) == 1
    history = docstore.collection(baker.id, EVENT_HISTORY)
    assert history.get(entry_id) is None

    batch.commit()
    stored = history.get(entry_id)
    assert stored["userId"] == baker.id
    assert stored["userName"] == "Ana Baker"
    assert stored["timestamp"] not in (None, SERVER_TIMESTAMP)
    assert stored["id"] == entry_id


@pytest.mark.asyncio
async def test_remote_entry_without_batch_is_written_immediately(remote_ws, docstore, baker):
    entry_id = await remote_ws.audit.record({"eventType": "A", "entityType": "Recipe"})
    assert docstore.collection(baker.id, EVENT_HISTORY).get(entry_id)["eventType"] == "A"
