from mentalspace.client.drafts import DraftSlots, DraftState, primary_key, recovery_key
from mentalspace.client.secure_cache import SecureCache


def _slots(storage, encryptor, clock, note_id='123'):
    return DraftSlots(SecureCache(storage, encryptor), note_id, clock=clock)


def test_keys_follow_note_id():
    assert primary_key('123') == 'note_draft_123'
    assert recovery_key('123') == 'note_draft_recovery_123'


def test_empty_slots(storage, encryptor, clock):
    slots = _slots(storage, encryptor, clock)
    assert slots.state is DraftState.NO_DRAFT
    assert slots.version == 0
    assert slots.resolve() is None


def test_primary_write_is_encrypted_and_versioned(storage, encryptor, clock):
    slots = _slots(storage, encryptor, clock)
    record = slots.write_primary({'clientName': 'John Doe'})

    assert record.version == 1
    assert record.timestamp == '2024-01-01T09:00:00Z'
    assert 'John Doe' not in storage.get_item('note_draft_123')
    assert slots.state is DraftState.DRAFT_SAVED

    clock.advance(minutes=1)
    assert slots.write_primary({'clientName': 'Jane Doe'}).version == 2


def test_recovery_write_takes_next_version(storage, encryptor, clock):
    slots = _slots(storage, encryptor, clock)
    slots.write_primary({'step': 1})
    record = slots.write_recovery({'step': 1}, error='offline')

    assert record.version == 2
    snapshot = slots.read()
    assert snapshot.primary.version == 1
    assert snapshot.recovery.error == 'offline'
    assert snapshot.version == 2


def test_resolve_prefers_primary(storage, encryptor, clock):
    slots = _slots(storage, encryptor, clock)
    slots.write_recovery({'from': 'recovery'})
    slots.write_primary({'from': 'primary'})
    assert slots.resolve().structured_content == {'from': 'primary'}


def test_resolve_falls_back_to_recovery_when_primary_corrupt(storage, encryptor, clock):
    slots = _slots(storage, encryptor, clock)
    slots.write_primary({'from': 'primary'})
    slots.write_recovery({'from': 'recovery'})
    storage.set_item('note_draft_123', 'corrupted')

    assert slots.resolve().structured_content == {'from': 'recovery'}
    assert storage.get_item('note_draft_123') is None


def test_clear_removes_both_slots(storage, encryptor, clock):
    slots = _slots(storage, encryptor, clock)
    slots.write_primary({'a': 1})
    slots.write_recovery({'a': 1})
    slots.clear()

    assert storage.get_item('note_draft_123') is None
    assert storage.get_item('note_draft_recovery_123') is None
    assert slots.state is DraftState.NO_DRAFT


def test_slots_for_other_notes_are_independent(storage, encryptor, clock):
    _slots(storage, encryptor, clock, '1').write_primary({'n': 1})
    other = _slots(storage, encryptor, clock, '2')
    assert other.resolve() is None
    assert other.write_primary({'n': 2}).version == 1


def test_wrong_shaped_entry_is_erased(storage, encryptor, clock):
    slots = _slots(storage, encryptor, clock)
    SecureCache(storage, encryptor).secure_store('note_draft_123', {'unexpected': True})

    assert slots.resolve() is None
    assert storage.get_item('note_draft_123') is None
    assert slots.state is DraftState.NO_DRAFT
