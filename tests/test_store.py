from datetime import datetime, timezone

import pytest

from recovery_api.errors import Conflict, NotFound
from recovery_api.passes import self_redeem
from recovery_api.store import PassStore
from tests.helpers import seed_pass

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def test_stale_write_is_refused():
    row = seed_pass(total=3)
    store = PassStore()
    state = store.get(row.id)

    assert store.update(self_redeem(state, "Cryo", NOW)) is True
    # second write computed from the same read
    assert store.update(self_redeem(state, "Compression", NOW)) is False

    current = store.get(row.id)
    assert current.version == state.version + 1
    assert [r.service_type for r in current.redemption_history] == ["Cryo"]
    assert current.remaining_passes == 2


def test_mutate_retries_after_concurrent_write():
    row = seed_pass(total=3)
    store = PassStore()
    seen_versions = []

    def transform(state):
        seen_versions.append(state.version)
        if len(seen_versions) == 1:
            # another request lands between this read and its write
            assert store.update(self_redeem(state, "Cryo", NOW))
        return self_redeem(state, "Compression", NOW)

    updated = store.mutate(row.id, transform)

    assert seen_versions == [1, 2]
    assert [h["service_type"] for h in updated.redemption_history] == ["Cryo", "Compression"]
    assert [t["is_used"] for t in updated.individual_tickets] == [True, True, False]
    assert updated.remaining_passes == 1


def test_mutate_gives_up_after_retries():
    row = seed_pass(total=5)
    store = PassStore(retries=2)

    def transform(state):
        store.update(self_redeem(state, "Cryo", NOW))
        return self_redeem(state, "Compression", NOW)

    with pytest.raises(Conflict):
        store.mutate(row.id, transform)

    history = store.get(row.id).redemption_history
    assert [r.service_type for r in history] == ["Cryo", "Cryo"]


def test_mutate_missing_pass():
    with pytest.raises(NotFound) as exc:
        PassStore().mutate("tp_missing", lambda state: state, not_found_message="Pass not found")
    assert exc.value.message == "Pass not found"


def test_mutate_without_change_does_not_bump_version():
    row = seed_pass(total=3)
    store = PassStore()

    store.mutate(row.id, lambda state: None)

    assert store.get(row.id).version == row.version


def test_stored_counter_follows_ticket_list():
    row = seed_pass(total=3)
    store = PassStore()

    store.mutate(row.id, lambda state: self_redeem(state, "Cryo", NOW))

    assert store.get_record(row.id).remaining_passes == 2
