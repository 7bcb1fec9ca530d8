"""Unit tests for the snapshot store."""

import pytest

from oracle_sync.errors import NotFoundError
from oracle_sync.models import RequestState
from oracle_sync.store import Store

from conftest import OTHER, TOKEN, USER, make_event, make_key, make_request


class TestReads:
    """Lookups before and after data is fetched."""

    def test_empty_store_raises_not_found(self, store):
        read = store.read()

        with pytest.raises(NotFoundError):
            read.user_address()
        with pytest.raises(NotFoundError):
            read.input_request()
        with pytest.raises(NotFoundError):
            read.chain(1)
        with pytest.raises(NotFoundError):
            read.current_time(1)
        assert read.descending_requests() == []
        assert read.version == 0

    def test_not_found_is_lookup_error(self, store):
        with pytest.raises(LookupError):
            store.read().chain_id()

    def test_request_lookup(self, store):
        key = make_key()
        request = make_request(key)
        store.write(lambda w: w.chains(1).requests(key).set(request))

        read = store.read()
        assert read.request(key) == request
        with pytest.raises(NotFoundError):
            read.request(make_key(timestamp=1))

    def test_selected_request_lookup(self, store):
        key = make_key(chain_id=137)

        def apply(w):
            w.inputs().request(key)
            w.chains(137).requests(key).set(make_request(key))

        store.write(apply)
        read = store.read()
        assert read.request_chain_id() == 137
        assert read.request().key == key

    def test_balances_and_allowances(self, store):
        def apply(w):
            token = w.chains(1).erc20s(TOKEN.lower())
            token.props(6, "USDC")
            token.balance(USER, 100)
            token.allowance(USER, OTHER, 50)

        store.write(apply)
        read = store.read()
        assert read.erc20(1, TOKEN).symbol == "USDC"
        assert read.balance(1, TOKEN, USER.lower()) == 100
        assert read.allowance(1, TOKEN, USER, OTHER) == 50
        with pytest.raises(NotFoundError):
            read.allowance(1, TOKEN, OTHER, USER)
        with pytest.raises(NotFoundError):
            read.erc20(137, TOKEN)


class TestWrites:
    """Atomicity and builder validation."""

    def test_write_bumps_version(self, store):
        store.write(lambda w: w.inputs().chain(1))
        store.write(lambda w: w.inputs().user(USER))
        assert store.version == 2
        assert store.read().chain_id() == 1

    def test_reader_keeps_its_snapshot(self, store):
        store.write(lambda w: w.chains(1).current_time(10))
        before = store.read()

        store.write(lambda w: w.chains(1).current_time(20))

        assert before.current_time(1) == 10
        assert store.read().current_time(1) == 20

    def test_failed_write_applies_nothing(self, store):
        key = make_key()

        def apply(w):
            w.chains(1).current_time(10)
            w.chains(1).requests(key).set(make_request(key))
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.write(apply)

        read = store.read()
        assert read.version == 0
        assert not read.has_chain(1)

    def test_token_copy_on_write(self, store):
        store.write(lambda w: w.chains(1).erc20s(TOKEN).balance(USER, 1))
        before = store.read()

        store.write(lambda w: w.chains(1).erc20s(TOKEN).balance(USER, 2))

        assert before.balance(1, TOKEN, USER) == 1
        assert store.read().balance(1, TOKEN, USER) == 2

    def test_write_view_invalid_after_write(self, store):
        captured = []
        store.write(captured.append)

        with pytest.raises(RuntimeError):
            captured[0].chains(1)

    def test_async_write_rejected(self, store):
        async def apply(w):
            w.chains(1).current_time(1)

        with pytest.raises(TypeError):
            store.write(apply)
        assert store.version == 0

    def test_request_chain_mismatch_rejected(self, store):
        key = make_key(chain_id=137)
        with pytest.raises(ValueError):
            store.write(lambda w: w.chains(1).requests(key).set(make_request(key)))

    def test_request_state_requires_existing_request(self, store):
        key = make_key()
        with pytest.raises(NotFoundError):
            store.write(lambda w: w.chains(1).requests(key).state(RequestState.PROPOSED))

        store.write(lambda w: w.chains(1).requests(key).set(make_request(key)))
        store.write(lambda w: w.chains(1).requests(key).state(RequestState.PROPOSED))
        assert store.read().request(key).state is RequestState.PROPOSED

    def test_checkpoint_cannot_move_backwards(self, store):
        store.write(lambda w: w.chains(1).last_scanned_block(100))
        with pytest.raises(ValueError, match="cannot move backwards"):
            store.write(lambda w: w.chains(1).last_scanned_block(99))
        assert store.read().last_scanned_block(1) == 100

    def test_events_deduplicated_by_log_identity(self, store):
        key = make_key()
        event = make_event(key, block_number=5)

        store.write(lambda w: w.chains(1).event(event))
        store.write(lambda w: w.chains(1).event(event))

        assert store.read().oracle_events(1) == [event]

    def test_event_chain_mismatch_rejected(self, store):
        event = make_event(make_key(chain_id=137))
        with pytest.raises(ValueError):
            store.write(lambda w: w.chains(1).event(event))

    def test_clear_user(self, store):
        store.write(lambda w: w.inputs().user(USER))
        store.write(lambda w: w.inputs().clear_user())
        with pytest.raises(NotFoundError):
            store.read().user_address()

    def test_invalid_user_address_rejected(self):
        store = Store()
        with pytest.raises(ValueError):
            store.write(lambda w: w.inputs().user("not-an-address"))
