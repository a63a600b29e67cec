import pytest
from web3 import Web3

from zkvault.core.errors import EventDecodeError
from zkvault.infrastructure.blockchain.contracts.abi import event_topic, find_entry, load_vault_abi
from zkvault.infrastructure.blockchain.event_decoder import (
    UNRECOGNIZED,
    Deposited,
    EventDecoder,
    Paid,
    Registered,
    Withdrawn,
)

from conftest import vault_log

RECIPIENT = "0x4444444444444444444444444444444444444444"


@pytest.fixture
def decoder():
    return EventDecoder()


def test_decoder_knows_only_mirrored_events(decoder):
    assert set(decoder.topics) == {"Deposited", "Paid", "Withdrawn", "Registered"}


def test_decode_deposited(decoder):
    log = vault_log("Deposited", [111], ["uint256"], [500])
    assert decoder.decode(log) == Deposited(username_hash=111, amount=500)


def test_decode_paid(decoder):
    log = vault_log("Paid", [111, 222], ["uint256"], [75])
    assert decoder.decode(log) == Paid(from_username_hash=111, to_username_hash=222, amount=75)


def test_decode_withdrawn_checksums_address(decoder):
    log = vault_log("Withdrawn", [111, RECIPIENT], ["uint256"], [10])
    event = decoder.decode(log)
    assert isinstance(event, Withdrawn)
    assert event.to_user_address == Web3.to_checksum_address(RECIPIENT)
    assert event.amount == 10


def test_decode_registered(decoder):
    log = vault_log("Registered", [111], ["uint256"], [222])
    assert decoder.decode(log) == Registered(username_hash=111, credential_hash=222)


def test_topic_case_is_ignored(decoder):
    log = vault_log("Deposited", [111], ["uint256"], [500])
    log["topics"][0] = log["topics"][0].upper().replace("0X", "0x")
    assert decoder.decode(log) == Deposited(username_hash=111, amount=500)


def test_admin_events_are_unrecognized(decoder):
    entry = find_entry(load_vault_abi(), "Upgraded", kind="event")
    log = {"topics": [event_topic(entry), "0x" + "00" * 12 + "ab" * 20], "data": "0x"}
    assert decoder.decode(log) is UNRECOGNIZED


def test_logs_without_topics_are_unrecognized(decoder):
    assert decoder.decode({"topics": [], "data": "0x"}) is UNRECOGNIZED
    assert not UNRECOGNIZED


def test_indexed_topic_count_mismatch(decoder):
    log = vault_log("Paid", [111, 222], ["uint256"], [75])
    log["topics"] = log["topics"][:2]
    with pytest.raises(EventDecodeError):
        decoder.decode(log)


def test_truncated_data_is_a_decode_error(decoder):
    log = vault_log("Deposited", [111], ["uint256"], [500])
    log["data"] = "0x1234"
    with pytest.raises(EventDecodeError):
        decoder.decode(log)
