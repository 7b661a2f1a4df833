import pytest

from vaultledger.blockchain.token_locker import LockInfo, LockLedger
from vaultledger.core.config import RemovalPolicy
from vaultledger.core.contracts.token import FungibleToken
from vaultledger.core.exceptions import (
    AlreadyWithdrawnError,
    IndexOutOfRangeError,
    InvalidAmountError,
    InvalidAssetError,
    InvalidDurationError,
    InvalidHolderError,
    ReentrantCallError,
    StillLockedError,
    TransferFailedError,
)

HOLDER = "0xholder"
LOCKER = "0xlocker"


def _make_locker(token, clock, metrics, policy, *extra_tokens):
    assets = {t.address: t.account(LOCKER) for t in (token, *extra_tokens)}
    for t in (token, *extra_tokens):
        t.mint(HOLDER, 1_000)
        t.approve(HOLDER, LOCKER, 1_000)
    return LockLedger(assets, clock=clock, removal_policy=policy, metrics=metrics)


@pytest.fixture
def compacting(token, clock, metrics):
    return _make_locker(token, clock, metrics, RemovalPolicy.COMPACTING)


@pytest.fixture
def soft(token, clock, metrics):
    return _make_locker(token, clock, metrics, RemovalPolicy.SOFT_DELETE)


def test_lock_and_withdraw_compacting(compacting, token):
    index = compacting.lock(HOLDER, token.address, 100, 10, now=0)
    assert index == 0
    assert token.balance_of(HOLDER) == 900
    assert token.balance_of(LOCKER) == 100
    assert compacting.get_assets(HOLDER) == [token.address]

    with pytest.raises(StillLockedError):
        compacting.withdraw(HOLDER, token.address, 0, now=5)
    assert compacting.remaining_time(HOLDER, token.address, 0, now=5) == 5

    assert compacting.withdraw(HOLDER, token.address, 0, now=10) == 100
    assert token.balance_of(HOLDER) == 1_000
    assert compacting.lock_count(HOLDER, token.address) == 0
    assert compacting.get_locks(HOLDER) == []
    assert compacting.get_assets(HOLDER) == []


def test_lock_and_withdraw_soft_delete(soft, token):
    soft.lock(HOLDER, token.address, 100, 10, now=0)
    assert soft.withdraw(HOLDER, token.address, 0, now=10) == 100

    # Slot stays in place with a zero amount
    assert soft.lock_count(HOLDER, token.address) == 1
    assert soft.get_locks(HOLDER) == []
    assert soft.get_assets(HOLDER) == [token.address]
    with pytest.raises(AlreadyWithdrawnError):
        soft.withdraw(HOLDER, token.address, 0, now=20)


def test_soft_delete_keeps_indices_stable(soft, token):
    for amount, duration in ((10, 1), (20, 2), (30, 3)):
        soft.lock(HOLDER, token.address, amount, duration, now=0)

    soft.withdraw(HOLDER, token.address, 0, now=5)
    assert soft.get_locks(HOLDER) == [
        LockInfo(token.address, 1, 20, 2),
        LockInfo(token.address, 2, 30, 3),
    ]
    assert soft.withdraw(HOLDER, token.address, 2, now=5) == 30


def test_compacting_moves_last_lock_into_withdrawn_slot(compacting, token):
    for amount, duration in ((10, 1), (20, 2), (30, 3)):
        compacting.lock(HOLDER, token.address, amount, duration, now=0)

    before = len(compacting.get_locks(HOLDER))
    compacting.withdraw(HOLDER, token.address, 0, now=5)
    locks = compacting.get_locks(HOLDER)
    assert before == len(locks) + 1
    assert locks == [
        LockInfo(token.address, 0, 30, 3),
        LockInfo(token.address, 1, 20, 2),
    ]
    # Index 2 no longer exists after compaction
    with pytest.raises(IndexOutOfRangeError):
        compacting.withdraw(HOLDER, token.address, 2, now=5)


def test_get_locks_across_assets(token, clock, metrics):
    other = FungibleToken(symbol="OTH")
    locker = _make_locker(token, clock, metrics, RemovalPolicy.COMPACTING, other)
    locker.lock(HOLDER, token.address, 100, 10, now=0)
    locker.lock(HOLDER, other.address, 50, 20, now=0)
    locker.lock(HOLDER, token.address, 25, 30, now=0)

    assert [(i.asset, i.amount) for i in locker.get_locks(HOLDER)] == [
        (token.address, 100),
        (token.address, 25),
        (other.address, 50),
    ]
    assert [i.amount for i in locker.get_locks(HOLDER, other.address)] == [50]
    assert locker.total_locked(HOLDER) == 175
    assert locker.total_locked(HOLDER, token.address) == 125

    locker.withdraw(HOLDER, other.address, 0, now=20)
    assert locker.get_assets(HOLDER) == [token.address]


def test_lock_validation(compacting, token):
    with pytest.raises(InvalidHolderError):
        compacting.lock("", token.address, 100, 10, now=0)
    with pytest.raises(InvalidAssetError):
        compacting.lock(HOLDER, "", 100, 10, now=0)
    with pytest.raises(InvalidAssetError):
        compacting.lock(HOLDER, "0xunknown", 100, 10, now=0)
    with pytest.raises(InvalidAmountError):
        compacting.lock(HOLDER, token.address, 0, 10, now=0)
    with pytest.raises(InvalidDurationError):
        compacting.lock(HOLDER, token.address, 100, 0, now=0)
    assert compacting.get_locks(HOLDER) == []
    assert token.balance_of(HOLDER) == 1_000


def test_index_out_of_range(compacting, token):
    with pytest.raises(IndexOutOfRangeError):
        compacting.withdraw(HOLDER, token.address, 0, now=0)
    with pytest.raises(IndexOutOfRangeError):
        compacting.remaining_time(HOLDER, token.address, 0, now=0)
    compacting.lock(HOLDER, token.address, 100, 10, now=0)
    with pytest.raises(IndexOutOfRangeError):
        compacting.withdraw(HOLDER, token.address, -1, now=10)


def test_remaining_time_is_zero_after_unlock(compacting, token):
    compacting.lock(HOLDER, token.address, 100, 10, now=0)
    assert compacting.remaining_time(HOLDER, token.address, 0, now=0) == 10
    assert compacting.remaining_time(HOLDER, token.address, 0, now=25) == 0


def test_failed_pull_records_nothing(token, clock, metrics):
    locker = LockLedger({token.address: token.account(LOCKER)}, clock=clock, metrics=metrics)
    token.mint(HOLDER, 100)  # no allowance granted
    with pytest.raises(TransferFailedError):
        locker.lock(HOLDER, token.address, 100, 10, now=0)
    assert locker.get_assets(HOLDER) == []
    assert locker.lock_count(HOLDER, token.address) == 0


@pytest.mark.parametrize("policy", [RemovalPolicy.COMPACTING, RemovalPolicy.SOFT_DELETE])
def test_failed_withdrawal_restores_lock(token, clock, metrics, policy):
    locker = _make_locker(token, clock, metrics, policy)
    locker.lock(HOLDER, token.address, 40, 10, now=0)
    locker.lock(HOLDER, token.address, 60, 10, now=0)

    token.fail_transfers = "paused"
    with pytest.raises(TransferFailedError):
        locker.withdraw(HOLDER, token.address, 0, now=10)
    assert [i.amount for i in locker.get_locks(HOLDER)] == [40, 60]
    assert locker.get_assets(HOLDER) == [token.address]

    token.fail_transfers = ""
    assert locker.withdraw(HOLDER, token.address, 0, now=10) == 40


@pytest.mark.parametrize("policy", [RemovalPolicy.COMPACTING, RemovalPolicy.SOFT_DELETE])
def test_recipient_hook_failure_does_not_withdraw_twice(token, clock, metrics, policy):
    locker = _make_locker(token, clock, metrics, policy)
    locker.lock(HOLDER, token.address, 100, 10, now=0)
    failures = []

    def reject_first_credit(from_addr, to_addr, amount):
        if from_addr == LOCKER and not failures:
            failures.append(amount)
            raise TransferFailedError("holder rejected")

    token.hooks.append(reject_first_credit)
    with pytest.raises(TransferFailedError):
        locker.withdraw(HOLDER, token.address, 0, now=10)
    assert token.balance_of(HOLDER) == 900
    assert token.balance_of(LOCKER) == 100
    assert locker.total_locked(HOLDER, token.address) == 100

    assert locker.withdraw(HOLDER, token.address, 0, now=10) == 100
    assert token.balance_of(HOLDER) == 1_000
    assert token.balance_of(LOCKER) == 0


def test_reentrant_withdraw_is_rejected(compacting, token):
    compacting.lock(HOLDER, token.address, 100, 10, now=0)
    compacting.lock(HOLDER, token.address, 50, 10, now=0)
    nested_errors = []

    def reenter(from_addr, to_addr, amount):
        if from_addr != LOCKER:
            return
        try:
            compacting.withdraw(HOLDER, token.address, 0, now=10)
        except ReentrantCallError as exc:
            nested_errors.append(exc)

    token.hooks.append(reenter)
    assert compacting.withdraw(HOLDER, token.address, 0, now=10) == 100
    assert len(nested_errors) == 1
    assert [i.amount for i in compacting.get_locks(HOLDER)] == [50]


def test_lock_uses_clock_when_now_omitted(compacting, token, clock):
    clock.set(1_000)
    compacting.lock(HOLDER, token.address, 100, 10)
    assert compacting.get_locks(HOLDER)[0].unlock_time == 1_010
    clock.advance(10)
    assert compacting.withdraw(HOLDER, token.address, 0) == 100


def test_lock_metrics_and_snapshot(compacting, token, registry, clock, metrics):
    compacting.lock(HOLDER, token.address, 100, 10, now=0)
    labels = {"asset": token.address}
    assert registry.get_sample_value("vaultledger_locks_created_total", labels) == 1.0
    assert registry.get_sample_value("vaultledger_locked_amount", labels) == 100.0

    restored = LockLedger({token.address: token.account(LOCKER)}, clock=clock, metrics=metrics)
    restored.load_dict(compacting.to_dict())
    assert restored.get_locks(HOLDER) == compacting.get_locks(HOLDER)
    assert restored.removal_policy is RemovalPolicy.COMPACTING
