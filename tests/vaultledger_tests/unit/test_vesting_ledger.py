import pytest

from vaultledger.blockchain.vesting_manager import VestingLedger, VestingSchedule, releasable_amount
from vaultledger.core.constants import ZERO_ADDRESS
from vaultledger.core.exceptions import (
    AccessDeniedError,
    ArithmeticUnderflowError,
    DuplicateScheduleError,
    InvalidAmountError,
    InvalidBeneficiaryError,
    InvalidDurationError,
    NoScheduleError,
    NothingToReleaseError,
    ReentrantCallError,
    TransferFailedError,
)

OWNER = "0xowner"
ALICE = "0xalice"
VAULT = "0xvesting"


@pytest.fixture
def ledger(token, access_control, clock, metrics):
    token.mint(VAULT, 10_000)
    return VestingLedger(token.account(VAULT), access_control, clock=clock, metrics=metrics)


def _scenario(ledger):
    return ledger.create_schedule(OWNER, ALICE, 1000, 0, 100, 900)


def test_release_scenario_follows_formula(ledger, token):
    _scenario(ledger)

    assert ledger.releasable_amount(ALICE, now=50) == 0
    assert ledger.releasable_amount(ALICE, now=100) == 0

    # vested 500, unreleased 500, 450s since cliff end -> 500 * 450 / 900
    assert ledger.releasable_amount(ALICE, now=550) == 250
    assert ledger.release(ALICE, now=550) == 250
    assert token.balance_of(ALICE) == 250

    schedule = ledger.get_schedule(ALICE)
    assert schedule.last_released_time == 550
    assert schedule.released_amount == 250

    with pytest.raises(NothingToReleaseError):
        ledger.release(ALICE, now=550)

    # Fully vested: nothing left unvested, so nothing releasable
    assert ledger.releasable_amount(ALICE, now=1000) == 0
    with pytest.raises(NothingToReleaseError):
        ledger.release(ALICE, now=1000)

    assert ledger.released_amount(ALICE) <= 1000


def test_release_past_vesting_window_underflows(ledger):
    _scenario(ledger)
    with pytest.raises(ArithmeticUnderflowError):
        ledger.releasable_amount(ALICE, now=1001)


def test_release_amounts_depend_on_call_frequency(token, access_control, clock, metrics):
    token.mint(VAULT, 10_000)
    frequent = VestingLedger(token.account(VAULT), access_control, clock=clock, metrics=metrics)
    frequent.create_schedule(OWNER, ALICE, 1000, 0, 100, 900)
    assert frequent.release(ALICE, now=400) == 222
    assert frequent.release(ALICE, now=700) == 111

    schedule = VestingSchedule(ALICE, 1000, 0, 100, 900)
    assert releasable_amount(schedule, 700) == 222


def test_release_uses_clock_when_now_omitted(ledger, clock):
    _scenario(ledger)
    clock.set(550)
    assert ledger.release(ALICE) == 250


def test_release_rejects_time_before_last_release(ledger):
    _scenario(ledger)
    ledger.release(ALICE, now=550)
    with pytest.raises(ArithmeticUnderflowError):
        ledger.releasable_amount(ALICE, now=500)


def test_release_without_schedule(ledger):
    with pytest.raises(NoScheduleError):
        ledger.release(ALICE, now=10)


def test_create_schedule_validation(ledger):
    with pytest.raises(AccessDeniedError):
        ledger.create_schedule("0xmallory", ALICE, 1000, 0, 100, 900)
    with pytest.raises(InvalidBeneficiaryError):
        ledger.create_schedule(OWNER, "", 1000, 0, 100, 900)
    with pytest.raises(InvalidBeneficiaryError):
        ledger.create_schedule(OWNER, ZERO_ADDRESS, 1000, 0, 100, 900)
    with pytest.raises(InvalidAmountError):
        ledger.create_schedule(OWNER, ALICE, 0, 0, 100, 900)
    with pytest.raises(InvalidDurationError):
        ledger.create_schedule(OWNER, ALICE, 1000, 0, 901, 900)
    with pytest.raises(InvalidDurationError):
        ledger.create_schedule(OWNER, ALICE, 1000, 0, 0, 0)
    assert not ledger.has_schedule(ALICE)

    ledger.create_schedule(OWNER, ALICE, 1000, 0, 100, 900)
    with pytest.raises(DuplicateScheduleError):
        ledger.create_schedule(OWNER, "0xALICE", 500, 0, 0, 10)


def test_create_schedule_does_not_move_tokens(ledger, token):
    _scenario(ledger)
    assert token.balance_of(VAULT) == 10_000
    assert ledger.events.of_type("ScheduleCreated")[0].data["total_amount"] == 1000


def test_failed_transfer_restores_schedule(ledger, token):
    _scenario(ledger)
    token.fail_transfers = "paused"
    with pytest.raises(TransferFailedError):
        ledger.release(ALICE, now=550)

    schedule = ledger.get_schedule(ALICE)
    assert schedule.last_released_time == 0
    assert schedule.released_amount == 0
    assert ledger.events.of_type("TokensReleased") == []

    token.fail_transfers = ""
    assert ledger.release(ALICE, now=550) == 250


def test_reentrant_release_is_rejected(ledger, token):
    _scenario(ledger)
    nested_errors = []

    def reenter(from_addr, to_addr, amount):
        try:
            ledger.release(ALICE, now=550)
        except ReentrantCallError as exc:
            nested_errors.append(exc)

    token.hooks.append(reenter)
    assert ledger.release(ALICE, now=550) == 250
    assert len(nested_errors) == 1
    assert token.balance_of(ALICE) == 250
    assert ledger.get_schedule(ALICE).last_released_time == 550


def test_recipient_hook_failure_does_not_pay_twice(ledger, token):
    _scenario(ledger)
    failures = []

    def reject_first_credit(from_addr, to_addr, amount):
        if to_addr == ALICE and not failures:
            failures.append(amount)
            raise TransferFailedError("recipient rejected")

    token.hooks.append(reject_first_credit)
    with pytest.raises(TransferFailedError):
        ledger.release(ALICE, now=550)
    assert token.balance_of(ALICE) == 0
    assert token.balance_of(VAULT) == 10_000
    assert ledger.get_schedule(ALICE).released_amount == 0

    assert ledger.release(ALICE, now=550) == 250
    assert token.balance_of(ALICE) == 250
    assert ledger.released_amount(ALICE) == 250


def test_releasable_is_not_monotone_in_time(ledger):
    # With no release in between, the amount peaks mid-window and falls to zero at the end
    _scenario(ledger)
    assert ledger.releasable_amount(ALICE, now=550) == 250
    assert ledger.releasable_amount(ALICE, now=775) == 187
    assert ledger.releasable_amount(ALICE, now=1000) == 0


def test_release_records_metrics_and_events(ledger, registry):
    _scenario(ledger)
    ledger.release(ALICE, now=550)
    with pytest.raises(NothingToReleaseError):
        ledger.release(ALICE, now=550)

    assert registry.get_sample_value("vaultledger_vesting_released_total") == 250.0
    assert registry.get_sample_value(
        "vaultledger_rejections_total",
        {"ledger": "vesting", "error": "NothingToReleaseError"},
    ) == 1.0
    event = ledger.events.of_type("TokensReleased")[0]
    assert event.data == {"beneficiary": ALICE, "amount": 250, "released_total": 250}


def test_schedule_snapshot_roundtrip(ledger, token, access_control, clock, metrics):
    _scenario(ledger)
    ledger.release(ALICE, now=550)

    restored = VestingLedger(token.account(VAULT), access_control, clock=clock, metrics=metrics)
    restored.load_dict(ledger.to_dict())
    assert restored.get_schedule(ALICE) == ledger.get_schedule(ALICE)
    assert restored.beneficiaries() == [ALICE]
