"""Tests for the import state machine and row loop."""

import threading

import pytest

from inventory_import.core.exceptions import InvalidJobStateError, MalformedInputError
from inventory_import.services.csv_parser import parse_candidates
from inventory_import.services.import_models import (
    CANCELLED_MESSAGE,
    ImportErrorEntry,
    ImportStatus,
    ReconciliationMode,
)

WIDGET_CSV = "name,sku,quantity\nWidget,W1,10\nGadget,,5\n"


def numbered_csv(count: int) -> str:
    rows = "\n".join(f"Item {i},SKU{i},{i}" for i in range(count))
    return f"name,sku,quantity\n{rows}\n"


def collect(controller):
    snapshots = []
    controller.subscribe(snapshots.append)
    return snapshots


def test_create_mode_inserts_every_row(make_controller, store):
    controller = make_controller()

    final = controller.start_csv(WIDGET_CSV, ReconciliationMode.CREATE)

    assert final.status is ImportStatus.COMPLETED
    assert (final.success_count, final.updated_count, final.error_count) == (2, 0, 0)
    assert final.current == final.total == 2
    assert final.percentage == 100
    assert len(store.items) == 2


def test_update_by_sku_reports_missing_and_absent_skus(make_controller, store):
    controller = make_controller()

    final = controller.start_csv(WIDGET_CSV, ReconciliationMode.UPDATE_BY_SKU)

    assert final.status is ImportStatus.COMPLETED
    assert final.error_count == 2
    assert controller.errors() == [
        ImportErrorEntry(row=2, message='SKU "W1" not found for update'),
        ImportErrorEntry(row=3, message="SKU required for update mode"),
    ]
    assert store.writes == []


def test_upsert_updates_existing_and_inserts_new(make_controller, store):
    existing = store.seed(sku="W1", name="Old widget", quantity=1)
    controller = make_controller()

    final = controller.start_csv(WIDGET_CSV, ReconciliationMode.UPSERT)

    assert (final.success_count, final.updated_count, final.error_count) == (1, 1, 0)
    assert store.items[existing]["quantity"] == 10
    assert store.items[existing]["name"] == "Widget"


def test_invalid_records_never_reach_the_store(make_controller, store):
    controller = make_controller()

    final = controller.start_csv("name,sku,quantity\n,,5\nWidget,W1,-2\n", ReconciliationMode.CREATE)

    assert final.error_count == 2
    assert [e.row for e in controller.errors()] == [2, 3]
    assert controller.errors()[0].message == "Missing name or sku"
    assert store.calls == []


def test_store_failures_become_row_errors(make_controller, store):
    store.fail_skus.add("SKU1")
    controller = make_controller()

    final = controller.start_csv(numbered_csv(3), ReconciliationMode.CREATE)

    assert final.status is ImportStatus.COMPLETED
    assert (final.success_count, final.error_count) == (2, 1)
    assert controller.errors() == [ImportErrorEntry(row=3, message="Could not save SKU1")]


def test_unexpected_store_exceptions_do_not_abort(make_controller, store):
    def explode(n, fields):
        if n == 1:
            raise RuntimeError("connection reset")

    store.on_write = explode
    controller = make_controller()

    final = controller.start_csv(numbered_csv(2), ReconciliationMode.CREATE)

    assert final.status is ImportStatus.COMPLETED
    assert final.success_count == 1
    assert controller.errors()[0].message == "connection reset"


def test_lookup_failures_become_row_errors(make_controller, store):
    def broken_lookup(sku=None, name=None):
        raise RuntimeError("lookup timed out")

    store.lookup = broken_lookup
    controller = make_controller()

    final = controller.start_csv(WIDGET_CSV, ReconciliationMode.UPSERT)

    assert final.error_count == 2
    assert {e.message for e in controller.errors()} == {"lookup timed out"}


def test_every_snapshot_balances_counters(make_controller, store):
    store.fail_skus.add("SKU2")
    controller = make_controller()
    snapshots = collect(controller)

    controller.start_csv(numbered_csv(6) + ",,\nNoSku,,1\n", ReconciliationMode.UPSERT)

    assert snapshots
    for snap in snapshots:
        assert snap.success_count + snap.updated_count + snap.error_count == snap.current
    currents = [snap.current for snap in snapshots]
    assert currents == sorted(currents)
    sequences = [snap.sequence for snap in snapshots]
    assert sequences == sorted(set(sequences))


def test_status_transitions_in_order(make_controller):
    controller = make_controller()
    snapshots = collect(controller)

    controller.start_csv(WIDGET_CSV, ReconciliationMode.CREATE)

    statuses = [snap.status for snap in snapshots]
    assert statuses[0] is ImportStatus.PREPARING
    assert statuses[1] is ImportStatus.PROCESSING
    assert statuses[-1] is ImportStatus.COMPLETED


def test_malformed_csv_leaves_job_idle(make_controller, store):
    controller = make_controller()
    snapshots = collect(controller)

    with pytest.raises(MalformedInputError):
        controller.start_csv("name,sku,quantity\n", ReconciliationMode.CREATE)

    assert controller.status is ImportStatus.IDLE
    assert snapshots == []
    assert store.calls == []


def test_empty_record_list_is_rejected(make_controller):
    controller = make_controller()

    with pytest.raises(MalformedInputError):
        controller.start([], ReconciliationMode.CREATE)

    assert controller.status is ImportStatus.IDLE


def test_start_requires_idle(make_controller):
    controller = make_controller()
    controller.start_csv(WIDGET_CSV, ReconciliationMode.CREATE)

    with pytest.raises(InvalidJobStateError):
        controller.start_csv(WIDGET_CSV, ReconciliationMode.CREATE)


def test_run_requires_prepare(make_controller):
    with pytest.raises(InvalidJobStateError):
        make_controller().run()


def test_reset_returns_finished_job_to_idle(make_controller, store):
    controller = make_controller()
    controller.start_csv(WIDGET_CSV, ReconciliationMode.CREATE)

    controller.reset()

    snap = controller.snapshot()
    assert snap.status is ImportStatus.IDLE
    assert (snap.current, snap.total, snap.error_count) == (0, 0, 0)
    assert controller.errors() == []

    final = controller.start_csv(WIDGET_CSV, ReconciliationMode.CREATE)
    assert final.success_count == 2


def test_reset_is_refused_while_running(make_controller, store):
    controller = make_controller()
    raised = []

    def try_reset(n, fields):
        if n == 1:
            try:
                controller.reset()
            except InvalidJobStateError as exc:
                raised.append(exc)

    store.on_write = try_reset
    final = controller.start_csv(WIDGET_CSV, ReconciliationMode.CREATE)

    assert len(raised) == 1
    assert final.status is ImportStatus.COMPLETED


def test_cancel_after_k_rows_stops_the_loop(make_controller, store):
    """Cancel raised during the third row: that row finishes, nothing after it runs."""
    controller = make_controller()

    def cancel_on_third(n, fields):
        if n == 3:
            controller.cancel()

    store.on_write = cancel_on_third
    final = controller.start_csv(numbered_csv(10), ReconciliationMode.CREATE)

    assert final.status is ImportStatus.ERROR
    assert final.current == 3
    assert final.total == 10
    assert final.success_count == 3
    assert final.error_count == 0
    assert final.message == CANCELLED_MESSAGE
    assert len(store.writes) == 3
    assert controller.errors() == [ImportErrorEntry(row=0, message=CANCELLED_MESSAGE)]


def test_cancel_before_run_processes_nothing(make_controller, store):
    controller = make_controller()
    controller.prepare(parse_candidates(WIDGET_CSV), ReconciliationMode.CREATE)

    assert controller.cancel() is True
    final = controller.run()

    assert final.status is ImportStatus.ERROR
    assert final.current == 0
    assert store.calls == []


def test_control_is_rejected_once_terminal(make_controller):
    controller = make_controller()
    controller.start_csv(WIDGET_CSV, ReconciliationMode.CREATE)

    assert controller.pause() is False
    assert controller.resume() is False
    assert controller.cancel() is False


def test_pause_and_resume_match_uninterrupted_run(make_controller, store):
    baseline = make_controller().start_csv(numbered_csv(8), ReconciliationMode.UPSERT)
    store.items.clear()
    offset = len(store.writes)

    controller = make_controller()
    snapshots = collect(controller)

    def pause_on_fourth(n, fields):
        if n == offset + 4:
            controller.pause()
            threading.Timer(0.05, controller.resume).start()

    store.on_write = pause_on_fourth
    final = controller.start_csv(numbered_csv(8), ReconciliationMode.UPSERT)

    assert final.status is ImportStatus.COMPLETED
    assert (final.success_count, final.updated_count, final.error_count) == (
        baseline.success_count,
        baseline.updated_count,
        baseline.error_count,
    )
    paused = [snap for snap in snapshots if snap.status is ImportStatus.PAUSED]
    assert len(paused) == 1
    assert paused[0].current == 4
    # Each row is processed exactly once across the pause
    assert len(store.writes) == 8 + 8


def test_cancel_while_paused_does_not_need_resume(make_controller, store):
    controller = make_controller()

    def pause_then_cancel(n, fields):
        if n == 2:
            controller.pause()
            threading.Timer(0.05, controller.cancel).start()

    store.on_write = pause_then_cancel
    final = controller.start_csv(numbered_csv(5), ReconciliationMode.CREATE)

    assert final.status is ImportStatus.ERROR
    assert final.message == CANCELLED_MESSAGE
    assert final.current == 2
    assert len(store.writes) == 2


def test_error_preview_is_capped(make_controller):
    controller = make_controller(error_preview_limit=2)

    final = controller.start_csv("name,quantity\n,1\n,2\n,3\n", ReconciliationMode.CREATE)

    assert final.error_count == 3
    assert len(final.errors_preview) == 2
    assert len(controller.errors()) == 3


def test_stream_yields_until_terminal(make_controller):
    controller = make_controller()
    controller.prepare(parse_candidates(numbered_csv(4)), ReconciliationMode.CREATE)
    worker = threading.Thread(target=controller.run)

    stream = controller.stream(timeout=5)
    first = next(stream)
    worker.start()
    rest = list(stream)
    worker.join(5)

    assert first.status is ImportStatus.PREPARING
    assert rest[-1].status is ImportStatus.COMPLETED
    assert rest[-1].current == 4


class WorkerShutdown(BaseException):
    pass


class TaskTimeout(Exception):
    pass


def test_listener_can_read_errors_on_the_terminal_snapshot(make_controller):
    controller = make_controller()
    seen = []
    controller.subscribe(lambda snap: seen.append(controller.errors()) if snap.is_terminal else None)

    worker = threading.Thread(
        target=controller.start_csv, args=(WIDGET_CSV, ReconciliationMode.UPDATE_BY_SKU)
    )
    worker.start()
    worker.join(5)

    assert not worker.is_alive()
    assert seen == [controller.errors()]
    assert len(seen[0]) == 2


def test_listener_can_reset_a_finished_job(make_controller):
    controller = make_controller()
    controller.subscribe(lambda snap: controller.reset() if snap.is_terminal else None)

    worker = threading.Thread(
        target=controller.start_csv, args=(WIDGET_CSV, ReconciliationMode.CREATE)
    )
    worker.start()
    worker.join(5)

    assert not worker.is_alive()
    assert controller.status is ImportStatus.IDLE


def test_interrupt_during_store_call_ends_job_and_propagates(make_controller, store):
    controller = make_controller(interrupts=(TaskTimeout,))

    def time_out_on_second(n, fields):
        if n == 2:
            raise TaskTimeout()

    store.on_write = time_out_on_second

    with pytest.raises(TaskTimeout):
        controller.start_csv(numbered_csv(5), ReconciliationMode.CREATE)

    final = controller.snapshot()
    assert final.status is ImportStatus.ERROR
    assert final.current == 1
    assert final.message == "Import interrupted: TaskTimeout"
    assert controller.errors() == []


def test_base_exceptions_are_never_row_errors(make_controller, store):
    controller = make_controller()

    def shut_down(n, fields):
        raise WorkerShutdown()

    store.on_write = shut_down

    with pytest.raises(WorkerShutdown):
        controller.start_csv(WIDGET_CSV, ReconciliationMode.CREATE)

    assert controller.status is ImportStatus.ERROR
    assert controller.errors() == []


def test_cancel_during_last_row_still_completes(make_controller, store):
    controller = make_controller()
    accepted = []

    def cancel_on_last(n, fields):
        if n == 2:
            accepted.append(controller.cancel())

    store.on_write = cancel_on_last
    final = controller.start_csv(WIDGET_CSV, ReconciliationMode.CREATE)

    assert accepted == [True]
    assert final.status is ImportStatus.COMPLETED
    assert final.success_count == 2
    assert controller.errors() == []
