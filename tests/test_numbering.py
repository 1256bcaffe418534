import threading
from datetime import datetime

from mesa_pos.services.ledger import OrderLedger
from mesa_pos.services.numbering import NumberingService, invoice_number_for


class FakeClock:
    def __init__(self, at: datetime) -> None:
        self.at = at

    def __call__(self) -> datetime:
        return self.at


def test_sequential_numbers_start_at_one(db):
    numbering = NumberingService()
    assert numbering.next_order_number() == 1
    assert numbering.next_order_number() == 2


def test_numbers_reset_each_month(db):
    clock = FakeClock(datetime(2024, 1, 31, 23, 59))
    numbering = NumberingService(clock=clock)
    assert numbering.next_order_number() == 1
    assert numbering.next_order_number() == 2

    clock.at = datetime(2024, 2, 1, 0, 1)
    assert numbering.next_order_number() == 1


def test_numbers_are_scoped_per_business(db):
    numbering = NumberingService()
    assert numbering.next_order_number("north") == 1
    assert numbering.next_order_number("south") == 1
    assert numbering.next_order_number("north") == 2


def test_follows_highest_recorded_order_of_the_month(menu):
    clock = FakeClock(datetime.now())
    OrderLedger(clock=clock).add_item("Cliente", 41, menu["Baleada"], 1, order_type="takeout")
    assert NumberingService(clock=clock).next_order_number() == 42


def test_concurrent_allocation_is_unique(db):
    numbering = NumberingService()
    workers = 8
    barrier = threading.Barrier(workers)
    got = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        number = numbering.next_order_number()
        with lock:
            got.append(number)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(60)

    assert sorted(got) == list(range(1, workers + 1))


def test_invoice_number_format():
    assert invoice_number_for(7, datetime(2024, 10, 19, 13, 5)) == "2410197"
    assert invoice_number_for(123, datetime(2025, 1, 2)) == "250102123"


def test_service_invoice_uses_clock(db):
    numbering = NumberingService(clock=FakeClock(datetime(2024, 3, 9)))
    assert numbering.invoice_number_for(12) == "24030912"
