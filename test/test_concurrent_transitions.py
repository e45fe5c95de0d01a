import threading
from pathlib import Path

from conftest import add_user, buyer, product_ids

from salesdesk.domain.errors import AlreadyProcessedError, InvalidStateError
from salesdesk.domain.models import SaleLineItem
from salesdesk.repositories.sqlite_repo import SqliteRepository
from salesdesk.services.sales_service import SalesService


def _race(calls):
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def run(i, fn):
        barrier.wait()
        try:
            outcomes[i] = fn()
        except Exception as exc:  # collected for assertions
            outcomes[i] = exc

    threads = [threading.Thread(target=run, args=(i, fn)) for i, fn in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def _pending_sale(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "race.db")
    repo.init_db()
    agent = add_user(repo, "agent1", "agent")
    sales = SalesService(repo)
    pid = product_ids(repo)["Riz 50 KG"]
    rec = sales.create_sale(agent.id, buyer(), [SaleLineItem(pid, 1, 16500)], 16500)
    return repo, sales, agent, rec


def test_concurrent_validations_have_exactly_one_winner(tmp_path: Path):
    repo, sales, _, rec = _pending_sale(tmp_path)
    c1 = add_user(repo, "ctrl1", "controller")
    c2 = add_user(repo, "ctrl2", "controller")

    outcomes = _race([
        lambda: sales.validate_sale(rec.receipt_number, c1.id),
        lambda: sales.validate_sale(rec.receipt_number, c2.id),
    ])

    winners = [o for o in outcomes if not isinstance(o, Exception)]
    losers = [o for o in outcomes if isinstance(o, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], AlreadyProcessedError)

    final = sales.get_by_receipt(rec.receipt_number)
    assert final.status_name == "validated"
    assert final.sale.status.by == winners[0].sale.status.by
    assert final.sale.status.by in {c1.id, c2.id}


def test_validate_racing_cancel_settles_on_one_terminal_state(tmp_path: Path):
    repo, sales, agent, rec = _pending_sale(tmp_path)
    controller = add_user(repo, "ctrl1", "controller")

    outcomes = _race([
        lambda: sales.validate_sale(rec.receipt_number, controller.id),
        lambda: sales.cancel_sale(rec.receipt_number, agent.id, "other"),
    ])

    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], (AlreadyProcessedError, InvalidStateError))

    final = sales.get_by_receipt(rec.receipt_number)
    assert final.status_name in {"validated", "cancelled"}
