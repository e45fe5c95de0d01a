import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def add_user(repo, username: str, role: str, name: str | None = None, password: str = "Secret123"):
    from salesdesk.domain.models import User

    uid = repo.create_user(username, password, name or username.title(), role)
    return User(id=uid, username=username, name=name or username.title(), role=role)


def buyer(matricule: str = "M-1001", grade: str = "Officier"):
    from salesdesk.domain.models import BuyerSnapshot

    return BuyerSnapshot(last_name="Traore", first_name="Awa", matricule=matricule, grade=grade)


def product_ids(repo) -> dict[str, int]:
    """Catalog ids keyed by "name weight", e.g. "Riz 50 KG"."""
    return {p.label: p.id for p in repo.list_products()}
