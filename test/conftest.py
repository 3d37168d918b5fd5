import sys
from datetime import datetime, timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class FakeClock:
    """Deterministic clock; every call returns the same instant until advanced."""

    def __init__(self, start: datetime = datetime(2024, 3, 5, 9, 30, 15)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_ledger(tmp_path: Path, clock=None, settings=None, name: str = "ledger.db"):
    from pbl.application.container import build_container
    from pbl.config import LedgerSettings

    settings = settings or LedgerSettings(conflict_backoff_seconds=0.0)
    return build_container(tmp_path / name, settings=settings, clock=clock or FakeClock(), logs_dir=tmp_path / "logs")


def batch_rows(repo, product_id: int) -> list[tuple[str, int, str]]:
    return [(b.batch_number, b.remaining_quantity, b.status) for b in repo.list_batches_fifo(product_id)]


def active_batch_total(repo, product_id: int) -> int:
    return sum(b.remaining_quantity for b in repo.list_batches_fifo(product_id) if b.status == "active")
