import os
import tempfile
from datetime import date
from pathlib import Path

import pytest

# payroll_fx.main builds a module-level app on import; keep its database out of the repo
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="payroll_fx_"))

from payroll_fx.core.config import Settings  # noqa: E402
from payroll_fx.db.dal import Database  # noqa: E402
from payroll_fx.db.migrate import apply_migrations  # noqa: E402
from payroll_fx.services.currency_service import CurrencyService  # noqa: E402

TODAY = date(2025, 6, 15)
ORG = "org-1"
OTHER_ORG = "org-2"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    s = Settings(data_dir=tmp_path, db_filename="test.sqlite3")
    s.init_post_load()
    return s


@pytest.fixture
def db(settings: Settings) -> Database:
    apply_migrations(settings.db_path)
    return Database(settings.db_path)


@pytest.fixture
def service(db: Database, settings: Settings) -> CurrencyService:
    return CurrencyService(db, settings, today=lambda: TODAY)


@pytest.fixture
def usd_srd(service: CurrencyService) -> dict:
    return service.create_exchange_rate(
        ORG, "USD", "SRD", "21.5", effective_from=date(2025, 1, 1), created_by="admin"
    )
