"""
tests/test_cli.py -- main.py subcommands and exit codes.

Each test points --database-url at a SQLite file under tmp_path, seeds it
through CMMSStore, and runs main() in-process.
"""

import json
from datetime import date

import pytest
from conftest import add_asset, add_policy, add_user

from cmms.models import EscalationRule
from cmms.store import CMMSStore
from engine.scheduler import Scheduler
from main import build_parser, main


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def seeded(db_url):
    store = CMMSStore(db_url)
    yield store
    store.close()


class TestExitCodes:
    def test_schedule_success(self, db_url, seeded, capsys):
        asset_id = add_asset(seeded)
        add_policy(seeded, asset_id)

        code = main(["--database-url", db_url, "schedule", "--json"])

        assert code == 0
        out = json.loads(capsys.readouterr().out)
        assert out["outcome"] == "success"
        assert out["items"][0]["scheduled_date"] == "2025-04-01"

    def test_empty_batch_is_success(self, db_url, seeded):
        assert main(["--database-url", db_url, "escalate", "--today", "2025-04-10"]) == 0

    def test_partial(self, db_url, seeded):
        good = add_asset(seeded)
        add_policy(seeded, good)
        assert main(["--database-url", db_url, "schedule", "--asset", str(good), "--asset", "9999"]) == 1

    def test_failure(self, db_url, seeded):
        assert main(["--database-url", db_url, "schedule", "--asset", "9999"]) == 2

    def test_database_unavailable(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'missing-dir' / 'cli.db'}"
        assert main(["--database-url", url, "schedule"]) == 2


class TestSubcommands:
    def test_escalate_text_report(self, db_url, seeded, capsys):
        add_user(seeded, "Mia Manager", "biomed_manager")
        asset_id = add_asset(seeded, "Ventilator")
        add_policy(seeded, asset_id)
        seeded.create_rule(EscalationRule(entity_type="pm", level=1, threshold=7, targets=["role:biomed_manager"]))
        main(["--database-url", db_url, "schedule"])
        capsys.readouterr()

        code = main(["--database-url", db_url, "escalate", "--today", "2025-04-10"])

        assert code == 0
        out = capsys.readouterr().out
        assert "level 1 (9 day(s) overdue), 1 recipient(s)" in out

    def test_seed_rules(self, db_url, seeded):
        assert main(["--database-url", db_url, "seed-rules", "--role", "biomed_engineer", "--role", "admin"]) == 0
        rules = seeded.list_rules("pm")
        assert [r.threshold for r in rules] == [1.0, 3.0, 7.0]
        assert rules[-1].targets == ["role:biomed_engineer", "role:admin"]

    def test_remind_with_offsets(self, db_url, seeded, capsys):
        engineer = add_user(seeded, "Eve", "biomed_engineer")
        asset_id = add_asset(seeded)
        Scheduler(seeded).schedule_single(asset_id, date(2025, 3, 3), assignee_id=engineer)

        code = main(["--database-url", db_url, "remind", "--today", "2025-03-01", "--days", "2", "--json"])

        assert code == 0
        out = json.loads(capsys.readouterr().out)
        assert [n["user_id"] for n in out["items"]] == [engineer]
        assert "due in 2 day(s)" in out["items"][0]["title"]

    def test_bad_date_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["escalate", "--today", "10/04/2025"])
