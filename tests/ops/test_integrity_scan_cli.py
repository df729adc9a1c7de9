import json
import uuid
from decimal import Decimal

from app.custody.db.models import ClientOrder
from app.ops.integrity_scan import main, run_scan

from tests.custody_helpers import create_team


def _database_url(db_session) -> str:
    return db_session.get_bind().url.render_as_string(hide_password=False)


def test_integrity_scan_no_findings(db_session, capsys):
    _, leader, _ = create_team(db_session, suffix="Scan")

    exit_code = run_scan(str(leader.id), "json", False, database_url=_database_url(db_session))
    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["summary"]["critical"] == 0
    assert payload["findings"] == []


def test_integrity_scan_critical_exit(db_session, capsys):
    _, _, (agent,) = create_team(db_session, suffix="Crit")
    db_session.add(
        ClientOrder(
            id=uuid.uuid4(),
            order_number="ORD-SCAN-000001",
            agent_id=agent.id,
            subtotal=Decimal("9.00"),
            total_amount=Decimal("9.00"),
        )
    )
    db_session.commit()

    exit_code = run_scan("all", "json", True, database_url=_database_url(db_session))
    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 1
    assert payload["summary"]["critical"] >= 1
    assert payload["findings"][0]["check_id"] == "order_totals"

    assert run_scan("all", "text", False, database_url=_database_url(db_session)) == 0
    assert "[CRITICAL] order_totals" in capsys.readouterr().out


def test_integrity_scan_can_be_disabled(monkeypatch, capsys):
    import app.ops.integrity_scan as integrity_scan

    monkeypatch.setattr(integrity_scan.settings, "OPS_ENABLE_INTEGRITY_SCAN", False)
    assert main(["--custodian", "all"]) == 2
    assert "disabled" in capsys.readouterr().err
