"""End-to-end tests for the command-line interface."""

import pandas as pd
import pytest

from teelottery.cli import main


@pytest.fixture
def cli_db(tmp_path):
    db_url = f"sqlite:///{tmp_path / 'lottery.db'}"
    (tmp_path / "members.csv").write_text(
        "member_id,first_name,last_name,member_class\n"
        "1,Ann,Reid,REGULAR\n2,Ben,Ford,REGULAR\n3,Cal,Moss,REGULAR\n4,Dee,Hart,REGULAR\n5,Eve,Lamb,JUNIOR\n"
    )
    (tmp_path / "blocks.csv").write_text(
        "date,start_time,max_members\n2025-06-14,08:00,4\n2025-06-14,09:00,4\n2025-06-14,10:00,4\n"
    )
    (tmp_path / "entries.csv").write_text(
        "organizer_id,lottery_date,preferred_window,alternate_window,member_ids,submission_timestamp\n"
        "1,2025-06-14,0,,2;3;4,2025-06-11 07:00\n"
        "5,2025-06-14,0,1,,2025-06-11 08:00\n"
    )
    main(["--db", db_url, "init-db"])
    main([
        "--db", db_url, "import-csv",
        "--members", str(tmp_path / "members.csv"),
        "--blocks", str(tmp_path / "blocks.csv"),
        "--entries", str(tmp_path / "entries.csv"),
    ])
    return db_url


@pytest.mark.integration
def test_process_stats_and_export(cli_db, tmp_path, capsys):
    main(["--db", cli_db, "process", "--date", "2025-06-14"])
    out = capsys.readouterr().out
    assert "[OK] Run 1 for 2025-06-14: 2/2 entries assigned" in out

    main(["--db", cli_db, "stats", "--date", "2025-06-14"])
    assert "[COMPLETED]" in capsys.readouterr().out

    results = tmp_path / "results.csv"
    main(["--db", cli_db, "export", "--results", str(results), "--date", "2025-06-14"])
    df = pd.read_csv(results)
    assert list(df["assignment_reason"]) == ["PREFERRED_MATCH", "ALTERNATE_MATCH"]

    main(["--db", cli_db, "finalize", "--date", "2025-06-14"])
    assert "finalized" in capsys.readouterr().out


def test_process_twice_reuses_run(cli_db, capsys):
    main(["--db", cli_db, "process", "--date", "2025-06-14"])
    main(["--db", cli_db, "process", "--date", "2025-06-14"])

    out = capsys.readouterr().out
    assert out.count("[OK] Run 1 for 2025-06-14") == 2


def test_algorithm_config_update(cli_db, tmp_path, capsys):
    changes = tmp_path / "algo.yaml"
    changes.write_text("fairness_weighting: 0.5\n")

    main(["--db", cli_db, "algorithm-config", "--set", str(changes), "--by", "committee"])

    out = capsys.readouterr().out
    assert "[OK] Algorithm config updated" in out
    assert "fairness_weighting: 0.5" in out


def test_invalid_date_exits(cli_db):
    with pytest.raises(SystemExit):
        main(["--db", cli_db, "stats", "--date", "14/06/2025"])


def test_update_pending_entry(cli_db, capsys):
    main(["--db", cli_db, "update", "--entry", "2", "--preferred", "1", "--time", "10:00:00"])
    assert "[OK] Entry 2 updated: window 1, alternate None" in capsys.readouterr().out

    main(["--db", cli_db, "process", "--date", "2025-06-14"])
    assert "2/2 entries assigned" in capsys.readouterr().out

    with pytest.raises(Exception):
        main(["--db", cli_db, "update", "--entry", "2", "--preferred", "0"])
    assert "[ERROR] Update failed" in capsys.readouterr().out
