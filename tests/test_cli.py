import csv
import json

import pytest

from moyaposylka import cli
from moyaposylka.models import TrackingAnswer

from conftest import DELIVERED_BODY


class StubProvider:
    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.seen = []

    def track_or_reason(self, code):
        self.seen.append(code)
        return self.outcomes[code]


@pytest.fixture
def stub(monkeypatch):
    provider = StubProvider(
        {
            "1234567": TrackingAnswer.model_validate(DELIVERED_BODY),
            "9999999": "No carrier data for tracking number 9999999",
            "7777777": TrackingAnswer.model_validate({"attributes": {}, "events": []}),
        }
    )
    monkeypatch.setattr(cli, "_provider", lambda args: provider)
    return provider


def test_read_tracking_numbers_skips_blank_lines():
    lines = ["1234567\n", "\n", "   \n", "  9999999  \n"]
    assert list(cli.read_tracking_numbers(lines)) == ["1234567", "9999999"]


def test_failures_are_reported_and_batch_continues(stub, capsys):
    rc = cli.main(["track", "9999999", "1234567", "--json"])

    captured = capsys.readouterr()
    assert rc == 1
    assert stub.seen == ["9999999", "1234567"]
    assert "No carrier data for tracking number 9999999" in captured.err
    payload = json.loads(captured.out)
    assert [row["tracking_number"] for row in payload] == ["1234567"]
    assert payload[0]["delivered"] is True
    assert payload[0]["events"][0]["eventDate"] == 1700000000000


def test_long_failure_message_is_not_wrapped(monkeypatch, capsys):
    message = (
        "Unexpected response from https://moyaposylka.ru/api/v1/trackers/cdek/1234567 "
        "(HTTP 502): <html><body>Bad Gateway</body></html>"
    )
    assert len(message) > 100
    monkeypatch.setattr(cli, "_provider", lambda args: StubProvider({"1234567": message}))

    rc = cli.main(["track", "1234567"])

    captured = capsys.readouterr()
    assert rc == 1
    assert message in captured.err
    assert captured.out == ""


def test_answers_without_events_are_skipped(stub, capsys):
    rc = cli.main(["track", "7777777", "--json"])

    captured = capsys.readouterr()
    assert rc == 0
    assert "No information for tracking number 7777777" in captured.err
    assert json.loads(captured.out) == []


def test_file_command_writes_csv(stub, tmp_path, capsys):
    tracks = tmp_path / "tracks.txt"
    tracks.write_text("1234567\n\n", encoding="utf-8")
    out_csv = tmp_path / "out.csv"

    rc = cli.main(["file", "-f", str(tracks), "--csv", str(out_csv)])

    assert rc == 0
    assert "1234567" in capsys.readouterr().out
    with out_csv.open(encoding="utf-8", newline="") as fh:
        rows = list(csv.reader(fh))
    assert rows[0] == cli.CSV_HEADER
    assert rows[1][:4] == ["1234567", "2024-01-01", "Ivan", "Delivered"]
    assert rows[1][4] == "Moscow"
    assert rows[1][6] == "yes"


def test_missing_file_is_reported(tmp_path, capsys):
    rc = cli.main(["file", "-f", str(tmp_path / "missing.txt")])
    assert rc == 2
    assert "Cannot read tracking numbers" in capsys.readouterr().err


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "usage" in capsys.readouterr().out.lower()


def test_recipient_is_wrapped_in_table():
    answer = TrackingAnswer.model_validate(
        {"attributes": {"recipient": "A" * 25}, "events": [{"eventDate": 0, "operation": "x"}]}
    )
    table = cli.build_table([("1234567", answer)])
    assert table.row_count == 1
    assert cli.wrap_every("A" * 25, cli.RECIPIENT_WRAP) == "A" * 20 + "\n" + "A" * 5
