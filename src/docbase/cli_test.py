"""
Tests for the docbase CLI.

Run with: DOCBASE_ENV=test pytest src/docbase/cli_test.py -v
"""

from unittest.mock import MagicMock, patch

import pytest

from docbase import cli
from docbase.pagination import SortSpec


def answers(*values):
    """Mock for questionary.select returning each value in turn from ask()."""
    select = MagicMock()
    select.return_value.ask.side_effect = list(values)
    return select


@pytest.fixture
def seeded_service(service):
    for seq in range(7):
        service.insert({"seq": seq, "label": f"item {seq}"})
    return service


class TestBrowse:
    def test_pages_forward_and_back(self, seeded_service, capsys):
        select = answers("next", "previous", "quit")
        with patch("docbase.cli.questionary.select", select):
            cli.browse(seeded_service, SortSpec.parse("seq"), limit=5)

        out = capsys.readouterr().out
        assert "5 of 7 records" in out
        assert "2 of 7 records" in out
        assert "Done." in out
        assert select.call_count == 3

        # First prompt: no previous page yet
        first_choices = [choice.value for choice in select.call_args_list[0].kwargs["choices"]]
        assert first_choices == ["next", "quit"]
        # Second prompt: last page
        second_choices = [choice.value for choice in select.call_args_list[1].kwargs["choices"]]
        assert second_choices == ["previous", "quit"]

    def test_cancel_stops(self, seeded_service, capsys):
        with patch("docbase.cli.questionary.select", answers(None)):
            cli.browse(seeded_service, SortSpec(), limit=3)

        assert "Done." in capsys.readouterr().out

    def test_empty_collection(self, service, capsys):
        select = answers()
        with patch("docbase.cli.questionary.select", select):
            cli.browse(service, SortSpec(), limit=3)

        assert "No records found." in capsys.readouterr().out
        select.assert_not_called()


def test_build_table(seeded_service):
    page = seeded_service.find_many(sort="seq", limit=2)

    table = cli.build_table("items", page)

    assert [column.header for column in table.columns] == [
        "id",
        "seq",
        "label",
        "createdAt",
        "updatedAt",
        "version",
    ]
    assert table.row_count == 2


def test_show(seeded_service, capsys):
    cli.show(seeded_service, "rec-000001")

    out = capsys.readouterr().out
    assert '"label": "item 0"' in out


def test_show_missing(service, capsys):
    cli.show(service, "rec-404")

    assert "No record rec-404" in capsys.readouterr().out


class TestMain:
    def test_show_command(self, memory_store, capsys):
        memory_store.insert_one("items", {"_id": "a1", "name": "anvil"})

        with patch("docbase.cli.create_store", return_value=memory_store):
            code = cli.main(["show", "items", "a1"])

        assert code == 0
        assert '"name": "anvil"' in capsys.readouterr().out

    def test_browse_command_with_filter(self, memory_store, capsys):
        for seq in range(4):
            memory_store.insert_one("items", {"_id": f"i{seq}", "seq": seq})

        with patch("docbase.cli.create_store", return_value=memory_store), patch(
            "docbase.cli.questionary.select", answers("quit")
        ):
            code = cli.main(["browse", "items", "--filter", '{"seq": {"$gte": 2}}', "--sort=-seq"])

        assert code == 0
        assert "2 of 2 records" in capsys.readouterr().out

    def test_error_exit_code(self, memory_store, capsys):
        with patch("docbase.cli.create_store", return_value=memory_store):
            code = cli.main(["browse", "items", "--filter", "{oops"])

        assert code == 1
        assert "invalid_argument" in capsys.readouterr().out

    def test_store_closed(self):
        store = MagicMock()
        store.find.return_value = []

        with patch("docbase.cli.create_store", return_value=store):
            cli.main(["show", "items", "a1"])

        store.close.assert_called_once()
