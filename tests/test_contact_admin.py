"""
Tests for contact maintenance commands.

Tests cover:
- Identity lookup by id and by email/phone
- Deactivation (dry run and execute)
- Link chain audit and repair
- Command-line entry point
"""
import json
import sqlite3
from unittest.mock import patch

import pytest

from api.services.contact_store import LinkPrecedence
from api.services.errors import InvalidInputError, NotFoundError
from scripts.contact_admin import check_links, deactivate_contact, main, show_identity


@pytest.fixture
def seeded(memory_store, at):
    """Two identities: 1 <- 2 and a separate 3."""
    p1 = memory_store.insert("a@x.com", "111", created_at=at(0))
    s2 = memory_store.insert(
        "b@x.com", "111", LinkPrecedence.SECONDARY, linked_id=p1.id, created_at=at(1)
    )
    p3 = memory_store.insert("c@x.com", "333", created_at=at(2))
    return memory_store, p1, s2, p3


class TestShowIdentity:
    """Tests for show_identity."""

    def test_by_id(self, seeded):
        """Any member id yields its identity."""
        store, p1, s2, _ = seeded

        views = show_identity(store, contact_id=s2.id)

        assert len(views) == 1
        assert views[0].primary_contact_id == p1.id
        assert views[0].secondary_contact_ids == [s2.id]

    def test_unknown_id(self, seeded):
        store = seeded[0]
        with pytest.raises(NotFoundError):
            show_identity(store, contact_id=999)

    def test_by_identifiers_is_read_only(self, seeded):
        """Lookups never merge or insert."""
        store, p1, _, p3 = seeded

        views = show_identity(store, email="B@X.com", phone_number="333")

        assert [v.primary_contact_id for v in views] == [p1.id, p3.id]
        assert store.count() == 3
        assert store.get_by_id(p3.id).is_primary

    def test_no_match(self, seeded):
        assert show_identity(seeded[0], email="nobody@x.com") == []

    def test_requires_identifier(self, seeded):
        with pytest.raises(InvalidInputError):
            show_identity(seeded[0])


class TestDeactivateContact:
    """Tests for deactivate_contact."""

    def test_dry_run(self, seeded):
        """Dry run leaves the contact active."""
        store, _, s2, _ = seeded

        deactivate_contact(store, s2.id)

        assert store.get_by_id(s2.id).active

    def test_execute(self, seeded):
        store, p1, s2, _ = seeded

        result = deactivate_contact(store, s2.id, dry_run=False)

        assert result.active is False
        assert [c.id for c in store.find_cluster(p1.id)] == [p1.id]

    def test_primary_with_secondaries_refused(self, seeded):
        store, p1, _, _ = seeded
        with pytest.raises(InvalidInputError):
            deactivate_contact(store, p1.id, dry_run=False)


class TestCheckLinks:
    """Tests for check_links."""

    @pytest.fixture
    def chained_store(self, sqlite_store, at):
        """primary <- middle, and tail chained onto middle."""
        primary = sqlite_store.insert("a@x.com", "111", created_at=at(0))
        middle = sqlite_store.insert(
            "b@x.com", None, LinkPrecedence.SECONDARY, linked_id=primary.id, created_at=at(1)
        )
        tail = sqlite_store.insert(
            "c@x.com", None, LinkPrecedence.SECONDARY, linked_id=primary.id, created_at=at(2)
        )
        conn = sqlite3.connect(sqlite_store.db_path)
        conn.execute("UPDATE contacts SET linked_id = ? WHERE id = ?", (middle.id, tail.id))
        conn.commit()
        conn.close()
        return sqlite_store, primary, tail

    def test_clean_store(self, seeded):
        stats = check_links(seeded[0])
        assert stats == {"chained": 0, "repaired": 0, "unrepairable": []}

    def test_report_only(self, chained_store):
        """Without repair nothing changes."""
        store, _, tail = chained_store

        stats = check_links(store)

        assert stats["chained"] == 1
        assert stats["repaired"] == 0
        assert store.find_link_chains()[0].id == tail.id

    def test_repair(self, chained_store):
        """Chained secondaries are re-pointed at their primary."""
        store, primary, tail = chained_store

        stats = check_links(store, repair=True)

        assert stats["repaired"] == 1
        assert store.find_link_chains() == []
        assert store.get_by_id(tail.id).linked_id == primary.id
        assert len(store.find_cluster(primary.id)) == 3

    def test_dangling_link_unrepairable(self, seeded):
        store, p1, s2, _ = seeded
        store._contacts[p1.id].active = False

        stats = check_links(store, repair=True)

        assert stats["unrepairable"] == [s2.id]
        assert stats["repaired"] == 0


class TestMain:
    """Tests for the command-line entry point."""

    @pytest.fixture
    def patched_store(self, seeded):
        with patch("scripts.contact_admin.get_contact_store", return_value=seeded[0]):
            yield seeded

    def test_no_command(self, patched_store):
        assert main([]) == 1

    def test_show(self, patched_store, capsys):
        _, p1, s2, _ = patched_store

        assert main(["show", "--email", "a@x.com"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output == [
            {
                "primaryContactId": p1.id,
                "emails": ["a@x.com", "b@x.com"],
                "phoneNumbers": ["111"],
                "secondaryContactIds": [s2.id],
            }
        ]

    def test_show_unknown_id(self, patched_store):
        assert main(["show", "--id", "999"]) == 1

    def test_deactivate_execute(self, patched_store):
        store, _, s2, _ = patched_store

        assert main(["deactivate", "--id", str(s2.id), "--execute"]) == 0
        assert store.count() == 2

    def test_check_links(self, patched_store):
        assert main(["check-links"]) == 0
