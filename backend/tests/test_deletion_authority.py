# backend/tests/test_deletion_authority.py

"""
Unit tests for the Deletion Authority

Tests cover:
- Fail-closed behavior when no admin identity is configured
- Admin-or-owner single delete
- Admin-only bulk delete with all-or-nothing id validation
"""

import logging
import uuid

import pytest

from conversion_ledger import ConversionLedger
from deletion_authority import AdminPolicy, DeletionAuthority, validate_entry_id
from gauge_errors import (
    ConfigurationError,
    EntryNotFoundError,
    ForbiddenError,
    InvalidInputError,
    StorageError,
)
from history_query import HistoryFilter, HistoryQueryEngine
from conftest import ADMIN_ID, ALICE_ID, BOB_ID


@pytest.fixture
def authority(mock_db, admin_policy):
    return DeletionAuthority(mock_db, admin_policy)


@pytest.fixture
def unconfigured_authority(mock_db):
    return DeletionAuthority(mock_db, AdminPolicy())


async def record_for(db, user_id, value_cm=150, volume_l=30229):
    return await ConversionLedger(db).record(user_id, value_cm, volume_l)


class TestAdminPolicy:

    def test_unconfigured(self):
        policy = AdminPolicy()
        assert not policy.is_configured
        assert not policy.is_admin(None)
        assert not policy.is_admin("")

    def test_is_admin(self, admin_policy):
        assert admin_policy.is_admin(ADMIN_ID)
        assert not admin_policy.is_admin(ALICE_ID)

    def test_require_configured_logs_error(self, caplog):
        with caplog.at_level(logging.ERROR):
            with pytest.raises(ConfigurationError) as exc_info:
                AdminPolicy().require_configured()
        assert exc_info.value.setting == "ADMIN_USER_ID"
        assert "ADMIN_USER_ID" in caplog.text

    def test_policy_is_immutable(self, admin_policy):
        with pytest.raises(Exception):
            admin_policy.admin_user_id = ALICE_ID


class TestValidateEntryId:

    def test_uuid_accepted(self):
        entry_id = str(uuid.uuid4())
        assert validate_entry_id(entry_id) == entry_id

    @pytest.mark.parametrize("bad", ["", "123", "not-a-uuid", None, 42])
    def test_malformed_rejected(self, bad):
        with pytest.raises(InvalidInputError):
            validate_entry_id(bad)

    @pytest.mark.parametrize("variant", [
        "urn:uuid:{}",
        "{{{}}}",
    ])
    def test_wrapped_forms_rejected(self, variant):
        entry_id = str(uuid.uuid4())
        with pytest.raises(InvalidInputError):
            validate_entry_id(variant.format(entry_id))

    def test_non_canonical_spellings_rejected(self):
        entry_id = str(uuid.uuid4())
        for spelling in (entry_id.replace("-", ""), entry_id.upper()):
            with pytest.raises(InvalidInputError):
                validate_entry_id(spelling)


class TestDeleteOne:

    @pytest.mark.asyncio
    async def test_owner_can_delete(self, mock_db, authority):
        record = await record_for(mock_db, ALICE_ID)

        await authority.delete_one(record.id, ALICE_ID)

        assert mock_db.conversions.data == []

    @pytest.mark.asyncio
    async def test_admin_can_delete_any(self, mock_db, authority):
        record = await record_for(mock_db, ALICE_ID)

        await authority.delete_one(record.id, ADMIN_ID)

        assert mock_db.conversions.data == []

    @pytest.mark.asyncio
    async def test_non_owner_forbidden(self, mock_db, authority):
        record = await record_for(mock_db, ALICE_ID)

        with pytest.raises(ForbiddenError):
            await authority.delete_one(record.id, BOB_ID)

        assert len(mock_db.conversions.data) == 1

    @pytest.mark.asyncio
    async def test_second_delete_is_not_found(self, mock_db, authority):
        record = await record_for(mock_db, ALICE_ID)
        await authority.delete_one(record.id, ALICE_ID)

        with pytest.raises(EntryNotFoundError):
            await authority.delete_one(record.id, ALICE_ID)

    @pytest.mark.asyncio
    async def test_deleted_record_leaves_history(self, mock_db, authority):
        keep = await record_for(mock_db, BOB_ID)
        gone = await record_for(mock_db, ALICE_ID)

        await authority.delete_one(gone.id, ALICE_ID)
        page = await HistoryQueryEngine(mock_db).query(HistoryFilter())

        assert [item.id for item in page.items] == [keep.id]

    @pytest.mark.asyncio
    async def test_malformed_id(self, authority):
        with pytest.raises(InvalidInputError):
            await authority.delete_one("abc", ALICE_ID)

    @pytest.mark.asyncio
    async def test_urn_form_of_existing_id_is_malformed(self, mock_db, authority):
        record = await record_for(mock_db, ALICE_ID)

        with pytest.raises(InvalidInputError):
            await authority.delete_one(f"urn:uuid:{record.id}", ADMIN_ID)
        assert len(mock_db.conversions.data) == 1

    @pytest.mark.asyncio
    async def test_fails_closed_without_admin(self, mock_db, unconfigured_authority):
        record = await record_for(mock_db, ALICE_ID)

        # Even the owner cannot delete when the admin identity is missing
        with pytest.raises(ConfigurationError):
            await unconfigured_authority.delete_one(record.id, ALICE_ID)

        assert len(mock_db.conversions.data) == 1

    @pytest.mark.asyncio
    async def test_storage_failure(self, mock_db, authority):
        record = await record_for(mock_db, ALICE_ID)
        mock_db.conversions.fail_on.add("delete_one")

        with pytest.raises(StorageError):
            await authority.delete_one(record.id, ALICE_ID)


class TestDeleteMany:

    @pytest.mark.asyncio
    async def test_admin_bulk_delete(self, mock_db, authority):
        records = [await record_for(mock_db, user) for user in (ALICE_ID, BOB_ID, ALICE_ID)]

        deleted = await authority.delete_many([r.id for r in records[:2]], ADMIN_ID)

        assert deleted == 2
        assert [d["id"] for d in mock_db.conversions.data] == [records[2].id]

    @pytest.mark.asyncio
    async def test_missing_ids_reported_via_count(self, mock_db, authority):
        record = await record_for(mock_db, ALICE_ID)

        deleted = await authority.delete_many([record.id, str(uuid.uuid4())], ADMIN_ID)

        assert deleted == 1

    @pytest.mark.asyncio
    async def test_single_set_based_delete(self, mock_db, authority):
        records = [await record_for(mock_db, ALICE_ID) for _ in range(3)]

        await authority.delete_many([r.id for r in records], ADMIN_ID)

        assert mock_db.conversions.calls.count("delete_many") == 1
        assert "delete_one" not in mock_db.conversions.calls

    @pytest.mark.asyncio
    async def test_one_malformed_id_rejects_batch(self, mock_db, authority):
        records = [await record_for(mock_db, ALICE_ID) for _ in range(2)]

        with pytest.raises(InvalidInputError):
            await authority.delete_many([records[0].id, "bad-id", records[1].id], ADMIN_ID)

        assert len(mock_db.conversions.data) == 2
        assert "delete_many" not in mock_db.conversions.calls

    @pytest.mark.asyncio
    async def test_non_canonical_id_rejects_batch(self, mock_db, authority):
        records = [await record_for(mock_db, ALICE_ID) for _ in range(2)]

        with pytest.raises(InvalidInputError):
            await authority.delete_many([records[0].id, f"urn:uuid:{records[1].id}"], ADMIN_ID)

        assert len(mock_db.conversions.data) == 2
        assert "delete_many" not in mock_db.conversions.calls

    @pytest.mark.asyncio
    async def test_owner_cannot_bulk_delete(self, mock_db, authority):
        record = await record_for(mock_db, ALICE_ID)

        with pytest.raises(ForbiddenError):
            await authority.delete_many([record.id], ALICE_ID)

        assert len(mock_db.conversions.data) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ids", [[], None, "not-a-list"])
    async def test_requires_non_empty_list(self, authority, ids):
        with pytest.raises(InvalidInputError):
            await authority.delete_many(ids, ADMIN_ID)

    @pytest.mark.asyncio
    async def test_fails_closed_without_admin(self, unconfigured_authority):
        with pytest.raises(ConfigurationError):
            await unconfigured_authority.delete_many([str(uuid.uuid4())], ADMIN_ID)
