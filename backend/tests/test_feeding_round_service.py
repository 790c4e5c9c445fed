"""
Feeding Round Lifecycle Manager tests
"""
import pytest

from ledger.errors import (
    InsufficientFundsError, InvalidAmountError, InvalidTransitionError, RoundAlreadyCompletedError,
    CannotModifyCompletedError, InvalidFieldError, NotFoundError, ValidationRequiredError
)
from models import FeedingRoundCreate


def round_request(category_id, allocated_amount=200, **overrides):
    data = {
        "date": "2024-04-10",
        "allocated_amount": allocated_amount,
        "unit_price": 2.5,
        "category_id": category_id,
        "description": "Friday distribution",
    }
    data.update(overrides)
    return FeedingRoundCreate(**data)


@pytest.mark.asyncio
async def test_lifecycle_scenario(services, feeding, balance_of):
    round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
    assert round_doc["status"] == "PENDING"
    assert await balance_of(feeding["id"]) == 500

    await services.feeding_rounds.update_round_status(round_doc["id"], "IN_PROGRESS")
    assert await balance_of(feeding["id"]) == 300

    await services.feeding_rounds.update_round_status(round_doc["id"], "COMPLETED")
    assert await balance_of(feeding["id"]) == 300

    with pytest.raises(InvalidTransitionError):
        await services.feeding_rounds.update_round_status(round_doc["id"], "CANCELLED")
    assert await balance_of(feeding["id"]) == 300


@pytest.mark.asyncio
async def test_completed_round_error_kind(services, feeding):
    round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
    await services.feeding_rounds.update_round_status(round_doc["id"], "IN_PROGRESS")
    await services.feeding_rounds.update_round_status(round_doc["id"], "COMPLETED")

    with pytest.raises(RoundAlreadyCompletedError) as exc:
        await services.feeding_rounds.update_round_status(round_doc["id"], "PENDING")
    assert exc.value.error_type == "ROUND_ALREADY_COMPLETED"


@pytest.mark.asyncio
async def test_pending_cannot_complete_directly(services, feeding):
    round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))

    with pytest.raises(InvalidTransitionError) as exc:
        await services.feeding_rounds.update_round_status(round_doc["id"], "COMPLETED")
    assert exc.value.allowed == ["IN_PROGRESS", "CANCELLED"]


@pytest.mark.asyncio
async def test_start_needs_funds(services, feeding, balance_of):
    round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"], allocated_amount=600))

    with pytest.raises(InsufficientFundsError):
        await services.feeding_rounds.update_round_status(round_doc["id"], "IN_PROGRESS")

    assert (await services.feeding_rounds.get_round(round_doc["id"]))["status"] == "PENDING"
    assert await balance_of(feeding["id"]) == 500
    assert await services.audit.get_transactions_for_reference(round_doc["id"]) == []


@pytest.mark.asyncio
async def test_cancel_in_progress_credits_back(services, feeding, balance_of):
    round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
    await services.feeding_rounds.update_round_status(round_doc["id"], "IN_PROGRESS")

    await services.feeding_rounds.update_round_status(round_doc["id"], "CANCELLED")

    assert await balance_of(feeding["id"]) == 500


@pytest.mark.asyncio
async def test_cancel_pending_keeps_balance(services, feeding, balance_of):
    round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))

    await services.feeding_rounds.update_round_status(round_doc["id"], "CANCELLED")

    assert await balance_of(feeding["id"]) == 500


@pytest.mark.asyncio
async def test_same_status_is_noop(services, feeding):
    round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))

    result = await services.feeding_rounds.update_round_status(round_doc["id"], "PENDING")

    assert result["status"] == "PENDING"
    assert result["updated_at"] == round_doc["updated_at"]
    assert await services.audit.get_transactions_for_reference(round_doc["id"]) == []


@pytest.mark.asyncio
async def test_status_records_written_with_status(services, feeding):
    round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
    await services.feeding_rounds.update_round_status(round_doc["id"], "IN_PROGRESS")
    await services.feeding_rounds.update_round_status(round_doc["id"], "COMPLETED")

    records = await services.audit.get_transactions_for_reference(round_doc["id"])
    assert sorted((r["type"], r["category"]) for r in records) == [
        ("DEBIT", "FEEDING_ROUND_STARTED"),
        ("STATUS_UPDATE", "FEEDING_ROUND_STATUS_UPDATE"),
        ("STATUS_UPDATE", "FEEDING_ROUND_STATUS_UPDATE"),
    ]


@pytest.mark.asyncio
async def test_start_keeps_reconciliation_clean(services, feeding):
    round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
    await services.feeding_rounds.update_round_status(round_doc["id"], "IN_PROGRESS")

    report = await services.treasury.validate_treasury_payments()
    assert report["is_valid"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize("field,value", [("allocated_amount", 0), ("unit_price", -1)])
async def test_create_requires_positive_amounts(services, feeding, field, value):
    with pytest.raises(InvalidAmountError):
        await services.feeding_rounds.create_round(round_request(feeding["id"], **{field: value}))


@pytest.mark.asyncio
async def test_create_needs_category(services):
    with pytest.raises(NotFoundError):
        await services.feeding_rounds.create_round(round_request("missing"))


class TestUpdateRound:

    @pytest.mark.asyncio
    async def test_descriptive_update(self, services, feeding):
        round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))

        updated = await services.feeding_rounds.update_round(
            round_doc["id"], {"observations": "120 meals", "unit_price": 3}
        )
        assert updated["observations"] == "120 meals"
        assert updated["unit_price"] == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["allocated_amount", "category_id", "status"])
    async def test_dedicated_fields_rejected(self, services, feeding, field):
        round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
        with pytest.raises(InvalidFieldError):
            await services.feeding_rounds.update_round(round_doc["id"], {field: "x"})

    @pytest.mark.asyncio
    async def test_completed_round_only_takes_drive_link(self, services, feeding):
        round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
        await services.feeding_rounds.update_round_status(round_doc["id"], "IN_PROGRESS")
        await services.feeding_rounds.update_round_status(round_doc["id"], "COMPLETED")

        with pytest.raises(CannotModifyCompletedError):
            await services.feeding_rounds.update_round(round_doc["id"], {"observations": "late edit"})

        updated = await services.feeding_rounds.update_round(
            round_doc["id"], {"drive_link": "https://drive.example/photos"}
        )
        assert updated["drive_link"] == "https://drive.example/photos"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["allocated_amount", "category_id"])
    async def test_completed_round_refuses_dedicated_fields_as_completed(self, services, feeding, field):
        round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
        await services.feeding_rounds.update_round_status(round_doc["id"], "IN_PROGRESS")
        await services.feeding_rounds.update_round_status(round_doc["id"], "COMPLETED")

        with pytest.raises(CannotModifyCompletedError) as exc:
            await services.feeding_rounds.update_round(round_doc["id"], {field: 999})
        assert exc.value.details["fields"] == [field]


class TestDeleteRound:

    @pytest.mark.asyncio
    async def test_delete_in_progress_credits_back(self, services, feeding, balance_of):
        round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
        await services.feeding_rounds.update_round_status(round_doc["id"], "IN_PROGRESS")

        await services.feeding_rounds.delete_round(round_doc["id"])

        assert await balance_of(feeding["id"]) == 500
        with pytest.raises(NotFoundError):
            await services.feeding_rounds.get_round(round_doc["id"])

    @pytest.mark.asyncio
    async def test_delete_pending(self, services, feeding, balance_of):
        round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
        await services.feeding_rounds.delete_round(round_doc["id"])
        assert await balance_of(feeding["id"]) == 500

    @pytest.mark.asyncio
    async def test_completed_cannot_be_deleted(self, services, feeding):
        round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
        await services.feeding_rounds.update_round_status(round_doc["id"], "IN_PROGRESS")
        await services.feeding_rounds.update_round_status(round_doc["id"], "COMPLETED")

        with pytest.raises(RoundAlreadyCompletedError):
            await services.feeding_rounds.delete_round(round_doc["id"])
        assert await services.feeding_rounds.get_round(round_doc["id"])


class TestPhotoLinks:

    @pytest.mark.asyncio
    async def test_attach_and_remove(self, services, feeding):
        round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))

        attached = await services.feeding_rounds.attach_photo_link(round_doc["id"], " https://drive.example/a ")
        assert attached["drive_link"] == "https://drive.example/a"

        removed = await services.feeding_rounds.remove_photo_link(round_doc["id"])
        assert "drive_link" not in removed
        assert "drive_link" not in await services.feeding_rounds.get_round(round_doc["id"])

    @pytest.mark.asyncio
    async def test_empty_link_rejected(self, services, feeding):
        round_doc = await services.feeding_rounds.create_round(round_request(feeding["id"]))
        with pytest.raises(ValidationRequiredError):
            await services.feeding_rounds.attach_photo_link(round_doc["id"], "  ")


@pytest.mark.asyncio
async def test_list_rounds_pagination(services, general):
    created = [
        await services.feeding_rounds.create_round(round_request(general["id"], allocated_amount=10 * (i + 1)))
        for i in range(5)
    ]
    await services.feeding_rounds.update_round_status(created[0]["id"], "CANCELLED")

    first = await services.feeding_rounds.list_rounds(page_size=2)
    second = await services.feeding_rounds.list_rounds(page_size=2, start_after=first["last_doc"])
    third = await services.feeding_rounds.list_rounds(page_size=2, start_after=second["last_doc"])

    ids = [r["id"] for page in (first, second, third) for r in page["rounds"]]
    assert ids == [r["id"] for r in reversed(created)]

    empty = await services.feeding_rounds.list_rounds(page_size=2, start_after=third["last_doc"])
    assert empty == {"rounds": [], "last_doc": None}

    cancelled = await services.feeding_rounds.list_rounds(status="CANCELLED")
    assert [r["id"] for r in cancelled["rounds"]] == [created[0]["id"]]
