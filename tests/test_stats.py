"""Tests for stablecoin statistics aggregation."""

import pytest

from tempo_collector.models import ParsedLog, StablecoinBlockStats
from tempo_collector.stats import (
    TRANSFER_EVENT_SIGNATURE,
    extract_transfer_amount,
    is_transfer_event,
)

from conftest import OTHER_TOKEN, TOKEN, make_receipt, transfer_log


def test_transfer_signature_constant():
    assert TRANSFER_EVENT_SIGNATURE == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


class TestExtractTransferAmount:
    def test_low_bits_of_first_word(self):
        log = ParsedLog(address=TOKEN, topics=[TRANSFER_EVENT_SIGNATURE], data="0x" + "0" * 56 + "000003e8")
        assert extract_transfer_amount(log) == 1000

    def test_only_first_word_is_read(self):
        log = ParsedLog(data="0x" + "0" * 63 + "5" + "f" * 64)
        assert extract_transfer_amount(log) == 5

    @pytest.mark.parametrize(
        "data",
        [
            "",
            "0x",
            "0x1234",
            "0x" + "zz" * 32,
            "0x-" + "0" * 62 + "1",
            "0x+" + "0" * 62 + "1",
            "0x" + "0" * 60 + "_001",
            "0x" + " " * 61 + "1",
        ],
    )
    def test_malformed_data(self, data):
        assert extract_transfer_amount(ParsedLog(data=data)) is None


def test_is_transfer_event():
    known = {TOKEN}
    assert is_transfer_event(ParsedLog(address=TOKEN, topics=[TRANSFER_EVENT_SIGNATURE.upper().replace("0X", "0x")]), known)
    assert not is_transfer_event(ParsedLog(address=OTHER_TOKEN, topics=[TRANSFER_EVENT_SIGNATURE]), known)
    assert not is_transfer_event(ParsedLog(address=TOKEN, topics=["0x" + "1" * 64]), known)
    assert not is_transfer_event(ParsedLog(address=TOKEN, topics=[]), known)


class TestCalculateStablecoinStats:
    @pytest.mark.asyncio
    async def test_no_known_stablecoins(self, aggregator):
        receipts = [make_receipt("0x01", logs=[transfer_log(TOKEN, 5)])]
        assert await aggregator.calculate_stablecoin_stats(receipts, 1) == {}

    @pytest.mark.asyncio
    async def test_zero_activity_is_dropped(self, aggregator, stablecoin_store):
        await stablecoin_store.insert_if_absent(TOKEN, 1, None)
        receipts = [make_receipt("0x01", logs=[transfer_log(OTHER_TOKEN, 5)], fee_token=OTHER_TOKEN)]

        assert await aggregator.calculate_stablecoin_stats(receipts, 2) == {}

    @pytest.mark.asyncio
    async def test_counts_transfers_and_fees(self, aggregator, stablecoin_store):
        await stablecoin_store.insert_if_absent(TOKEN, 1, None)
        await stablecoin_store.insert_if_absent(OTHER_TOKEN, 1, None)
        receipts = [
            make_receipt(
                "0x01",
                logs=[transfer_log(TOKEN.upper().replace("0X", "0x"), 1000), transfer_log(TOKEN, 2**255)],
                fee_token=OTHER_TOKEN.upper().replace("0X", "0x"),
                gas_used=50_000,
                gas_price=3,
            ),
            None,
            make_receipt("0x02", logs=[transfer_log(OTHER_TOKEN, 7)]),
        ]

        stats = await aggregator.calculate_stablecoin_stats(receipts, 2)

        assert stats[TOKEN] == StablecoinBlockStats(
            address=TOKEN, transfer_count=2, transfer_volume=1000 + 2**255
        )
        assert stats[OTHER_TOKEN] == StablecoinBlockStats(
            address=OTHER_TOKEN, transfer_count=1, transfer_volume=7, fee_payment_count=1, fee_volume=150_000
        )

    @pytest.mark.asyncio
    async def test_malformed_amount_counts_without_volume(self, aggregator, stablecoin_store):
        await stablecoin_store.insert_if_absent(TOKEN, 1, None)
        log = transfer_log(TOKEN, 1)
        log["data"] = "0x12"

        stats = await aggregator.calculate_stablecoin_stats([make_receipt("0x01", logs=[log])], 2)

        assert stats[TOKEN].transfer_count == 1
        assert stats[TOKEN].transfer_volume == 0

    @pytest.mark.asyncio
    async def test_fee_without_gas_fields_counts_without_volume(self, aggregator, stablecoin_store):
        await stablecoin_store.insert_if_absent(TOKEN, 1, None)
        receipt = {"feeToken": TOKEN, "logs": []}

        stats = await aggregator.calculate_stablecoin_stats([receipt], 2)

        assert stats[TOKEN].fee_payment_count == 1
        assert stats[TOKEN].fee_volume == 0


class TestUpdateStablecoinStats:
    @pytest.mark.asyncio
    async def test_adds_to_stored_totals(self, aggregator, stablecoin_store):
        await stablecoin_store.insert_if_absent(TOKEN, 1, None)
        receipts = [make_receipt("0x01", logs=[transfer_log(TOKEN, 1000)], fee_token=TOKEN, gas_used=10, gas_price=2)]

        for block_number in (5, 6):
            stats = await aggregator.calculate_stablecoin_stats(receipts, block_number)
            await aggregator.update_stablecoin_stats(stats, block_number)

        stored = await stablecoin_store.get(TOKEN)
        assert stored.transfer_count == 2
        assert stored.transfer_volume == 2000
        assert stored.fee_payment_count == 2
        assert stored.fee_volume == 40
        assert stored.last_activity_block == 6

    @pytest.mark.asyncio
    async def test_signed_values_never_reduce_totals(self, aggregator, stablecoin_store):
        await stablecoin_store.insert_if_absent(TOKEN, 1, None)
        log = transfer_log(TOKEN, 1)
        log["data"] = "0x-" + "0" * 62 + "1"
        receipt = make_receipt("0x01", logs=[log], fee_token=TOKEN, gasUsed="-5", effectiveGasPrice="10")

        stats = await aggregator.calculate_stablecoin_stats([receipt], 3)
        await aggregator.update_stablecoin_stats(stats, 3)

        stored = await stablecoin_store.get(TOKEN)
        assert stored.transfer_count == 1
        assert stored.transfer_volume == 0
        assert stored.fee_payment_count == 1
        assert stored.fee_volume == 0

    @pytest.mark.asyncio
    async def test_empty_stats_is_noop(self, aggregator, stablecoin_store):
        await stablecoin_store.insert_if_absent(TOKEN, 1, None)

        await aggregator.update_stablecoin_stats({}, 9)

        assert (await stablecoin_store.get(TOKEN)).last_activity_block is None
