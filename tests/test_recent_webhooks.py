"""
בדיקות ל-RecentWebhookBuffer - ring buffer חסום ובטוח ל-threads.
"""
import threading

import pytest

from inbox.domain.services.recent_webhooks import ProcessingRecord, RecentWebhookBuffer


class TestRecentWebhookBuffer:

    @pytest.mark.unit
    def test_rejects_zero_capacity(self) -> None:
        with pytest.raises(ValueError):
            RecentWebhookBuffer(capacity=0)

    @pytest.mark.unit
    def test_snapshot_newest_first(self) -> None:
        buffer = RecentWebhookBuffer(capacity=5)
        first = buffer.start("instagram", 1)
        second = buffer.start("instagram", 2)

        snapshot = buffer.snapshot()

        assert [r["webhook_id"] for r in snapshot] == [second, first]
        assert snapshot[0]["entry_count"] == 2

    @pytest.mark.unit
    def test_evicts_oldest(self) -> None:
        buffer = RecentWebhookBuffer(capacity=2)
        oldest = buffer.start("instagram", 1)
        buffer.start("instagram", 1)
        buffer.start("instagram", 1)

        assert len(buffer) == 2
        assert oldest not in [r["webhook_id"] for r in buffer.snapshot()]

    @pytest.mark.unit
    def test_results_attached_to_their_webhook(self) -> None:
        buffer = RecentWebhookBuffer()
        webhook_id = buffer.start("instagram", 1)
        buffer.add_result(
            webhook_id,
            ProcessingRecord(kind="comment", external_id="C1", outcome="processed", tenant_id=3),
        )

        [record] = buffer.snapshot()
        assert record["results"] == [
            {
                "kind": "comment",
                "external_id": "C1",
                "outcome": "processed",
                "tenant_id": 3,
                "strategy": None,
                "direction": None,
                "reason": None,
            }
        ]

    @pytest.mark.unit
    def test_result_for_evicted_webhook_ignored(self) -> None:
        buffer = RecentWebhookBuffer(capacity=1)
        evicted = buffer.start("instagram", 1)
        buffer.start("instagram", 1)

        buffer.add_result(evicted, ProcessingRecord(kind="comment", external_id="C1", outcome="processed"))

        assert buffer.snapshot()[0]["results"] == []

    @pytest.mark.unit
    def test_snapshot_is_a_copy(self) -> None:
        buffer = RecentWebhookBuffer()
        buffer.start("instagram", 1)
        buffer.snapshot()[0]["results"].append("junk")
        assert buffer.snapshot()[0]["results"] == []

    @pytest.mark.unit
    def test_rejected_signature_recorded(self) -> None:
        buffer = RecentWebhookBuffer()
        buffer.start(object_type=None, entry_count=0, signature_valid=False)
        assert buffer.snapshot()[0]["signature_valid"] is False

    @pytest.mark.unit
    def test_unmapped_recipient(self) -> None:
        buffer = RecentWebhookBuffer()
        assert buffer.last_unmapped is None

        buffer.note_unmapped("R9")
        assert buffer.last_unmapped.platform_id == "R9"

        buffer.clear_unmapped()
        assert buffer.last_unmapped is None

    @pytest.mark.unit
    def test_concurrent_writers_respect_capacity(self) -> None:
        buffer = RecentWebhookBuffer(capacity=20)

        def writer() -> None:
            for _ in range(100):
                webhook_id = buffer.start("instagram", 1)
                buffer.add_result(webhook_id, ProcessingRecord("comment", "C", "processed"))

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(buffer) == 20
        assert all(len(r["results"]) == 1 for r in buffer.snapshot())
