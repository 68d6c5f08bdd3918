from unittest.mock import MagicMock

import pytest

from maiat.chain.trustchain import (
    GENESIS_HASH, AttestationRecorder, MemoryAttestationLog, RedisAttestationLog, content_hash,
)
from maiat.errors import ConfigurationMissing
from maiat.models import AIVerdict, Project, ProjectCategory, Review, Verdict

PROJECT = Project(id="p1", slug="aave", name="Aave", category=ProjectCategory.DEFI)


def review(i):
    return Review(id=f"r{i}", project_id="p1", reviewer_id="u1", rating=4, content=f"content {i}")


class TestAttestationLog:

    def test_entries_are_chained(self):
        log = MemoryAttestationLog()
        first = log.append("0.0.1", "r1", {"a": 1})
        second = log.append("0.0.1", "r2", {"a": 2})

        assert first.prev_hash == GENESIS_HASH
        assert second.prev_hash == first.entry_hash
        assert (first.sequence_number, second.sequence_number) == (1, 2)
        assert log.verify_segment("0.0.1")["verified"] is True

    def test_segments_are_independent(self):
        log = MemoryAttestationLog()
        log.append("0.0.1", "r1", {})
        assert log.append("0.0.2", "r1", {}).sequence_number == 1

    def test_review_attested_at_most_once(self):
        log = MemoryAttestationLog()
        first = log.append("0.0.1", "r1", {"v": 1})
        again = log.append("0.0.1", "r1", {"v": 2})

        assert again.entry_hash == first.entry_hash
        assert len(log.history("0.0.1")) == 1

    def test_tampering_breaks_the_chain(self):
        log = MemoryAttestationLog()
        for i in range(3):
            log.append("0.0.1", f"r{i}", {"rating": i})
        log._segments["0.0.1"][1].message["rating"] = 5

        result = log.verify_segment("0.0.1")

        assert result["verified"] is False
        assert result["breaks"][0]["type"] == "hash_mismatch"
        assert result["breaks"][0]["sequence_number"] == 2

    def test_redis_append_runs_in_watched_transaction(self):
        client = MagicMock()
        client.transaction.side_effect = lambda fn, *keys, value_from_callable: fn(pipe)
        pipe = MagicMock()
        pipe.hget.return_value = None
        pipe.hgetall.return_value = {"hash": "ab" * 32, "sequence": "4"}

        entry = RedisAttestationLog(client).append("0.0.9", "r1", {"x": 1})

        assert entry.sequence_number == 5
        assert entry.prev_hash == "ab" * 32
        watched = client.transaction.call_args[0][1:]
        assert watched == ("attest:0.0.9:head", "attest:0.0.9:reviews")
        pipe.multi.assert_called_once()
        pipe.rpush.assert_called_once()


class TestAttestationRecorder:

    @pytest.mark.asyncio
    async def test_record_payload(self):
        recorder = AttestationRecorder(MemoryAttestationLog(), "0.0.77")
        verdict = AIVerdict(score=91, verdict=Verdict.AUTHENTIC, reasoning="ok")

        record = await recorder.record(review(1), PROJECT, "0xabc", verdict=verdict)

        assert record.segment_id == "0.0.77"
        assert record.sequence_number == 1
        assert record.payload["type"] == "maiat-review-attestation"
        assert record.payload["contentHash"] == content_hash("content 1")
        assert record.payload["aiScore"] == 91
        assert record.payload["verificationStatus"] == "verified"

    @pytest.mark.asyncio
    async def test_unset_segment_is_configuration_missing(self):
        with pytest.raises(ConfigurationMissing):
            await AttestationRecorder(MemoryAttestationLog(), "").record(review(1), PROJECT, "0xabc")
