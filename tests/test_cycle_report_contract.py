import json
import tempfile
import unittest
from datetime import datetime, timezone

from dedupe_ingest.contracts.cycle_report import build_cycle_report, validate_cycle_report, write_cycle_report
from dedupe_ingest.pipeline.results import AppendOutcome, BatchFailure, CycleResult, CycleStatus


def _partial_result():
    result = CycleResult(cycle_id="abc123", started_at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc))
    result.fetched = 6
    result.skipped_existing = 1
    outcome = AppendOutcome(batches_total=3, batches_attempted=3, batches_succeeded=2, appended=3)
    outcome.failures.append(BatchFailure(batch_index=1, size=2, attempts=1, error="quota exceeded"))
    outcome.unconfirmed.extend([{"Name": "c"}, {"Name": "d"}])
    result.apply_append_outcome(outcome)
    result.finished_at = datetime(2026, 1, 5, 9, 0, 4, tzinfo=timezone.utc)
    return result


class TestCycleReportContract(unittest.TestCase):
    def test_partial_report_is_valid(self):
        payload = build_cycle_report(_partial_result())
        errors = validate_cycle_report(payload)
        self.assertEqual(errors, [], msg="Schema validation failed:\n" + "\n".join(errors))
        self.assertEqual(payload["status"], "partial")
        self.assertEqual(payload["unconfirmed_count"], 2)
        self.assertEqual(payload["duration_seconds"], 4.0)

    def test_failed_cycle_report_is_valid(self):
        result = CycleResult(cycle_id="f1", status=CycleStatus.FAILED, error="SourceTimeout: slow")
        result.finished_at = result.started_at
        self.assertEqual(validate_cycle_report(build_cycle_report(result)), [])

    def test_inconsistent_payload_is_rejected(self):
        payload = build_cycle_report(_partial_result())
        payload["status"] = "success"
        payload["batches_not_attempted"] = 2
        errors = validate_cycle_report(payload)
        self.assertTrue(any("not_attempted" in e for e in errors))
        self.assertTrue(any("success" in e for e in errors))

    def test_unknown_status_is_a_schema_error(self):
        payload = build_cycle_report(_partial_result())
        payload["status"] = "exploded"
        self.assertTrue(validate_cycle_report(payload))

    def test_report_is_written_as_json(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = write_cycle_report(_partial_result(), tmp)
            self.assertTrue(path.name.startswith("cycle_20260105T090000Z_abc123"))
            with open(path, "r", encoding="utf-8") as f:
                self.assertEqual(json.load(f)["appended"], 3)


if __name__ == "__main__":
    unittest.main()
