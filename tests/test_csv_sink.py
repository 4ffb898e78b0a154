import csv
import os
import tempfile
import unittest
from datetime import datetime

from dedupe_ingest.errors import InvalidConfiguration, PermanentWriteError, SinkUnavailable
from dedupe_ingest.ingestion.identity import derive_identity_key
from dedupe_ingest.ingestion.record_types import CandidateRecord
from dedupe_ingest.pipeline.orchestrator import RunOrchestrator
from dedupe_ingest.pipeline.results import CycleStatus
from dedupe_ingest.storage.csv_sink import CsvSink


class _ListSource:
    def __init__(self, rows):
        self.rows = rows

    def fetch(self, params=None):
        return [CandidateRecord.from_mapping(row) for row in self.rows]


class TestCsvSink(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "sheet", "leads.csv")

    def tearDown(self):
        self.tmp.cleanup()

    def test_missing_file_means_no_existing_keys(self):
        self.assertEqual(CsvSink(self.path, ["Name"]).read_existing_keys(), set())

    def test_append_writes_header_once_and_keys_round_trip(self):
        sink = CsvSink(self.path, ["Name", "Address"])
        first = CandidateRecord.from_mapping({"Name": " Jane  Doe", "Address": "12 Market St", "Phone": "1"})
        second = CandidateRecord.from_mapping({"Name": "Alex", "Address": "44 Pine Rd", "Phone": "2"})
        sink.append_batch([first])
        sink.append_batch([second])

        with open(self.path, newline="", encoding="utf-8") as handle:
            rows = list(csv.reader(handle))
        self.assertEqual(rows[0], ["Name", "Address", "Phone"])
        self.assertEqual(len(rows), 3)

        keys = sink.read_existing_keys()
        self.assertEqual(keys, {derive_identity_key(first, sink.key_fields), derive_identity_key(second, sink.key_fields)})

    def test_configured_columns_drop_extra_fields(self):
        sink = CsvSink(self.path, ["Name"], columns=["Name"])
        sink.append_batch([CandidateRecord.from_mapping({"Name": "A", "Secret": "x"})])
        self.assertEqual(sink.read_header(), ["Name"])

    def test_datetime_fields_keep_matching_keys(self):
        sink = CsvSink(self.path, ["Name", "Seen"])
        record = CandidateRecord.from_mapping({"Name": "A", "Seen": datetime(2025, 6, 1, 12, 0)})
        sink.append_batch([record])
        self.assertIn(derive_identity_key(record, ["Name", "Seen"]), sink.read_existing_keys())

    def test_unreadable_file_is_sink_unavailable(self):
        os.makedirs(self.path)  # a directory where the file should be
        with self.assertRaises(SinkUnavailable):
            CsvSink(self.path, ["Name"]).read_existing_keys()
        with self.assertRaises(PermanentWriteError):
            CsvSink(self.path, ["Name"]).append_batch([{"Name": "A"}])

    def test_rerun_against_csv_sink_is_idempotent(self):
        sink = CsvSink(self.path, ["Name"])
        source = _ListSource([{"Name": "A", "City": "Leeds"}, {"Name": "b"}, {"Name": "a "}])
        orchestrator = RunOrchestrator(source, sink, sink, key_fields=["Name"], batch_size=1)

        first = orchestrator.run_cycle()
        second = orchestrator.run_cycle()
        self.assertEqual((first.status, first.appended), (CycleStatus.SUCCESS, 2))
        self.assertEqual((second.status, second.appended), (CycleStatus.SUCCESS, 0))
        with open(self.path, newline="", encoding="utf-8") as handle:
            self.assertEqual(len(list(csv.DictReader(handle))), 2)

    def test_key_field_missing_from_first_record_still_gets_a_column(self):
        sink = CsvSink(self.path, ["Name", "Address"])
        source = _ListSource([{"Name": "A"}, {"Name": "B", "Address": "X"}])
        orchestrator = RunOrchestrator(source, sink, sink, key_fields=["Name", "Address"], batch_size=1)

        appended = [orchestrator.run_cycle().appended for _ in range(3)]

        self.assertEqual(appended, [2, 0, 0])
        self.assertEqual(sink.read_header()[:2], ["Name", "Address"])

    def test_header_collects_fields_from_the_whole_first_batch(self):
        sink = CsvSink(self.path, ["Name"])
        sink.append_batch([{"Name": "A"}, {"Name": "B", "Phone": "1"}])
        self.assertEqual(sink.read_header(), ["Name", "Phone"])

    def test_configured_columns_must_include_key_fields(self):
        with self.assertRaises(InvalidConfiguration):
            CsvSink(self.path, ["Name", "Address"], columns=["Name", "Phone"])

    def test_existing_header_without_key_column_is_unavailable(self):
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w", newline="", encoding="utf-8") as handle:
            handle.write("Name,Phone\r\nA,1\r\n")
        sink = CsvSink(self.path, ["Name", "Address"])
        with self.assertRaises(SinkUnavailable):
            sink.read_existing_keys()
        with self.assertRaises(PermanentWriteError):
            sink.append_batch([{"Name": "B", "Address": "X"}])

        result = RunOrchestrator(_ListSource([{"Name": "B", "Address": "X"}]), sink, sink, key_fields=["Name", "Address"]).run_cycle()
        self.assertEqual(result.status, CycleStatus.FAILED)
        self.assertEqual(result.appended, 0)

    def test_append_reports_rows_written(self):
        self.assertEqual(CsvSink(self.path, ["Name"]).append_batch([{"Name": "A"}, {"Name": "B"}]), 2)


if __name__ == "__main__":
    unittest.main()
