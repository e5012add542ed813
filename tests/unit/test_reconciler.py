"""
Tests for multi-file session reconciliation.

Records are built in memory (tests.helpers.synthetic_data) with sample
values equal to each sample's global index, so misaligned cuts show up as
breaks in the sequence.
"""

from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pytest

from cpap_export.merge.reconciler import (
    EDFFileDecoder,
    FileDecoder,
    SessionReconciler,
    conform_to_record_grid,
    extract_samples,
    find_common_time_range,
    retime_annotations,
    select_best_channels,
    to_epoch_ms,
)
from cpap_export.parsers.base import NoOverlappingDataError, RecordDurationMismatchError
from cpap_export.parsers.formats.types import (
    EDFAnnotation,
    EDFFile,
    EDFHeader,
)
from cpap_export.parsers.profiles import RESMED_PROFILE
from cpap_export.parsers.types import DeviceProfile, Session
from tests.helpers.synthetic_data import T0, make_record, make_signal

PROFILE = DeviceProfile(
    profile_id="test",
    name="Test",
    marker_files=("STR.edf",),
    session_suffix="_brp.edf",
    file_suffix=".edf",
    record_duration=60.0,
)


class StubDecoder(FileDecoder):
    """Hands out prebuilt FileRecords by session file name."""

    def __init__(self, records, profile=PROFILE):
        super().__init__(profile)
        self.records = {record.name: record for record in records}

    def decode(self, name, path, session, on_progress=None):
        if on_progress:
            on_progress(100)
        return self.records.get(name)


def make_session(records, start=T0, end=None, extra_names=()):
    end = end or max(record.end for record in records)
    names = [record.name for record in records] + list(extra_names)
    return Session(start=start, end=end, files={name: Path(name) for name in names})


def reconcile(records, profile=PROFILE, **session_kwargs):
    session = make_session(records, **session_kwargs)
    return SessionReconciler(profile, StubDecoder(records, profile)).reconcile(session)


class TestFindCommonTimeRange:
    """Tests for window alignment."""

    def test_window_is_intersection_truncated_to_whole_records(self):
        """Window starts at the latest start and ends on a record boundary."""
        a = make_record("a.edf", T0, 10, {"Flow": 1500})
        b = make_record("b.edf", T0 + timedelta(seconds=30), 10, {"Leak": 30})

        start, end = find_common_time_range([a, b], 60.0)

        assert start == to_epoch_ms(T0 + timedelta(seconds=30))
        assert end == to_epoch_ms(T0 + timedelta(seconds=570))
        assert (end - start) % 60_000 == 0
        for record in (a, b):
            assert record.start_ms <= start and end <= record.end_ms

    def test_single_record_window_is_whole_file(self):
        a = make_record("a.edf", T0, 5, {"Flow": 1500})

        assert find_common_time_range([a], 60.0) == (a.start_ms, a.end_ms)

    def test_no_candidates_raises(self):
        with pytest.raises(NoOverlappingDataError):
            find_common_time_range([], 60.0)

    def test_disjoint_records_raise(self):
        a = make_record("a.edf", T0, 60, {"Flow": 1500})
        b = make_record("b.edf", T0 + timedelta(hours=2), 60, {"Flow": 1500})

        with pytest.raises(NoOverlappingDataError, match="no common time range"):
            find_common_time_range([a, b], 60.0)

    def test_touching_records_raise(self):
        """Files that only share an endpoint have no usable window."""
        a = make_record("a.edf", T0, 60, {"Flow": 1500})
        b = make_record("b.edf", T0 + timedelta(hours=1), 60, {"Flow": 1500})

        with pytest.raises(NoOverlappingDataError):
            find_common_time_range([a, b], 60.0)

    def test_overlap_shorter_than_one_record_raises(self):
        a = make_record("a.edf", T0, 2, {"Flow": 1500})
        b = make_record("b.edf", T0 + timedelta(seconds=90), 2, {"Flow": 1500})

        with pytest.raises(NoOverlappingDataError, match="shorter than one"):
            find_common_time_range([a, b], 60.0)


class TestSelectBestChannels:
    """Tests for per-label source selection."""

    def test_highest_resolution_wins_regardless_of_order(self):
        low = make_record("low.edf", T0, 10, {"Flow": 30})
        high = make_record("high.edf", T0, 10, {"Flow": 1500})

        selected = select_best_channels([low, high])

        assert len(selected) == 1
        record, index = selected[0]
        assert record is high
        assert record.header.signals[index].samples_per_record == 1500

    def test_tie_goes_to_first_inserted(self):
        first = make_record("first.edf", T0, 10, {"Leak": 30})
        second = make_record("second.edf", T0, 10, {"Leak": 30})

        ((record, _),) = select_best_channels([first, second])

        assert record is first

    def test_labels_keep_first_seen_order(self):
        a = make_record("a.edf", T0, 10, {"Flow": 1500, "MaskPressure": 1500})
        b = make_record("b.edf", T0, 10, {"Leak": 30, "Flow": 30})

        labels = [
            record.header.signals[index].label
            for record, index in select_best_channels([a, b])
        ]

        assert labels == ["Flow", "MaskPressure", "Leak"]


class TestExtractSamples:
    """Tests for cutting a window out of one channel."""

    def test_cut_uses_floor_and_ceil_indices(self):
        record = make_record("a.edf", T0, 2, {"Flow": 1500})
        start = record.start_ms + 1010  # 25.25 samples in
        end = record.start_ms + 2010  # 50.25 samples in

        cut = extract_samples(record, 0, start, end)

        np.testing.assert_array_equal(cut, np.arange(25, 51))

    def test_window_before_file_start_clamps_to_zero(self):
        record = make_record("a.edf", T0 + timedelta(seconds=60), 1, {"Leak": 30})

        cut = extract_samples(record, 0, to_epoch_ms(T0), to_epoch_ms(T0) + 120_000)

        assert len(cut) == 30


class TestRetimeAnnotations:
    """Tests for moving annotations onto the window's clock."""

    def test_onsets_shift_to_window_start_and_outsiders_drop(self):
        a = make_record(
            "a.edf",
            T0,
            10,
            {"Flow": 1500},
            annotations=[
                EDFAnnotation(onset_time=10, description="before window"),
                EDFAnnotation(onset_time=100, duration=15, description="Hypopnea"),
            ],
        )
        b = make_record(
            "b.edf",
            T0 + timedelta(seconds=30),
            10,
            {"Leak": 30},
            annotations=[EDFAnnotation(onset_time=60, description="Arousal")],
        )
        window_start, window_end = find_common_time_range([a, b], 60.0)

        annotations = retime_annotations([a, b], window_start, window_end)

        assert [(x.description, x.onset_time) for x in annotations] == [
            ("Hypopnea", 70.0),
            ("Arousal", 60.0),
        ]
        assert annotations[0].duration == 15

    def test_annotation_on_window_edge_is_kept(self):
        a = make_record(
            "a.edf",
            T0,
            2,
            {"Flow": 1500},
            annotations=[EDFAnnotation(onset_time=120, description="Edge")],
        )

        annotations = retime_annotations([a], a.start_ms, a.end_ms)

        assert [x.onset_time for x in annotations] == [120.0]


class TestConformToRecordGrid:
    """Tests for fitting a channel to whole records."""

    def test_short_channel_is_padded_with_zero(self):
        signal = make_signal("Flow", 4)

        values = conform_to_record_grid(signal, np.array([1.0, 2.0, 3.0]), 1)

        np.testing.assert_array_equal(values, [1.0, 2.0, 3.0, 0.0])

    def test_padding_is_clipped_into_physical_range(self):
        signal = make_signal("Pressure", 2, physical_min=4, physical_max=20)

        values = conform_to_record_grid(signal, np.array([5.0]), 1)

        np.testing.assert_array_equal(values, [5.0, 4.0])

    def test_long_channel_is_truncated(self):
        signal = make_signal("Flow", 2)

        values = conform_to_record_grid(signal, np.arange(5.0), 2)

        np.testing.assert_array_equal(values, [0.0, 1.0, 2.0, 3.0])


class TestSessionReconciler:
    """End-to-end reconciliation over in-memory records."""

    def test_overlapping_files_merge_without_gaps_or_duplicates(self):
        """Every channel holds exactly the consecutive samples of the window."""
        a = make_record("a.edf", T0, 10, {"Flow": 1500})
        b = make_record("b.edf", T0 + timedelta(seconds=30), 10, {"Flow": 1500, "Leak": 30})

        merged = reconcile([a, b])

        assert merged.header.start_datetime == T0 + timedelta(seconds=30)
        assert merged.header.num_data_records == 9
        flow = merged.get_values("Flow")
        leak = merged.get_values("Leak")
        # Flow comes from a.edf (tie), Leak from b.edf; both start at T0+30s
        np.testing.assert_array_equal(flow, np.arange(750, 750 + 9 * 1500))
        np.testing.assert_array_equal(leak, np.arange(15, 15 + 9 * 30))

    def test_channel_lengths_match_record_grid(self):
        a = make_record("a.edf", T0, 10, {"Flow": 1500, "Pressure": 30})
        b = make_record("b.edf", T0 + timedelta(seconds=7), 10, {"Leak": 30, "Snore": 30})

        merged = reconcile([a, b])

        n = merged.header.num_data_records
        for signal, values in zip(merged.header.signals, merged.values):
            assert len(values) == n * signal.samples_per_record

    def test_back_to_back_files_have_no_common_window(self):
        """Three consecutive one-hour files share no intersection."""
        records = [
            make_record(f"{i}.edf", T0 + timedelta(hours=i), 60, {"Flow": 1500})
            for i in range(3)
        ]

        with pytest.raises(NoOverlappingDataError):
            reconcile(records)

    def test_files_outside_session_bounds_are_ignored(self):
        inside = make_record("inside.edf", T0, 10, {"Flow": 1500})
        later = make_record("later.edf", T0 + timedelta(hours=3), 10, {"Leak": 30})

        merged = reconcile([inside, later], end=inside.end)

        assert merged.signal_labels == ["Flow"]
        assert merged.header.num_data_records == 10

    def test_no_decodable_files_raises(self):
        a = make_record("a.edf", T0, 10, {"Flow": 1500})
        session = make_session([a], extra_names=["missing.edf"])
        reconciler = SessionReconciler(PROFILE, StubDecoder([]))

        with pytest.raises(NoOverlappingDataError):
            reconciler.reconcile(session)

    def test_higher_resolution_channel_is_exported(self):
        low = make_record("low.edf", T0, 10, {"Flow": 30})
        high = make_record("high.edf", T0, 10, {"Flow": 1500})

        merged = reconcile([low, high])

        assert merged.header.signals[0].samples_per_record == 1500
        assert len(merged.values[0]) == 10 * 1500

    def test_tie_takes_first_file_values(self):
        first = make_record(
            "first.edf", T0, 2, {"Leak": 30}, values={"Leak": np.full(60, 7.0)}
        )
        second = make_record(
            "second.edf", T0, 2, {"Leak": 30}, values={"Leak": np.full(60, 9.0)}
        )

        merged = reconcile([first, second])

        assert np.all(merged.get_values("Leak") == 7.0)

    def test_output_header_is_anonymous_continuous_edf_plus(self):
        a = make_record("a.edf", T0, 3, {"Flow": 1500, "Leak": 30})

        header = reconcile([a]).header

        assert header.reserved == "EDF+C"
        assert header.is_edf_plus
        assert header.patient_info == "X X X X"
        assert header.recording_info == "Startdate 08-DEC-2024 X X X"
        assert header.record_duration == 60.0
        assert header.num_signals == 2
        assert [s.signal_index for s in header.signals] == [0, 1]

    def test_annotations_are_retimed(self):
        a = make_record(
            "a.edf",
            T0,
            10,
            {"Flow": 1500},
            annotations=[EDFAnnotation(onset_time=100, description="Apnea")],
        )
        b = make_record("b.edf", T0 + timedelta(seconds=30), 10, {"Leak": 30})

        merged = reconcile([a, b])

        assert [(x.description, x.onset_time) for x in merged.annotations] == [
            ("Apnea", 70.0)
        ]

    def test_empty_optional_sensor_is_dropped(self):
        a = make_record(
            "a.edf",
            T0,
            2,
            {"Flow": 1500, "SpO2": 60, "Pulse": 60},
            values={"SpO2": np.zeros(120), "Pulse": np.full(120, 61.0)},
        )

        merged = reconcile([a], profile=RESMED_PROFILE)

        assert merged.signal_labels == ["Flow", "Pulse"]
        assert merged.header.num_signals == 2

    def test_progress_reaches_100_monotonically(self):
        a = make_record("a.edf", T0, 10, {"Flow": 1500})
        b = make_record("b.edf", T0, 10, {"Leak": 30})
        session = make_session([a, b])
        reported = []

        SessionReconciler(PROFILE, StubDecoder([a, b])).reconcile(
            session, reported.append
        )

        assert reported[-1] == 100
        assert reported == sorted(reported)
        assert 50 in reported


class TestEDFFileDecoder:
    """Tests for decoding ResMed EDF files into FileRecords."""

    SESSION = Session(start=T0, end=T0 + timedelta(hours=1), files={})

    @staticmethod
    def header(**overrides):
        fields = {
            "start_datetime": T0,
            "num_data_records": 2,
            "record_duration": 60.0,
            "num_signals": 3,
            "reserved": "EDF+C",
            "is_edf_plus": True,
            "signals": [
                make_signal("Flow.40ms", 1500),
                make_signal("Crc16", 1),
                make_signal("Leak.2s", 30),
            ],
        }
        fields.update(overrides)
        return EDFHeader(**fields)

    def decoder(self, header, annotations=()):
        def read_file(path, parsed_header):
            return EDFFile(
                header=parsed_header,
                values=[
                    np.zeros(s.samples_per_record * parsed_header.num_data_records)
                    for s in parsed_header.signals
                ],
                annotations=list(annotations),
            )

        return EDFFileDecoder(
            RESMED_PROFILE, read_header=lambda path: header, read_file=read_file
        )

    def test_labels_are_filtered_and_canonicalized(self):
        record = self.decoder(self.header()).decode("a_BRP.edf", Path("x"), self.SESSION)

        assert [s.label for s in record.header.signals] == ["Flow", "Leak"]
        assert record.header.num_signals == 2
        assert len(record.values) == 2

    def test_foreign_record_duration_raises(self):
        decoder = self.decoder(self.header(record_duration=30.0))

        with pytest.raises(RecordDurationMismatchError) as exc_info:
            decoder.decode("a_BRP.edf", Path("x"), self.SESSION)

        assert exc_info.value.file_name == "a_BRP.edf"
        assert "Expected 60.0 seconds" in str(exc_info.value)

    def test_zero_record_duration_keeps_declared_end(self):
        header = self.header(record_duration=0.0, last_record_onset=60.0)

        record = self.decoder(header).decode("a_EVE.edf", Path("x"), self.SESSION)

        assert record.end == T0 + timedelta(seconds=60)
        assert record.record_duration_ms == 60_000

    def test_single_zero_duration_record_ends_at_start(self):
        header = self.header(record_duration=0.0, num_data_records=1)

        record = self.decoder(header).decode("a_EVE.edf", Path("x"), self.SESSION)

        assert record.end == record.start == T0

    @pytest.mark.parametrize("num_records", [0, -1])
    def test_files_without_records_are_skipped(self, num_records):
        decoder = self.decoder(self.header(num_data_records=num_records))

        assert decoder.decode("a_BRP.edf", Path("x"), self.SESSION) is None

    def test_unreadable_header_is_skipped(self):
        decoder = EDFFileDecoder(RESMED_PROFILE, read_header=lambda path: None)

        assert decoder.decode("a_BRP.edf", Path("x"), self.SESSION) is None

    def test_annotation_onsets_are_moved_to_event_start(self):
        decoder = self.decoder(
            self.header(),
            annotations=[EDFAnnotation(onset_time=40, duration=10, description="Apnea")],
        )

        record = decoder.decode("a_EVE.edf", Path("x"), self.SESSION)

        assert record.annotations[0].onset_time == 30

    def test_discontinuous_file_ends_with_session(self):
        decoder = self.decoder(self.header(reserved="EDF+D"))

        record = decoder.decode("a_EVE.edf", Path("x"), self.SESSION)

        assert record.end == self.SESSION.end

    def test_continuous_file_end_uses_last_record_onset(self):
        decoder = self.decoder(self.header(last_record_onset=300.0))

        record = decoder.decode("a_BRP.edf", Path("x"), self.SESSION)

        assert record.end == datetime(2024, 12, 8, 1, 45, 39)
