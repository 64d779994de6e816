from datetime import datetime, timezone

import pytest

from upstream.normalize import (
    PayloadShape,
    dedupe_latest,
    derive_time,
    normalize_payload,
    resolve_shape,
)


def _ids(events):
    return [e.event_id for e in events]


class TestShapes:
    def test_flat_list(self):
        shape, records = resolve_shape([{"eventID": "1"}, "junk", {"eventID": "2"}])
        assert shape is PayloadShape.LIST
        assert [r["eventID"] for r in records] == ["1", "2"]

    def test_wrapped_event_list(self):
        shape, records = resolve_shape({"eventList": [{"eventID": "1"}], "count": 1})
        assert shape is PayloadShape.WRAPPED
        assert records == [{"eventID": "1"}]

    def test_feature_collection(self):
        payload = {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "id": "us7000abcd",
                    "properties": {"mag": 4.6, "place": "Aegean Sea", "date": "2024-01-01T05:00:00"},
                    "geometry": {"type": "Point", "coordinates": [26.1, 38.9, 12.0]},
                }
            ],
        }
        shape, records = resolve_shape(payload)
        assert shape is PayloadShape.FEATURES
        assert records[0]["geometry"]["coordinates"] == [26.1, 38.9, 12.0]
        assert records[0]["id"] == "us7000abcd"

        [event] = normalize_payload(payload)
        assert event.event_id == "us7000abcd"
        assert event.geometry == {"type": "Point", "coordinates": [26.1, 38.9, 12.0]}
        assert (event.lon, event.lat, event.depth_km) == (26.1, 38.9, 12.0)
        assert event.mag == 4.6
        assert event.place == "Aegean Sea"
        assert "geometry" not in event.properties

    def test_single_object(self):
        shape, records = resolve_shape({"eventID": "9", "date": "2024-01-01T00:00:00"})
        assert shape is PayloadShape.SINGLE
        assert len(records) == 1

    @pytest.mark.parametrize("payload", [None, 42, "text"])
    def test_anything_else_is_empty(self, payload):
        assert resolve_shape(payload) == (PayloadShape.EMPTY, [])
        assert normalize_payload(payload) == []


class TestTime:
    def test_origin_time_preferred(self):
        record = {"origintime": "2024-01-01T01:00:00", "eventDate": "2024-01-01T02:00:00"}
        assert derive_time(record) == datetime(2024, 1, 1, 1, 0)

    def test_falls_back_to_event_date_then_date(self):
        assert derive_time({"eventDate": "2024-01-01T02:00:00", "date": "x"}) == datetime(2024, 1, 1, 2, 0)
        assert derive_time({"date": "2024-01-01T03:00:00"}) == datetime(2024, 1, 1, 3, 0)

    def test_unparsable_field_falls_through(self):
        assert derive_time({"origintime": "", "eventDate": "soon", "date": "2024-01-01T03:00:00"}) == datetime(
            2024, 1, 1, 3, 0
        )

    def test_epoch_milliseconds(self):
        assert derive_time({"origintime": 1704067200000}) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_records_without_time_are_dropped(self):
        payload = [
            {"eventID": "1", "date": "2024-01-01T00:00:00"},
            {"eventID": "2", "time": 1704067200000},
            {"eventID": "3", "magnitude": "2.0"},
        ]
        assert _ids(normalize_payload(payload)) == ["1"]


class TestDedup:
    def test_later_update_wins(self):
        payload = [
            {"eventID": "7", "date": "2024-01-01T00:00:00", "magnitude": "3.0", "lastUpdateDate": "2024-01-01T00:10:00"},
            {"eventID": "8", "date": "2024-01-01T00:05:00"},
            {"eventID": "7", "date": "2024-01-01T00:00:00", "magnitude": "3.4", "lastUpdateDate": "2024-01-01T00:30:00"},
        ]
        events = normalize_payload(payload)
        assert _ids(events) == ["8", "7"]
        assert events[1].mag == 3.4

    def test_later_update_wins_when_listed_first(self):
        payload = [
            {"eventID": "7", "date": "2024-01-01T00:00:00", "magnitude": "3.4", "lastUpdateDate": "2024-01-01T00:30:00"},
            {"eventID": "7", "date": "2024-01-01T00:00:00", "magnitude": "3.0", "lastUpdateDate": "2024-01-01T00:10:00"},
        ]
        [event] = normalize_payload(payload)
        assert event.mag == 3.4

    def test_missing_update_loses(self):
        payload = [
            {"eventID": "7", "date": "2024-01-01T00:00:00", "magnitude": "3.4", "lastUpdateDate": "2024-01-01T00:30:00"},
            {"eventID": "7", "date": "2024-01-01T00:00:00", "magnitude": "9.9"},
        ]
        [event] = normalize_payload(payload)
        assert event.mag == 3.4

    def test_without_updates_later_record_wins(self):
        payload = [
            {"eventID": "7", "date": "2024-01-01T00:00:00", "magnitude": "3.0"},
            {"eventID": "7", "date": "2024-01-01T00:00:00", "magnitude": "3.2"},
        ]
        [event] = normalize_payload(payload)
        assert event.mag == 3.2

    def test_records_without_identity_are_never_merged(self):
        payload = [
            {"date": "2024-01-01T00:00:00", "magnitude": "3.0"},
            {"date": "2024-01-01T00:00:00", "magnitude": "3.0"},
        ]
        events = normalize_payload(payload)
        assert len(events) == 2
        assert _ids(events) == [None, None]

    def test_dedupe_returns_surviving_positions(self):
        assert dedupe_latest(["5", "5", None], [1.0, 2.0, None]) == [1, 2]

    def test_empty(self):
        assert dedupe_latest([], []) == []


def test_upstream_order_is_preserved():
    payload = [
        {"eventID": "a", "date": "2024-01-01T05:00:00"},
        {"eventID": "b", "date": "2024-01-01T09:00:00"},
        {"eventID": "c", "date": "2024-01-01T01:00:00"},
    ]
    assert _ids(normalize_payload(payload)) == ["a", "b", "c"]


def test_afad_record_fields():
    record = {
        "eventID": 630001,
        "date": "2024-01-01T10:00:00",
        "latitude": "39.9",
        "longitude": "41.3",
        "depth": "10.2",
        "magnitude": "3.1",
        "type": "ML",
        "location": "Erzurum",
        "lastUpdateDate": "2024-01-01T10:10:00",
    }
    [event] = normalize_payload([record])
    assert event.event_id == "630001"
    assert event.occurred_at == datetime(2024, 1, 1, 10, 0)
    assert (event.lat, event.lon, event.depth_km, event.mag) == (39.9, 41.3, 10.2, 3.1)
    assert event.mag_type == "ML"
    assert event.place == "Erzurum"
    assert "lastUpdateDate" not in event.properties
    assert event.properties == {k: v for k, v in record.items() if k != "lastUpdateDate"}


def test_update_stamps_are_not_emitted():
    payload = {
        "features": [
            {
                "id": "us1",
                "properties": {"date": "2024-01-01T05:00:00", "updated": 1704085200000, "lastUpdate": "x"},
                "geometry": {"type": "Point", "coordinates": [27.0, 38.0, 8.0]},
            }
        ]
    }
    [event] = normalize_payload(payload)
    assert set(event.properties) == {"date", "id"}
