from datetime import timezone

import pytest

from conftest import dt, make_item, make_sprint, person
from work_items import (
    completion_date,
    decode_state,
    decode_time_frame,
    decode_type,
    hierarchy_rank,
    is_raid_item,
    item_from_dict,
    item_to_dict,
    parse_dt,
    parse_tags,
    raid_category,
    sprint_from_dict,
    sprint_to_dict,
)


class TestDecoding:
    def test_unknown_values_fall_back(self):
        assert decode_state("Doing") == "New"
        assert decode_type("Impediment") == "Task"
        assert decode_time_frame(None) == "future"

    def test_known_values_pass_through(self):
        assert decode_state("Resolved") == "Resolved"
        assert decode_type("User Story") == "User Story"
        assert decode_time_frame("current") == "current"

    def test_hierarchy_rank(self):
        assert hierarchy_rank("Epic") < hierarchy_rank("Feature") < hierarchy_rank("User Story")
        assert hierarchy_rank("Risk") == 6
        assert hierarchy_rank("Something") == 99


class TestParseDt:
    def test_naive_is_utc(self):
        assert parse_dt("2024-03-01T10:00:00").tzinfo == timezone.utc

    def test_zulu(self):
        assert parse_dt("2024-03-01T10:00:00Z") == dt(2024, 3, 1, 10)

    def test_empty(self):
        assert parse_dt(None) is None
        assert parse_dt("") is None

    def test_malformed_raises(self):
        with pytest.raises(ValueError):
            parse_dt("not a date")


class TestRaid:
    def test_type_wins(self):
        assert raid_category(make_item(1, work_item_type="Risk", tags="Decision")) == "Risk"

    def test_tags_case_insensitive(self):
        assert raid_category(make_item(1, tags="ui; DEPENDENCY")) == "Dependency"
        assert raid_category(make_item(2, tags="Critical Dependency")) == "Critical Dependency"
        assert raid_category(make_item(3, tags="decision")) == "Decision"

    def test_not_raid(self):
        item = make_item(1, tags="frontend")
        assert raid_category(item) is None
        assert not is_raid_item(item)

    def test_parse_tags(self):
        assert parse_tags(" a ; b;;c ") == ["a", "b", "c"]
        assert parse_tags(None) == []


class TestCompletionDate:
    def test_closed_prefers_closed_date(self):
        item = make_item(1, state="Closed", closed_date=dt(2024, 1, 5), state_change_date=dt(2024, 1, 4))
        assert completion_date(item) == dt(2024, 1, 5)

    def test_resolved_falls_back_to_state_change(self):
        item = make_item(1, state="Resolved", state_change_date=dt(2024, 1, 4))
        assert completion_date(item) == dt(2024, 1, 4)

    def test_open_item_has_none(self):
        assert completion_date(make_item(1, state="Active", closed_date=dt(2024, 1, 5))) is None


class TestDictRoundTrip:
    def test_item(self):
        item = make_item(7, assigned_to=person("Ada"), story_points=3.0, priority=2,
                         closed_date=dt(2024, 2, 1), parent_id=3, has_linked_risk=True)
        d = item_to_dict(item)
        assert d["closed_date"] == "2024-02-01T00:00:00Z"
        assert item_from_dict(d) == item

    def test_changed_date_defaults_to_created(self):
        item = item_from_dict({"id": "4", "created_date": "2024-01-01T00:00:00Z", "state": "Weird"})
        assert item.id == 4
        assert item.changed_date == item.created_date
        assert item.state == "New"

    def test_sprint(self):
        sprint = make_sprint("S1", start_date=dt(2024, 1, 1), time_frame="current")
        assert sprint_from_dict(sprint_to_dict(sprint)) == sprint
