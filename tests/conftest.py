from datetime import datetime, timezone

import pytest

from work_items import Assignee, Sprint, WorkItem


def dt(y, m, d, h=0):
    return datetime(y, m, d, h, tzinfo=timezone.utc)


def person(name, unique=None):
    return Assignee(display_name=name, unique_name=unique or f"{name.lower()}@example.com")


def make_item(id, **kw):
    defaults = dict(
        project_name="Apollo",
        title=f"Item {id}",
        state="New",
        work_item_type="Task",
        iteration_path="Apollo\\Sprint 1",
        area_path="Apollo",
        created_date=dt(2024, 1, 1),
        changed_date=dt(2024, 1, 2),
    )
    defaults.update(kw)
    return WorkItem(id=id, **defaults)


def make_sprint(name, **kw):
    defaults = dict(
        id=name,
        name=name,
        path=f"Apollo\\{name}",
        project_name="Apollo",
        start_date=None,
        finish_date=None,
        time_frame="past",
    )
    defaults.update(kw)
    return Sprint(**defaults)


@pytest.fixture
def scenario():
    """Two stories under an epic, one closed in a finished sprint."""
    s1 = make_sprint("S1", start_date=dt(2024, 1, 1), finish_date=dt(2024, 1, 14), time_frame="past")
    s2 = make_sprint("S2", start_date=dt(2024, 1, 15), finish_date=dt(2024, 1, 28), time_frame="current")
    items = [
        make_item(1, work_item_type="Epic", title="Platform", state="Active",
                  iteration_path="Apollo"),
        make_item(2, work_item_type="User Story", parent_id=1, state="Closed", story_points=5,
                  iteration_path="Apollo\\S1", activated_date=dt(2024, 1, 2), closed_date=dt(2024, 1, 6)),
        make_item(3, work_item_type="User Story", parent_id=1, state="Active", story_points=3,
                  iteration_path="Apollo\\S2", activated_date=dt(2024, 1, 16)),
    ]
    return items, [s1, s2]
