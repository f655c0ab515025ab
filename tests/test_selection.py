from conftest import make_item
from selection import (
    area_name_from_selection,
    clear_all,
    filter_by_area_selections,
    has_any_selection,
    is_project_fully_selected,
    parse_selections,
    project_name_from_selection,
    projects_to_fetch,
    select_all,
    selection_label,
    toggle_area,
    toggle_project,
)

AREAS = ["Api", "Web"]


class TestParse:
    def test_whole_project_subsumes_areas(self):
        parsed = parse_selections(["Apollo\\Api", "Apollo", "Zeus\\Web", "Zeus\\Web"])
        assert parsed.project_names == ["Apollo", "Zeus"]
        assert parsed.area_filters == {"Zeus": ["Zeus\\Web"]}

    def test_names(self):
        assert project_name_from_selection("Apollo\\Api") == "Apollo"
        assert area_name_from_selection("Apollo\\Api") == "Api"
        assert area_name_from_selection("Apollo") is None

    def test_projects_to_fetch_dedupes(self):
        assert projects_to_fetch(["Zeus\\Web", "Apollo", "Zeus\\Api"]) == ["Zeus", "Apollo"]


class TestAreaFilter:
    def test_exact_match_only_for_filtered_projects(self):
        items = [
            make_item(1, area_path="Apollo\\Api"),
            make_item(2, area_path="Apollo\\Api\\Auth"),
            make_item(3, area_path="Apollo"),
            make_item(4, project_name="Zeus", area_path="Zeus\\Web"),
        ]
        parsed = parse_selections(["Apollo\\Api", "Zeus"])
        kept = filter_by_area_selections(items, parsed.area_filters)
        assert [w.id for w in kept] == [1, 4]

    def test_narrowing_never_adds_items(self):
        items = [make_item(i, area_path=f"Apollo\\{a}") for i, a in enumerate(AREAS + ["Ops"])]
        whole = filter_by_area_selections(items, parse_selections(["Apollo"]).area_filters)
        narrowed = filter_by_area_selections(items, parse_selections(["Apollo\\Api"]).area_filters)
        assert set(w.id for w in narrowed) <= set(w.id for w in whole)

    def test_selection_round_trip(self):
        items = [
            make_item(1, project_name="P1", area_path="P1\\AreaY"),
            make_item(2, project_name="P2", area_path="P2\\AreaX"),
            make_item(3, project_name="P2", area_path="P2\\AreaY"),
        ]
        parsed = parse_selections(["P1", "P2\\AreaX"])
        assert parsed.project_names == ["P1", "P2"]
        assert [w.id for w in filter_by_area_selections(items, parsed.area_filters)] == [1, 2]


class TestToggles:
    def test_project_toggle_round_trip(self):
        selected = ["Zeus"]
        on = toggle_project(selected, "Apollo", AREAS)
        assert on == ["Zeus", "Apollo"]
        assert toggle_project(on, "Apollo", AREAS) == selected

    def test_project_toggle_replaces_partial_areas(self):
        assert toggle_project(["Apollo\\Api"], "Apollo", AREAS) == ["Apollo"]

    def test_narrow_from_whole_project(self):
        assert toggle_area(["Apollo"], "Apollo", "Web", AREAS) == ["Apollo\\Web"]

    def test_area_deselect(self):
        assert toggle_area(["Apollo\\Api", "Apollo\\Web", "Zeus"], "Apollo", "Api", AREAS) == ["Apollo\\Web", "Zeus"]

    def test_consolidates_when_all_areas_selected(self):
        selected = toggle_area([], "Apollo", "Api", AREAS)
        assert selected == ["Apollo\\Api"]
        selected = toggle_area(selected, "Apollo", "Web", AREAS)
        assert selected == ["Apollo"]
        assert is_project_fully_selected(selected, "Apollo", AREAS)

    def test_consolidation_is_symmetric_with_project_toggle(self):
        by_areas = []
        for area in AREAS:
            by_areas = toggle_area(by_areas, "Apollo", area, AREAS)
        assert by_areas == toggle_project([], "Apollo", AREAS)

    def test_three_area_project_consolidates_to_project_entry(self):
        areas = ["AreaX", "AreaY", "AreaZ"]
        selected = []
        for area in areas:
            selected = toggle_area(selected, "ProjectName", area, areas)
        assert selected == ["ProjectName"]
        assert selected == toggle_project([], "ProjectName", areas)

    def test_project_without_areas(self):
        assert not is_project_fully_selected([], "Apollo", [])
        assert has_any_selection(["Apollo"], "Apollo", [])
        assert has_any_selection(["Apollo\\Api"], "Apollo", AREAS)
        assert not has_any_selection(["Zeus"], "Apollo", AREAS)

    def test_select_and_clear(self):
        assert select_all(["A", "B", "A"]) == ["A", "B"]
        assert clear_all() == []


class TestLabel:
    PROJECTS = ["Apollo", "Zeus"]
    AREA_PATHS = {"Apollo": AREAS, "Zeus": []}

    def label(self, selected):
        return selection_label(selected, self.PROJECTS, self.AREA_PATHS)

    def test_labels(self):
        assert self.label([]) == "No Projects"
        assert self.label(["Apollo", "Zeus"]) == "All Projects"
        assert self.label(["Apollo\\Api", "Apollo\\Web", "Zeus"]) == "All Projects"
        assert self.label(["Zeus"]) == "Zeus"
        assert self.label(["Apollo\\Api"]) == "Apollo > Api"
        assert self.label(["Apollo\\Api", "Apollo\\Ops"]) == "Apollo (2 areas)"
        assert self.label(["Apollo\\Api", "Zeus"]) == "2 Projects"
