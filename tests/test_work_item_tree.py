import random

from conftest import dt, make_item
from work_item_tree import (
    build_groups,
    build_tree,
    collect_all_expandable_ids,
    count_nodes,
    filter_by_states,
    filter_by_top_level,
    filter_by_types,
    flatten_grouped_tree,
    group_by_area_path,
    page_count,
    paginate,
    sort_tree,
    walk,
)


def shape(roots):
    """Nested (id, children) tuples for structural comparison."""
    return [(n.item.id, shape(n.children)) for n in roots]


def sample():
    return [
        make_item(10, work_item_type="Task", parent_id=3),
        make_item(3, work_item_type="User Story", parent_id=2),
        make_item(2, work_item_type="Feature", parent_id=1),
        make_item(1, work_item_type="Epic"),
        make_item(4, work_item_type="Bug", parent_id=2),
        make_item(5, work_item_type="User Story", parent_id=2),
        make_item(6, work_item_type="Task", parent_id=999),
    ]


class TestBuildTree:
    def test_attaches_to_present_parents(self):
        roots = sort_tree(build_tree(sample()))
        assert shape(roots) == [
            (1, [(2, [(3, [(10, [])]), (5, []), (4, [])])]),
            (6, []),
        ]

    def test_missing_parent_becomes_root(self):
        roots = build_tree([make_item(1, parent_id=42)])
        assert [r.item.id for r in roots] == [1]

    def test_no_item_lost(self):
        items = sample()
        assert count_nodes(build_tree(items)) == len(items)

    def test_duplicate_ids_keep_first(self):
        roots = build_tree([make_item(1, title="first"), make_item(1, title="second")])
        assert len(roots) == 1
        assert roots[0].item.title == "first"

    def test_input_order_does_not_matter_after_sort(self):
        items = sample()
        expected = shape(sort_tree(build_tree(items)))
        rng = random.Random(7)
        for _ in range(5):
            shuffled = items[:]
            rng.shuffle(shuffled)
            assert shape(sort_tree(build_tree(shuffled))) == expected

    def test_sort_is_idempotent(self):
        once = sort_tree(build_tree(sample()), key="title")
        assert shape(sort_tree(once, key="title")) == shape(once)

    def test_sort_does_not_mutate_input(self):
        roots = build_tree(sample())
        before = shape(roots)
        sort_tree(roots, key="id", descending=True)
        assert shape(roots) == before


class TestCycles:
    def test_two_cycle_becomes_roots(self):
        items = [make_item(1, parent_id=2), make_item(2, parent_id=1)]
        roots = build_tree(items)
        assert sorted(r.item.id for r in roots) == [1, 2]
        assert count_nodes(roots) == 2

    def test_self_parent(self):
        roots = build_tree([make_item(1, parent_id=1)])
        assert shape(roots) == [(1, [])]

    def test_descendants_of_a_cycle_still_attach(self):
        items = [make_item(1, parent_id=2), make_item(2, parent_id=1), make_item(3, parent_id=1)]
        roots = sort_tree(build_tree(items))
        assert shape(roots) == [(1, [(3, [])]), (2, [])]

    def test_long_chain_has_no_recursion_limit(self):
        n = 5000
        items = [make_item(1)] + [make_item(i, parent_id=i - 1) for i in range(2, n + 1)]
        roots = sort_tree(build_tree(items))
        groups = build_groups(items, grouped=False)
        rows = flatten_grouped_tree(groups, set(collect_all_expandable_ids(groups)))
        assert count_nodes(roots) == n
        assert len(rows) == n
        assert rows[-1].depth == n - 1


class TestSortKeys:
    def test_rank_before_key(self):
        items = [make_item(1, work_item_type="Task", title="a"), make_item(2, work_item_type="Epic", title="z")]
        roots = sort_tree(build_tree(items), key="title")
        assert [r.item.id for r in roots] == [2, 1]

    def test_descending_key_then_id(self):
        items = [
            make_item(3, story_points=1),
            make_item(1, story_points=5),
            make_item(2, story_points=5),
        ]
        roots = sort_tree(build_tree(items), key="story_points", descending=True)
        assert [r.item.id for r in roots] == [1, 2, 3]

    def test_callable_key(self):
        items = [make_item(1, changed_date=dt(2024, 3, 1)), make_item(2, changed_date=dt(2024, 1, 1))]
        roots = sort_tree(build_tree(items), key=lambda w: w.changed_date)
        assert [r.item.id for r in roots] == [2, 1]


class TestGrouping:
    def test_groups_sorted_with_ungrouped_last(self):
        items = [
            make_item(1, area_path="Apollo"),
            make_item(2, area_path="Apollo\\web"),
            make_item(3, area_path="Apollo\\Api"),
        ]
        groups = group_by_area_path(sort_tree(build_tree(items)))
        assert [(g.group_id, g.label) for g in groups] == [
            ("area:Api", "Api"), ("area:web", "web"), ("", ""),
        ]

    def test_flatten_collapsed_and_expanded(self):
        items = [
            make_item(1, work_item_type="Epic", area_path="Apollo\\Api"),
            make_item(2, work_item_type="Feature", parent_id=1, area_path="Apollo\\Api"),
            make_item(3, area_path="Apollo"),
        ]
        groups = build_groups(items)

        collapsed = flatten_grouped_tree(groups, set())
        assert [(r.kind, r.depth, r.label or r.item.id) for r in collapsed] == [
            ("group", 0, "Api"), ("item", 0, 3),
        ]

        expanded = flatten_grouped_tree(groups, {"area:Api", "wi:1"})
        assert [(r.kind, r.depth, r.label or r.item.id) for r in expanded] == [
            ("group", 0, "Api"), ("item", 1, 1), ("item", 2, 2), ("item", 0, 3),
        ]
        assert expanded[1].has_children and not expanded[2].has_children

    def test_collect_expandable_ids(self):
        items = [
            make_item(1, work_item_type="Epic", area_path="Apollo\\Api"),
            make_item(2, parent_id=1, area_path="Apollo\\Api"),
            make_item(3, area_path="Apollo"),
        ]
        assert collect_all_expandable_ids(build_groups(items)) == ["area:Api", "wi:1"]

    def test_every_node_reachable_when_fully_expanded(self):
        items = sample()
        groups = build_groups(items)
        rows = flatten_grouped_tree(groups, set(collect_all_expandable_ids(groups)))
        assert sorted(r.item.id for r in rows if r.kind == "item") == sorted(w.id for w in items)
        assert sum(count_nodes(g.roots) for g in groups) == len(items)


class TestFilters:
    def test_top_level(self):
        items = [make_item(1, work_item_type="Epic"), make_item(2, work_item_type="User Story"),
                 make_item(3, work_item_type="Task")]
        assert [w.id for w in filter_by_top_level(items, "Area Path")] == [1, 2, 3]
        assert [w.id for w in filter_by_top_level(items, "User Story")] == [2, 3]

    def test_types(self):
        items = [make_item(1, work_item_type="Epic"), make_item(2, work_item_type="Risk")]
        assert [w.id for w in filter_by_types(items, {"Area Path", "Risk"})] == [2]

    def test_states(self):
        items = [make_item(1, state="New"), make_item(2, state="Closed")]
        assert [w.id for w in filter_by_states(items, {"Closed"})] == [2]
        assert len(filter_by_states(items, None)) == 2


class TestPagination:
    def test_pages(self):
        rows = list(range(45))
        assert page_count(rows) == 3
        assert paginate(rows, 2) == list(range(40, 45))
        assert paginate(rows, 0, page_size=10) == list(range(10))

    def test_walk_preorder(self):
        roots = sort_tree(build_tree(sample()))
        assert [n.item.id for n in walk(roots)] == [1, 2, 3, 10, 5, 4, 6]
