from types import SimpleNamespace
from unittest import TestCase, mock

from dbcore.database.Collection import Collection, collect


class TestKeySemantics(TestCase):
    def test_filter_keeps_keys_and_values_reindexes(self):
        filtered = collect([5, 10, 15]).filter(lambda n: n > 7)

        self.assertEqual(filtered.all(), {1: 10, 2: 15})
        self.assertEqual(filtered.values().all(), [10, 15])

    def test_map_keeps_string_keys(self):
        self.assertEqual(collect({"a": 1, "b": 2}).map(lambda n: n * 2).all(), {"a": 2, "b": 4})

    def test_callbacks_receive_key_when_they_ask_for_it(self):
        mapped = collect({"a": 1, "b": 2}).map(lambda value, key: f"{key}{value}")
        self.assertEqual(mapped.values().all(), ["a1", "b2"])

    def test_keys(self):
        self.assertEqual(collect({"x": 1, "y": 2}).keys().all(), ["x", "y"])

    def test_generators_get_sequential_keys(self):
        self.assertEqual(collect(n * n for n in range(3)).all(), [0, 1, 4])


class TestFirstAndLast(TestCase):
    def test_default_is_lazy(self):
        fallback = mock.Mock(return_value="fallback")

        self.assertEqual(collect([1, 2]).first(default=fallback), 1)
        fallback.assert_not_called()

        self.assertEqual(collect([]).first(default=fallback), "fallback")
        fallback.assert_called_once_with()

    def test_with_callback(self):
        items = collect([1, 2, 3, 4])
        self.assertEqual(items.first(lambda n: n > 2), 3)
        self.assertEqual(items.last(lambda n: n < 3), 2)
        self.assertEqual(items.last(), 4)
        self.assertIsNone(items.first(lambda n: n > 10))

    def test_first_where(self):
        people = collect([{"name": "Ann", "age": 30}, {"name": "Bo", "age": 20}])
        self.assertEqual(people.first_where("age", "<", 25)["name"], "Bo")


class TestStatistics(TestCase):
    def test_nulls_are_no_data(self):
        rows = collect([{"score": None}, {"score": None}])

        self.assertIsNone(rows.avg("score"))
        self.assertIsNone(rows.median("score"))
        self.assertIsNone(rows.max("score"))
        self.assertEqual(rows.sum("score"), 0)

    def test_nulls_are_skipped(self):
        rows = collect([{"score": 4}, {"score": None}, {"score": 8}])
        self.assertEqual(rows.avg("score"), 6)
        self.assertEqual(rows.min("score"), 4)

    def test_median_and_mode(self):
        self.assertEqual(collect([1, 3, 2, 4]).median(), 2.5)
        self.assertEqual(collect([1, 1, 2, 2, 3]).mode(), [1, 2])

    def test_callback_extraction(self):
        self.assertEqual(collect([1, 2, 3]).sum(lambda n: n * 10), 60)


class TestGrouping(TestCase):
    def test_group_by_key(self):
        groups = collect([
            {"team": "red", "name": "Ann"},
            {"team": "blue", "name": "Bo"},
            {"team": "red", "name": "Cy"},
        ]).group_by("team")

        self.assertEqual(groups["red"].pluck("name").all(), ["Ann", "Cy"])
        self.assertEqual(groups["blue"].pluck("name").all(), ["Bo"])

    def test_group_by_fans_out_multiple_keys(self):
        groups = collect([
            {"name": "Ann", "roles": ["admin", "editor"]},
            {"name": "Bo", "roles": ["editor"]},
        ]).group_by(lambda user: user["roles"])

        self.assertEqual(groups["admin"].pluck("name").all(), ["Ann"])
        self.assertEqual(groups["editor"].pluck("name").all(), ["Ann", "Bo"])

    def test_group_by_preserving_keys(self):
        groups = collect([10, 11, 12]).group_by(lambda n: n % 2, preserve_keys=True)

        self.assertEqual(groups[0].all(), {0: 10, 2: 12})
        self.assertEqual(groups[1].all(), {1: 11})

    def test_key_by_and_flatten(self):
        keyed = collect([{"id": 7, "v": "a"}, {"id": 9, "v": "b"}]).key_by("id")
        self.assertEqual(list(keyed.keys()), [7, 9])

        self.assertEqual(collect([1, [2, [3, [4]]]]).flatten(1).all(), [1, 2, [3, [4]]])
        self.assertEqual(collect([1, [2, [3, [4]]]]).flatten().all(), [1, 2, 3, 4])


class TestMutation(TestCase):
    def test_mutators_change_the_instance(self):
        items = collect([1, 2, 3])

        self.assertIs(items.push(4), items)
        self.assertEqual(items.pop(), 4)
        self.assertEqual(items.shift(), 1)
        self.assertIs(items.prepend(0), items)
        self.assertEqual(items.all(), [0, 2, 3])

        items.forget(0)
        self.assertEqual(items.all(), {1: 2, 2: 3})

        items.transform(lambda n: n * 10)
        self.assertEqual(items.values().all(), [20, 30])

    def test_functional_methods_leave_the_original_alone(self):
        items = collect([3, 1, 2])

        items.sort()
        items.map(lambda n: n + 1)
        items.filter(lambda n: n > 1)

        self.assertEqual(items.all(), [3, 1, 2])

    def test_put_and_pull(self):
        items = collect({"a": 1})
        items.put("b", 2)

        self.assertEqual(items.pull("a"), 1)
        self.assertEqual(items.all(), {"b": 2})
        self.assertEqual(items.pull("zzz", "none"), "none")


class TestReshaping(TestCase):
    def test_sort_keeps_keys(self):
        self.assertEqual(collect([3, 1, 2]).sort().all(), {1: 1, 2: 2, 0: 3})
        self.assertEqual(collect([3, 1, 2]).sort().values().all(), [1, 2, 3])

    def test_sort_by_with_none_first(self):
        rows = collect([{"n": 2}, {"n": None}, {"n": 1}])
        self.assertEqual(rows.sort_by("n").pluck("n").all(), [None, 1, 2])

    def test_chunk_and_take(self):
        self.assertEqual(collect([1, 2, 3, 4, 5]).chunk(2).map(lambda c: c.values().all()).all(),
                         [[1, 2], [3, 4], [5]])
        self.assertEqual(collect([1, 2, 3, 4]).take(-2).values().all(), [3, 4])

    def test_unique_and_diff(self):
        self.assertEqual(collect([1, 1, 2, 3, 3]).unique().values().all(), [1, 2, 3])
        self.assertEqual(collect([1, 2, 3, 4]).diff([2, 4]).values().all(), [1, 3])

    def test_merge(self):
        self.assertEqual(collect([1, 2]).merge([3]).all(), [1, 2, 3])
        self.assertEqual(collect({"a": 1}).merge({"a": 2, "b": 3}).all(), {"a": 2, "b": 3})

    def test_only_and_except(self):
        items = collect({"a": 1, "b": 2, "c": 3})
        self.assertEqual(items.only("a", "c").all(), {"a": 1, "c": 3})
        self.assertEqual(items.except_("a").all(), {"b": 2, "c": 3})

    def test_reduce_and_join(self):
        self.assertEqual(collect([1, 2, 3]).reduce(lambda carry, n: carry + n, 0), 6)
        self.assertEqual(collect(["a", "b", "c"]).join(", ", " and "), "a, b and c")

    def test_where_helpers(self):
        people = collect([
            SimpleNamespace(name="Ann", age=30),
            SimpleNamespace(name="Bo", age=20),
            SimpleNamespace(name="Cy", age=None),
        ])

        self.assertEqual(people.where("age", ">=", 25).pluck("name").all(), ["Ann"])
        self.assertEqual(people.where_null("age").pluck("name").all(), ["Cy"])
        self.assertEqual(people.where_in("name", ["Bo", "Cy"]).count(), 2)
        self.assertEqual(people.where_between("age", [18, 25]).pluck("name").all(), ["Bo"])


class TestConditionalsAndSerialization(TestCase):
    def test_when_passes_value(self):
        seen = []
        collect([1]).when("yes", lambda items, value: seen.append(value))
        collect([1]).unless(False, lambda items, value: seen.append(value))
        self.assertEqual(seen, ["yes", False])

    def test_when_empty(self):
        result = collect([]).when_empty(lambda items: items.push("filled"))
        self.assertEqual(result.all(), ["filled"])

    def test_to_array_recurses(self):
        nested = collect({"inner": collect([1, 2]), "plain": 3})
        self.assertEqual(nested.to_array(), {"inner": [1, 2], "plain": 3})
        self.assertEqual(nested.to_json(), '{"inner": [1, 2], "plain": 3}')

    def test_times_and_range(self):
        self.assertEqual(Collection.times(3, lambda n: n * 2).all(), [2, 4, 6])
        self.assertEqual(Collection.range(3, 1).all(), [3, 2, 1])

    def test_protocols(self):
        items = collect([1, 2])
        self.assertEqual(list(items), [1, 2])
        self.assertEqual(len(items), 2)
        self.assertIn(2, items)
        self.assertEqual(items, [1, 2])
        self.assertFalse(collect())
