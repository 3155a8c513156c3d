import asyncio

from weaver.builder import Builder
from weaver.resolve import MapAccumulator, Resolver, flags_key, is_visible
from weaver.sourcemap import Mapping, SourceMapGenerator
from weaver.tree import Code, Conditional, LabelScope, Root, Unit


def tree(text, tmp_path, **kw):
    builder = Builder({}, cwd=str(tmp_path), **kw)
    return asyncio.run(builder.build_text("<t>", text, str(tmp_path)))


def test_visibility():
    cond = Conditional(line=1, flag="ie", op="gt", value=6)
    assert is_visible(cond, set(), {"ie": 7})
    assert not is_visible(cond, set(), {"ie": 6})
    cond.negate = True
    assert is_visible(cond, set(), {"ie": 6})
    label = LabelScope(line=1, name="x")
    assert is_visible(label, set(), {})
    assert is_visible(label, {"x", "y"}, {})
    assert not is_visible(label, {"y"}, {})
    assert is_visible(Root(line=0), {"y"}, {})


def test_flags_key_is_order_independent():
    assert flags_key({"b": 1, "a": True}) == flags_key({"a": True, "b": 1})
    assert flags_key({"a": 1}) != flags_key({"a": "1"})


def test_flags_mutate_in_place(tmp_path):
    unit = tree("//#set a 1\n//#unset b\n", tmp_path)
    flags = {"b": True}
    assert Resolver().resolve(unit, (), flags) == ""
    assert flags == {"a": 1}


def test_false_branch_is_not_entered(tmp_path):
    unit = tree("//#if off\n//#set a 1\nhidden\n//#endif\n//#if a\nA\n//#endif\n", tmp_path)
    flags = {}
    assert Resolver().resolve(unit, (), flags) == ""
    assert flags == {}
    hidden = unit.root.children[0].children[1]
    assert not hidden.consumed


def test_nested_scopes_short_circuit(tmp_path):
    text = "//#label x\n//#if on\nX\n//#endif\n//#endlabel\n"
    assert Resolver().resolve(tree(text, tmp_path), {"y"}, {"on": True}) == ""
    assert Resolver().resolve(tree(text, tmp_path), {"x"}, {"on": True}) == "X\n"


def test_code_is_emitted_once(tmp_path):
    unit = tree("a\nb\n", tmp_path)
    resolver = Resolver()
    assert resolver.resolve(unit, (), {}) == "a\nb\n"
    assert resolver.resolve(unit, (), {}) == ""


def test_accumulator_shifts_to_cursor():
    gen = SourceMapGenerator()
    acc = MapAccumulator(gen)
    acc.register([Mapping(1, 0, "a", 1, 0, source_content="A")])
    acc.register([])
    acc.register([Mapping(7, 0, "b", 3, 0, source_content="B"),
                  Mapping(7, 4, "b", 3, 8, source_content="B2")])
    assert acc.cursor == 4
    assert gen.mappings == [
        Mapping(1, 0, "a", 1, 0),
        Mapping(3, 0, "b", 3, 0),
        Mapping(3, 4, "b", 3, 8),
    ]
    assert gen.to_dict()["sourcesContent"] == ["A", "B"]


def test_resolver_feeds_accumulator(tmp_path):
    unit = tree("a\n//#if off\nb\n//#endif\nc\n", tmp_path, source_maps=True)
    acc = MapAccumulator(SourceMapGenerator())
    assert Resolver(acc).resolve(unit, (), {}) == "a\nc\n"
    assert [(m.generated_line, m.original_line) for m in acc.generator.mappings] == [(1, 1), (2, 5)]


def test_unit_labels_widen_selection():
    unit = Unit(key="<u>", directory=".", defaults={})
    unit.root.labels.add("x")
    scope = LabelScope(line=1, name="x", children=[Code(line=2, text="X\n")])
    other = LabelScope(line=3, name="y", children=[Code(line=4, text="Y\n")])
    unit.root.children.extend([scope, other])
    assert Resolver().resolve(unit, (), {}) == "X\n"
