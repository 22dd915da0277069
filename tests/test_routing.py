import pytest

from typeflow.workflows.engine.definitions import make_item
from typeflow.workflows.engine.nodes.configs import IfConfig, MergeConfig, SwitchConfig
from typeflow.workflows.engine.nodes.logic.if_node import route_if
from typeflow.workflows.engine.nodes.logic.merge import merge_items
from typeflow.workflows.engine.nodes.logic.switch import route_switch


def items_of(*payloads):
    return [make_item(payload) for payload in payloads]


def handles(output):
    return {handle: [item.json_data for item in items] for handle, items in output.outputs.items()}


def cond(field, operator, value):
    return {"field": field, "operator": operator, "value": value}


def test_if_true_false_split():
    config = IfConfig.model_validate({"conditions": [cond("age", "greaterThan", 18)]})
    output = route_if(config, items_of({"age": 30}, {"age": 10}))
    assert handles(output) == {"true": [{"age": 30}], "false": [{"age": 10}]}


def test_if_without_conditions_sends_everything_true():
    output = route_if(IfConfig(), items_of({"a": 1}))
    assert handles(output) == {"true": [{"a": 1}], "false": []}


def test_if_branches_first_match_wins():
    config = IfConfig.model_validate(
        {
            "branches": [
                {"id": "adult", "conditions": [cond("age", "greaterThanOrEqual", 18)]},
                {"id": "senior", "conditions": [cond("age", "greaterThanOrEqual", 65)]},
                {"id": "never"},
            ]
        }
    )
    output = route_if(config, items_of({"age": 70}, {"age": 5}))
    assert handles(output) == {"adult": [{"age": 70}], "senior": [], "never": [], "else": [{"age": 5}]}


def test_if_branches_without_else_drop_unmatched():
    config = IfConfig.model_validate(
        {"branches": [{"id": "b1", "conditions": [cond("ok", "isTrue", None)]}], "elseEnabled": False}
    )
    output = route_if(config, items_of({"ok": False}))
    assert handles(output) == {"b1": []}
    assert output.flatten() == []


def test_switch_fallback():
    config = SwitchConfig.model_validate(
        {
            "cases": [
                {"id": "red", "conditions": [cond("color", "equals", "red")]},
                {"id": "warm", "conditions": [cond("color", "equals", "red"), cond("color", "equals", "orange")], "combineWith": "or"},
            ]
        }
    )
    output = route_switch(config, items_of({"color": "red"}, {"color": "orange"}, {"color": "blue"}))
    assert handles(output) == {
        "red": [{"color": "red"}],
        "warm": [{"color": "orange"}],
        "fallback": [{"color": "blue"}],
    }


def test_switch_without_fallback_drops_unmatched():
    config = SwitchConfig.model_validate({"cases": [], "fallbackEnabled": False})
    assert handles(route_switch(config, items_of({"a": 1}))) == {}


@pytest.mark.parametrize(
    "config, expected",
    [
        ({"mode": "append"}, [{"a": 1}, {"a": 2}, {"b": 1}, {"b": 2}]),
        ({"mode": "combine", "combineMode": "mergeByPosition"}, [{"a": 1, "b": 1}, {"a": 2, "b": 2}]),
        ({"mode": "chooseBranch"}, [{"a": 1}]),
    ],
)
def test_merge_modes(config, expected):
    items = items_of({"a": 1}, {"a": 2}, {"b": 1}, {"b": 2})
    assert [item.json_data for item in merge_items(MergeConfig.model_validate(config), items)] == expected


def test_merge_by_key_later_values_win():
    items = items_of({"id": 1, "a": 1}, {"id": 2, "a": 3}, {"id": 1, "a": 9, "b": 2})
    config = MergeConfig.model_validate({"mode": "combine", "combineMode": "mergeByKey", "joinField": "id"})
    assert [item.json_data for item in merge_items(config, items)] == [
        {"id": 1, "a": 9, "b": 2},
        {"id": 2, "a": 3},
    ]
