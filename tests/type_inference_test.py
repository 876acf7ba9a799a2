import itertools

import pytest

from analyzer import analyze
from ast_nodes import Format, Item, Number, Loop, same_node
from errors import MatchError, TypingError
from parser import parse_format
from type_inference import (
    VarType, classify, unify, unify_all, infer_types, collapse_loops, mark_index_types, annotate,
)

ALL = list(VarType)


def normalized(text):
    return analyze(parse_format(text).tree)


def test_classify():
    for value, expected in [
        ("42", VarType.INT),
        ("-7", VarType.INT),
        ("3.14", VarType.FLOAT),
        ("x", VarType.CHAR),
        ("abc", VarType.STRING),
        ("1e5", VarType.STRING),
    ]:
        out = classify(value)
        if out != expected:
            raise AssertionError(f"{value!r} should be {expected}.\nOUT:\n{out}")
    with pytest.raises(TypingError):
        classify(5)


def test_unify_table():
    for a, b, expected in [
        (VarType.INT, VarType.INT, VarType.INT),
        (VarType.INDEX_INT, VarType.INT, VarType.INT),
        (VarType.INT, VarType.FLOAT, VarType.FLOAT),
        (VarType.INDEX_INT, VarType.FLOAT, VarType.FLOAT),
        (VarType.CHAR, VarType.INT, VarType.STRING),
        (VarType.CHAR, VarType.CHAR, VarType.CHAR),
        (VarType.STRING, VarType.FLOAT, VarType.STRING),
    ]:
        out = unify(a, b)
        if out != expected:
            raise AssertionError(f"unify({a}, {b}) should be {expected}.\nOUT:\n{out}")


def test_unify_is_commutative_and_associative():
    for a, b in itertools.product(ALL, repeat=2):
        if unify(a, b) != unify(b, a):
            raise AssertionError(f"Not commutative for {a}, {b}.\nOUT:\n{unify(a, b)} {unify(b, a)}")
    for a, b, c in itertools.product(ALL, repeat=3):
        left, right = unify(unify(a, b), c), unify(a, unify(b, c))
        if left != right:
            raise AssertionError(f"Not associative for {a}, {b}, {c}.\nOUT:\n{left} {right}")


def test_unify_all_ignores_order():
    values = ["1", "2", "3.5", "4"]
    forward = unify_all(classify(v) for v in values)
    backward = unify_all(classify(v) for v in reversed(values))
    if not forward == backward == VarType.FLOAT:
        raise AssertionError(f"Expected FLOAT both ways.\nOUT:\n{forward} {backward}")


def test_scalars_across_instances():
    result = infer_types(Format([Item("N"), Item("S")]), ["1 a", "2.5 bc"])
    if result.types != {"N": VarType.FLOAT, "S": VarType.STRING} or result.collapsed:
        raise AssertionError(f"Expected N float, S string.\nOUT:\n{result.types} {result.collapsed}")


def test_bounds_are_index_ints():
    result = infer_types(normalized("N\na_1 a_2 a_3 … a_N"), ["4\n1 2 3 4"])
    if result.types != {"N": VarType.INDEX_INT, "a": VarType.INT}:
        raise AssertionError(f"Expected N as an index.\nOUT:\n{result.types}")


def test_row_lengths_are_index_ints():
    tree = normalized("N\nK_1 A_{1,1} … A_{1,K_1}\n⋮\nK_N A_{N,1} … A_{N,K_N}")
    result = infer_types(tree, ["2\n3 1 2 3\n1 5\n"])
    expected = {"N": VarType.INDEX_INT, "K": VarType.INDEX_INT, "A": VarType.INT}
    if result.types != expected:
        raise AssertionError(f"Expected K as an index.\nOUT:\n{result.types}")


def test_collapse_when_elements_share_one_token():
    result = infer_types(normalized("N\nS_1 S_2 … S_N"), ["3\nabc"])
    names = [c.name for c in result.tree.children]
    if result.collapsed != {"S"} or names != ["N", "S"]:
        raise AssertionError(f"Expected S collapsed.\nOUT:\n{result.collapsed} {result.tree.children}")
    if result.types != {"N": VarType.INT, "S": VarType.STRING}:
        raise AssertionError(f"Expected S as a string.\nOUT:\n{result.types}")


def test_collapse_keeps_outer_loop_of_a_grid():
    inner = Loop("j", Number(1), Item("W"), [Item("S", [Item("i"), Item("j")])])
    tree = Format([Item("H"), Item("W"), Loop("i", Number(1), Item("H"), [inner])])
    collapsed, names = collapse_loops(tree)
    outer = collapsed.children[2]
    if names != {"S"} or not isinstance(outer, Loop) or outer.var != "i":
        raise AssertionError(f"Expected the row loop to survive.\nOUT:\n{collapsed.children}")
    if outer.body[0].name != "S" or len(outer.body[0].indices) != 1:
        raise AssertionError(f"Expected S_i inside the row loop.\nOUT:\n{outer!r}")


def test_original_error_is_kept():
    with pytest.raises(MatchError):
        infer_types(Format([Item("N"), Item("M")]), ["1"])


def test_no_instances():
    result = infer_types(Format([Item("N")]), [])
    if result.types != {}:
        raise AssertionError(f"Nothing to infer from.\nOUT:\n{result.types}")


def test_fractional_index_variable():
    tree = Format([Item("N"), Loop("i", Number(1), Item("N"), [Item("a", [Item("i")])])])
    with pytest.raises(TypingError):
        mark_index_types(tree, {"N": VarType.FLOAT, "a": VarType.INT})


def test_items_are_tagged_with_their_type():
    tree = normalized("N\na_1 a_2 a_3 … a_N")
    result = infer_types(tree, ["4\n1 2 3 4"])
    tagged = annotate(result.tree, result.types)
    n, loop = tagged.children
    if n.var_type != VarType.INDEX_INT or loop.body[0].var_type != VarType.INT:
        raise AssertionError(f"Expected N index_int and a int.\nOUT:\n{n.var_type} {loop.body[0].var_type}")
    if loop.body[0].indices[0].var_type is not None:
        raise AssertionError(f"A loop variable has no type.\nOUT:\n{loop.body[0].indices[0].var_type}")
    if not same_node(tagged, tree) or tree.children[0].var_type is not None:
        raise AssertionError(f"Tagging must copy, not change, the tree.\nOUT:\n{tree.children}")


if __name__ == "__main__":
    test_classify()
    test_unify_table()
    test_unify_is_commutative_and_associative()
    test_unify_all_ignores_order()
    test_scalars_across_instances()
    test_bounds_are_index_ints()
    test_row_lengths_are_index_ints()
    test_collapse_when_elements_share_one_token()
    test_collapse_keeps_outer_loop_of_a_grid()
    test_original_error_is_kept()
    test_no_instances()
    test_fractional_index_variable()
    test_items_are_tagged_with_their_type()
    print("ok")
