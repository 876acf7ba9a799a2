from analyzer import Analyzer, analyze, choose_loop_variable
from ast_nodes import Format, Item, Number, BinOp, Loop, RawMarker, same_node
from parser import parse_format

ROWS_WITH_COUNTS = "N\nK_1 A_{1,1} … A_{1,K_1}\n⋮\nK_N A_{N,1} … A_{N,K_N}"


def normalized(text):
    return analyze(parse_format(text).tree)


def expect_tree(text, expected):
    tree = normalized(text)
    if not same_node(tree, expected):
        raise AssertionError(f"Unexpected tree for {text!r}.\nOUT:\n{tree.children}")
    return tree


def test_horizontal_sequence_becomes_one_loop():
    expect_tree(
        "N\na_1 a_2 a_3 … a_N",
        Format([Item("N"), Loop("i", Number(1), Item("N"), [Item("a", [Item("i")])])]),
    )


def test_loop_extension_is_maximal():
    tree = normalized("a_1 a_2 a_3 a_4 … a_n")
    if len(tree.children) != 1 or not same_node(tree.children[0].start, Number(1)):
        raise AssertionError(f"Expected one loop from 1.\nOUT:\n{tree.children}")


def test_loop_variable_avoids_identifiers_in_bounds():
    loop = normalized("A_i … A_N").children[0]
    if loop.var != "j" or not same_node(loop.start, Item("i")):
        raise AssertionError(f"Expected a loop over j from i.\nOUT:\n{loop!r}")
    if not same_node(loop.body[0], Item("A", [Item("j")])):
        raise AssertionError(f"Expected body A_j.\nOUT:\n{loop!r}")


def test_candidates_run_out():
    for used, candidates, expected in [
        ({"i", "j"}, None, "k"),
        ({"i", "j", "k", "l", "m"}, None, "i"),
        ({"x"}, ("x", "y"), "y"),
    ]:
        out = choose_loop_variable(used) if candidates is None else choose_loop_variable(used, candidates)
        if out != expected:
            raise AssertionError(f"Expected {expected} with {sorted(used)} taken.\nOUT:\n{out}")


def test_vertical_rows_of_several_items():
    expect_tree(
        "N\nA_1 B_1\nA_2 B_2\n⋮\nA_N B_N",
        Format([
            Item("N"),
            Loop("i", Number(1), Item("N"), [Item("A", [Item("i")]), Item("B", [Item("i")])]),
        ]),
    )


def test_grid_folds_into_nested_loops():
    h_minus_1 = BinOp("-", Item("H"), Number(1))
    w_minus_1 = BinOp("-", Item("W"), Number(1))
    inner = Loop("i", Number(0), w_minus_1, [Item("C", [Item("j"), Item("i")])])
    expect_tree(
        "H W\nC_{0,0} … C_{0,W-1}\n⋮\nC_{H-1,0} … C_{H-1,W-1}",
        Format([Item("H"), Item("W"), Loop("j", Number(0), h_minus_1, [inner])]),
    )


def test_rows_that_start_with_their_length():
    inner = Loop("i", Number(1), Item("K", [Item("j")]), [Item("A", [Item("j"), Item("i")])])
    expect_tree(
        ROWS_WITH_COUNTS,
        Format([Item("N"), Loop("j", Number(1), Item("N"), [Item("K", [Item("j")]), inner])]),
    )


def test_rows_with_unrelated_lengths_stay_apart():
    tree = normalized("N\nA_{1,1} … A_{1,M}\n⋮\nA_{N,1} … A_{N,L}")
    if any(isinstance(c, Loop) and isinstance(c.body[0], Loop) for c in tree.children):
        raise AssertionError(f"Rows bounded by M and L must not fold.\nOUT:\n{tree.children}")


def test_constant_subscripts_are_flattened():
    tree = normalized("A_1 A_2")
    names = [c.name for c in tree.children]
    if names != ["A1", "A2"] or any(c.indices for c in tree.children):
        raise AssertionError(f"Expected scalars A1 A2.\nOUT:\n{tree.children}")


def test_flattening_skips_name_collisions():
    tree = normalized("A1 A_1")
    if not same_node(tree.children[1], Item("A", [Number(1)])):
        raise AssertionError(f"A_1 must stay indexed next to A1.\nOUT:\n{tree.children}")


def test_ellipsis_that_never_folds_does_not_block_flattening():
    expect_tree("N\nA_1 A_2 …", Format([Item("N"), Item("A1"), Item("A2")]))


def test_analysis_is_idempotent():
    for text in [
        "N\na_1 a_2 a_3 … a_N",
        "N\nA_1 B_1\nA_2 B_2\n⋮\nA_N B_N",
        "H W\nC_{0,0} … C_{0,W-1}\n⋮\nC_{H-1,0} … C_{H-1,W-1}",
        "N M\nX_1 X_2",
        "N\nA_1 A_2 …",
        "N\n…\nA_1 ⋮",
        ROWS_WITH_COUNTS,
    ]:
        once = normalized(text)
        twice = Analyzer().analyze(once)
        if not same_node(once, twice):
            raise AssertionError(f"Second pass changed {text!r}.\nOUT:\n{once.children}\n{twice.children}")


def test_no_markers_survive():
    tree = normalized("N\n…\nA_1 ⋮")

    def walk(nodes):
        for n in nodes:
            if isinstance(n, RawMarker):
                raise AssertionError(f"Marker left in the tree.\nOUT:\n{tree.children}")
            if isinstance(n, Loop):
                walk(n.body)

    walk(tree.children)


if __name__ == "__main__":
    test_horizontal_sequence_becomes_one_loop()
    test_loop_extension_is_maximal()
    test_loop_variable_avoids_identifiers_in_bounds()
    test_candidates_run_out()
    test_vertical_rows_of_several_items()
    test_grid_folds_into_nested_loops()
    test_rows_that_start_with_their_length()
    test_rows_with_unrelated_lengths_stay_apart()
    test_constant_subscripts_are_flattened()
    test_flattening_skips_name_collisions()
    test_ellipsis_that_never_folds_does_not_block_flattening()
    test_analysis_is_idempotent()
    test_no_markers_survive()
    print("ok")
