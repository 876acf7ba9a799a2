import re
from enum import Enum

from ast_nodes import Format, Item, BinOp, Loop, is_ref
from errors import MatchError, TypingError
from matcher import match_format

INT_RE = re.compile(r"^-?\d+$")
FLOAT_RE = re.compile(r"^-?\d+(\.\d+)?$")


class VarType(Enum):
    INT = "int"
    INDEX_INT = "index_int"
    FLOAT = "float"
    CHAR = "char"
    STRING = "string"
    QUERY = "query"


def classify(value) -> VarType:
    if not isinstance(value, str):
        raise TypingError(f"Unknown value type: {value!r}")
    if INT_RE.match(value):
        return VarType.INT
    if FLOAT_RE.match(value):
        return VarType.FLOAT
    if len(value) == 1:
        return VarType.CHAR
    return VarType.STRING


def unify(t1: VarType, t2: VarType) -> VarType:
    if t1 == t2:
        return t1
    if VarType.STRING in (t1, t2):
        return VarType.STRING
    # char only unifies with char
    if VarType.CHAR in (t1, t2):
        return VarType.STRING
    pair = {t1, t2}
    if pair == {VarType.INDEX_INT, VarType.INT}:
        return VarType.INT
    if pair == {VarType.INDEX_INT, VarType.FLOAT} or pair == {VarType.INT, VarType.FLOAT}:
        return VarType.FLOAT
    return VarType.STRING


def unify_all(types):
    result = None
    for t in types:
        result = t if result is None else unify(result, t)
    return result


def types_from_env(env) -> dict:
    types = {}
    for name, value in env.items():
        values = list(value.values()) if isinstance(value, dict) else [value]
        if not values:
            raise TypingError(f"Failed to infer type: {name} has no values")
        types[name] = unify_all(classify(v) for v in values)
    return types


def merge_types(t1: dict, t2: dict) -> dict:
    merged = dict(t1)
    for name, t in t2.items():
        merged[name] = unify(merged[name], t) if name in merged else t
    return merged


# ---------- COLLAPSE FALLBACK ----------
def collapsible_position(loop: Loop):
    """Index position of the loop variable when the loop is a single-item read."""
    if len(loop.body) != 1 or not isinstance(loop.body[0], Item):
        return None
    item = loop.body[0]
    positions = [j for j, idx in enumerate(item.indices) if is_ref(idx, loop.var)]
    if len(positions) != 1:
        return None
    return positions[0]


def collapse_loops(tree: Format):
    """S_1 S_2 ... S_N read as one token: replace such loops by a single read.

    Top-down, so in a grid only the innermost row loop collapses.
    """
    collapsed = set()

    def rewrite(node):
        if not isinstance(node, Loop):
            return node
        position = collapsible_position(node)
        if position is not None:
            item = node.body[0]
            indices = item.indices[:position] + item.indices[position + 1:]
            collapsed.add(item.name)
            return Item(item.name, indices)
        return Loop(node.var, node.start, node.end, [rewrite(c) for c in node.body])

    new_tree = Format([rewrite(c) for c in tree.children])
    return new_tree, collapsed


# ---------- INDEX VARIABLES ----------
def index_names(tree: Format) -> set:
    """Names used inside loop bounds or index expressions."""
    names = set()
    loop_vars = set()

    def collect(expr):
        if isinstance(expr, Item):
            names.add(expr.name)
            for idx in expr.indices:
                collect(idx)
        elif isinstance(expr, BinOp):
            collect(expr.left)
            collect(expr.right)

    def visit(node):
        if isinstance(node, Item):
            for idx in node.indices:
                collect(idx)
        elif isinstance(node, Loop):
            loop_vars.add(node.var)
            collect(node.start)
            collect(node.end)
            for child in node.body:
                visit(child)

    for child in tree.children:
        visit(child)
    return names - loop_vars


def mark_index_types(tree: Format, types: dict) -> dict:
    marked = dict(types)
    for name in index_names(tree):
        t = marked.get(name)
        if t is None:
            continue
        if t in (VarType.INT, VarType.INDEX_INT):
            marked[name] = VarType.INDEX_INT
        else:
            raise TypingError(f"{name} is used as an index but its values are {t.value}")
    return marked


def annotate(tree: Format, types: dict) -> Format:
    """Copy of tree with every item tagged with its inferred type."""

    def copy(node):
        if isinstance(node, Item):
            tagged = Item(node.name, [copy(i) for i in node.indices], types.get(node.name))
            tagged.line = node.line
            return tagged
        if isinstance(node, BinOp):
            return BinOp(node.op, copy(node.left), copy(node.right))
        if isinstance(node, Loop):
            loop = Loop(node.var, copy(node.start), copy(node.end), [copy(c) for c in node.body])
            loop.line = node.line
            return loop
        return node

    return Format([copy(c) for c in tree.children])


class InferenceResult:
    def __init__(self, types, collapsed, tree):
        self.types = types          # name -> VarType
        self.collapsed = collapsed  # names whose loop was collapsed
        self.tree = tree            # the tree the samples actually matched


class TypeInferencer:
    def __init__(self, trace=False):
        self.trace = trace

    def _trace(self, message):
        if self.trace:
            print(f"TRACE typing: {message}")

    def infer_with(self, tree: Format, instances):
        final = None
        for n, instance in enumerate(instances):
            types = types_from_env(match_format(tree, instance))
            self._trace(f"instance {n}: {({k: v.value for k, v in types.items()})}")
            final = types if final is None else merge_types(final, types)
        return final or {}

    def infer(self, tree: Format, instances) -> InferenceResult:
        if not instances:
            return InferenceResult({}, set(), tree)

        try:
            types = self.infer_with(tree, instances)
            return InferenceResult(mark_index_types(tree, types), set(), tree)
        except MatchError as original:
            collapsed_tree, collapsed = collapse_loops(tree)
            if not collapsed:
                raise
            self._trace(f"match failed ({original}); retrying with {sorted(collapsed)} collapsed")
            try:
                types = self.infer_with(collapsed_tree, instances)
            except MatchError:
                raise original from None
            return InferenceResult(mark_index_types(collapsed_tree, types), collapsed, collapsed_tree)


def infer_types(tree: Format, instances, trace=False) -> InferenceResult:
    return TypeInferencer(trace=trace).infer(tree, instances)
