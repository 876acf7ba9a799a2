class ASTNode:
    # Optional source line (1-based). Parser may set this.
    line: int | None = None


# ---------- NORMALIZED NODES ----------
# These are the only node kinds left after the Analyzer runs.

class Format(ASTNode):
    def __init__(self, children):
        self.children = children  # list of Item | Loop (raw tree: also markers)


class Item(ASTNode):
    def __init__(self, name, indices=None, var_type=None):
        self.name = name
        self.indices = list(indices or [])  # list[expr], empty for scalars
        self.var_type = var_type            # VarType once typed; ignored by same_node

    def __repr__(self):
        if not self.indices:
            return f"Item({self.name})"
        return f"Item({self.name}, {self.indices!r})"


class Number(ASTNode):
    def __init__(self, value: int):
        self.value = value

    def __repr__(self):
        return f"Number({self.value})"


class BinOp(ASTNode):
    def __init__(self, op, left, right):
        self.op = op        # one of + - * /
        self.left = left
        self.right = right

    def __repr__(self):
        return f"BinOp({self.left!r} {self.op} {self.right!r})"


class Loop(ASTNode):
    def __init__(self, var, start, end, body):
        self.var = var      # induction variable name
        self.start = start  # expr, inclusive
        self.end = end      # expr, inclusive
        self.body = body    # list of Item | Loop

    def __repr__(self):
        return f"Loop({self.var}, {self.start!r}..{self.end!r}, {self.body!r})"


# ---------- RAW-ONLY MARKERS ----------
# Produced by the Parser, consumed by the Analyzer.

class RawMarker(ASTNode):
    def __repr__(self):
        return self.__class__.__name__


class Dots(RawMarker):
    pass


class VDots(RawMarker):
    pass


class Break(RawMarker):
    pass


def is_ellipsis(node) -> bool:
    return isinstance(node, (Dots, VDots))


def same_node(a, b) -> bool:
    """Deep structural equality over normalized nodes."""
    if type(a) is not type(b):
        return False
    if isinstance(a, Number):
        return a.value == b.value
    if isinstance(a, Item):
        return a.name == b.name and same_nodes(a.indices, b.indices)
    if isinstance(a, BinOp):
        return a.op == b.op and same_node(a.left, b.left) and same_node(a.right, b.right)
    if isinstance(a, Loop):
        return (
            a.var == b.var
            and same_node(a.start, b.start)
            and same_node(a.end, b.end)
            and same_nodes(a.body, b.body)
        )
    if isinstance(a, Format):
        return same_nodes(a.children, b.children)
    # markers carry no data
    return isinstance(a, RawMarker)


def same_nodes(xs, ys) -> bool:
    if len(xs) != len(ys):
        return False
    return all(same_node(x, y) for x, y in zip(xs, ys))


def names_in(node, out=None) -> set:
    """Every identifier mentioned by node: item names, nested indices, loop variables."""
    if out is None:
        out = set()
    if isinstance(node, Item):
        out.add(node.name)
        for idx in node.indices:
            names_in(idx, out)
    elif isinstance(node, BinOp):
        names_in(node.left, out)
        names_in(node.right, out)
    elif isinstance(node, Loop):
        out.add(node.var)
        names_in(node.start, out)
        names_in(node.end, out)
        for child in node.body:
            names_in(child, out)
    elif isinstance(node, Format):
        for child in node.children:
            names_in(child, out)
    return out


def is_ref(node, name) -> bool:
    # bare reference: Item(name) with no indices
    return isinstance(node, Item) and node.name == name and not node.indices
