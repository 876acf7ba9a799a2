from ast_nodes import (
    Format, Item, Number, BinOp, Loop,
    Dots, VDots, Break,
    RawMarker, is_ellipsis, same_node, same_nodes, names_in,
)

# Tried in order; when all are taken the first one is reused.
LOOP_VARIABLE_CANDIDATES = ("i", "j", "k", "l", "m")


def choose_loop_variable(used, candidates=LOOP_VARIABLE_CANDIDATES):
    for name in candidates:
        if name not in used:
            return name
    return candidates[0]


def substitute_index(node, position, var, other=None):
    """Copy of node with index `position` of every item replaced by Item(var).

    Loop bounds are rewritten only where they differ from the matching loop
    in `other` (K_1 vs K_N); equal bounds are kept as written.
    """
    if isinstance(node, Item):
        indices = list(node.indices)
        indices[position] = Item(var)
        return Item(node.name, indices)
    if isinstance(node, Loop):
        start, end = node.start, node.end
        if other is not None and not same_node(start, other.start):
            start = substitute_index(start, position, var)
        if other is not None and not same_node(end, other.end):
            end = substitute_index(end, position, var)
        others = other.body if other is not None else [None] * len(node.body)
        body = [substitute_index(c, position, var, o) for c, o in zip(node.body, others)]
        return Loop(node.var, start, end, body)
    raise TypeError(f"cannot substitute into {node.__class__.__name__}")


def instantiate(node, var, value):
    """Copy of node with every bare reference to `var` replaced by Number(value)."""
    if isinstance(node, Item):
        if node.name == var and not node.indices:
            return Number(value)
        return Item(node.name, [instantiate(i, var, value) for i in node.indices])
    if isinstance(node, BinOp):
        return BinOp(node.op, instantiate(node.left, var, value), instantiate(node.right, var, value))
    if isinstance(node, Loop):
        return Loop(
            node.var,
            instantiate(node.start, var, value),
            instantiate(node.end, var, value),
            [instantiate(c, var, value) for c in node.body],
        )
    return node


class Analyzer:
    def __init__(self, candidates=LOOP_VARIABLE_CANDIDATES):
        self.candidates = tuple(candidates)

    def analyze(self, root: Format) -> Format:
        statements = [s for s in root.children if not isinstance(s, Break)]
        statements = self.flatten_scalars(statements)

        # rows written with "..." become loops before "⋮" folds the rows
        statements = self.fold(statements, Dots)
        statements = self.fold(statements, VDots)

        # an ellipsis that never became a loop no longer shields its neighbours
        statements = [s for s in statements if not isinstance(s, RawMarker)]
        return Format(self.flatten_scalars(statements))

    # ---------- SCALAR FLATTENING ----------
    def flatten_scalars(self, statements):
        shapes = {}  # name -> bool (every reference is name_<number>)

        def visit(node):
            if isinstance(node, Item):
                ok = len(node.indices) == 1 and isinstance(node.indices[0], Number)
                shapes[node.name] = shapes.get(node.name, True) and ok
                for idx in node.indices:
                    visit(idx)
            elif isinstance(node, BinOp):
                visit(node.left)
                visit(node.right)
            elif isinstance(node, Loop):
                visit(node.start)
                visit(node.end)
                for child in node.body:
                    visit(child)

        for stmt in statements:
            visit(stmt)

        # a reference next to an ellipsis is a sequence element, not a constant
        for pos, stmt in enumerate(statements):
            if not isinstance(stmt, Item):
                continue
            before = statements[pos - 1] if pos > 0 else None
            after = statements[pos + 1] if pos + 1 < len(statements) else None
            if is_ellipsis(before) or is_ellipsis(after):
                shapes[stmt.name] = False

        existing = set(shapes)
        renames = {}
        for name, ok in shapes.items():
            if not ok:
                continue
            targets = set()
            for stmt in statements:
                self._collect_flat_names(stmt, name, targets)
            if targets & existing:
                continue
            renames[name] = True

        if not renames:
            return statements
        return [self._flatten(stmt, renames) for stmt in statements]

    def _collect_flat_names(self, node, name, out):
        if isinstance(node, Item):
            if node.name == name:
                out.add(f"{name}{node.indices[0].value}")
            for idx in node.indices:
                self._collect_flat_names(idx, name, out)
        elif isinstance(node, BinOp):
            self._collect_flat_names(node.left, name, out)
            self._collect_flat_names(node.right, name, out)
        elif isinstance(node, Loop):
            for child in [node.start, node.end] + node.body:
                self._collect_flat_names(child, name, out)

    def _flatten(self, node, renames):
        if isinstance(node, Item):
            if node.name in renames:
                flat = Item(f"{node.name}{node.indices[0].value}")
                flat.line = node.line
                return flat
            if not node.indices:
                return node
            copy = Item(node.name, [self._flatten(i, renames) for i in node.indices])
            copy.line = node.line
            return copy
        if isinstance(node, BinOp):
            return BinOp(node.op, self._flatten(node.left, renames), self._flatten(node.right, renames))
        if isinstance(node, Loop):
            return Loop(
                node.var,
                self._flatten(node.start, renames),
                self._flatten(node.end, renames),
                [self._flatten(c, renames) for c in node.body],
            )
        return node

    # ---------- LOOP DETECTION ----------
    def fold(self, statements, marker):
        out = []  # output buffer; loop building only looks at its last K entries
        pos = 0
        while pos < len(statements):
            node = statements[pos]
            if isinstance(node, marker):
                found = self.detect_loop(out, statements, pos)
                if found is not None:
                    k, loop = found
                    del out[len(out) - k:]
                    loop = self.extend_loop(out, loop, k)
                    out.append(loop)
                    pos += k + 1
                    continue
            out.append(node)
            pos += 1
        return out

    def detect_loop(self, out, statements, dots_pos):
        k = 1
        while k <= len(out) and dots_pos + k < len(statements):
            left = out[len(out) - k:]
            right = statements[dots_pos + 1 : dots_pos + 1 + k]
            loop = self.build_loop(left, right)
            if loop is not None:
                return k, loop
            k += 1
        return None

    def item_pairs(self, left, right):
        """Flatten a (left, right) statement pair into corresponding item pairs."""
        if isinstance(left, Item) and isinstance(right, Item):
            if left.name != right.name:
                return None
            return [(left, right)]

        if isinstance(left, Loop) and isinstance(right, Loop):
            if left.var != right.var or len(left.body) != len(right.body):
                return None
            pairs = []
            # K_1 A_{1,1} ... A_{1,K_1}: a bound may vary like an index
            for a, b in ((left.start, right.start), (left.end, right.end)):
                if same_node(a, b):
                    continue
                if not isinstance(a, Item) or not isinstance(b, Item) or a.name != b.name:
                    return None
                pairs.append((a, b))
            for l, r in zip(left.body, right.body):
                sub = self.item_pairs(l, r)
                if sub is None:
                    return None
                pairs.extend(sub)
            return pairs

        return None

    def build_loop(self, left, right):
        pairs = []
        for l, r in zip(left, right):
            sub = self.item_pairs(l, r)
            if sub is None:
                return None
            pairs.extend(sub)
        if not pairs:
            return None

        first_l, first_r = pairs[0]
        if len(first_l.indices) != len(first_r.indices):
            return None
        differing = [
            j for j, (a, b) in enumerate(zip(first_l.indices, first_r.indices))
            if not same_node(a, b)
        ]
        if len(differing) != 1:
            return None
        position = differing[0]

        for l, r in pairs[1:]:
            if len(l.indices) != len(r.indices) or len(l.indices) <= position:
                return None
            for j, (a, b) in enumerate(zip(l.indices, r.indices)):
                if j != position and not same_node(a, b):
                    return None

        start = first_l.indices[position]
        end = first_r.indices[position]

        used = set()
        for node in [start, end] + list(left) + list(right):
            names_in(node, used)
        var = choose_loop_variable(used, self.candidates)

        body = [substitute_index(stmt, position, var, other) for stmt, other in zip(left, right)]
        loop = Loop(var, start, end, body)
        loop.line = getattr(left[0], "line", None)
        return loop

    # ---------- LOOP EXTENSION ----------
    def extend_loop(self, out, loop, k):
        # a_1 a_2 a_3 ... a_n: the loop found at the dots starts at 3; pull
        # the explicit leading elements back into it
        while isinstance(loop.start, Number) and len(out) >= k:
            previous = loop.start.value - 1
            expected = [instantiate(stmt, loop.var, previous) for stmt in loop.body]
            if not same_nodes(out[len(out) - k:], expected):
                break
            del out[len(out) - k:]
            extended = Loop(loop.var, Number(previous), loop.end, loop.body)
            extended.line = loop.line
            loop = extended
        return loop


def analyze(raw: Format) -> Format:
    return Analyzer().analyze(raw)
