from ast_nodes import Format, Item, Number, BinOp, Loop
from errors import MatchError


def eval_expr(node, env) -> int:
    """Evaluate an index or bound expression with integer semantics."""
    if isinstance(node, Number):
        return node.value

    if isinstance(node, Item):
        if node.name not in env:
            raise MatchError(f"Variable {node.name} not found in environment during evaluation")
        value = env[node.name]
        if isinstance(value, dict):
            if not node.indices:
                raise MatchError(f"{node.name} is an array and cannot be used as a scalar")
            key = ",".join(str(eval_expr(i, env)) for i in node.indices)
            if key not in value:
                raise MatchError(f"{node.name}[{key}] has not been read yet")
            value = value[key]
        elif node.indices:
            raise MatchError(f"{node.name} is a scalar but is indexed")
        if isinstance(value, int):
            return value
        try:
            return int(value)
        except ValueError:
            raise MatchError(f"{node.name} = {value!r} is not an integer") from None

    if isinstance(node, BinOp):
        left = eval_expr(node.left, env)
        right = eval_expr(node.right, env)
        if node.op == "+":
            return left + right
        if node.op == "-":
            return left - right
        if node.op == "*":
            return left * right
        if node.op == "/":
            if right == 0:
                raise MatchError("Division by zero in index expression")
            return left // right
        raise MatchError(f"Unknown operator {node.op}")

    raise MatchError(f"Unknown node type for evaluation: {node.__class__.__name__}")


class Matcher:
    def __init__(self, tree: Format, text: str):
        self.tree = tree
        self.tokens = text.split()
        self.pos = 0
        self.env = {}

    def consume(self) -> str:
        if self.pos >= len(self.tokens):
            raise MatchError(f"Unexpected end of input after {self.pos} tokens")
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    @property
    def consumed(self) -> int:
        return self.pos

    def run(self):
        for child in self.tree.children:
            self.visit(child, {})
        return self.env

    def visit(self, node, bindings):
        if isinstance(node, Item):
            self.read_item(node, bindings)
            return

        if isinstance(node, Loop):
            scope = {**self.env, **bindings}
            start = eval_expr(node.start, scope)
            end = eval_expr(node.end, scope)
            # inclusive, ascending, unit step; an empty range reads nothing
            for value in range(start, start + max(0, end - start + 1)):
                inner = {**bindings, node.var: value}
                for child in node.body:
                    self.visit(child, inner)
            return

        raise MatchError(f"Cannot match node {node.__class__.__name__}")

    def read_item(self, item, bindings):
        value = self.consume()

        if not item.indices:
            if isinstance(self.env.get(item.name), dict):
                raise MatchError(f"{item.name} is read both as an array and as a scalar")
            self.env[item.name] = value
            return

        scope = {**self.env, **bindings}
        key = ",".join(str(eval_expr(i, scope)) for i in item.indices)
        table = self.env.setdefault(item.name, {})
        if not isinstance(table, dict):
            raise MatchError(f"{item.name} is read both as a scalar and as an array")
        table[key] = value


def match_format(tree: Format, text: str):
    return Matcher(tree, text).run()
