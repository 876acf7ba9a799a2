from ast_nodes import Format, Item, BinOp, Loop, is_ref
from type_inference import VarType


class Variable:
    def __init__(self, name, type, dims, sizes, depth=0):
        self.name = name
        self.type = type    # VarType
        self.dims = dims    # 0 scalar, 1 sequence, 2 grid
        self.sizes = sizes  # one size expression per dimension
        self.depth = depth  # enclosing loops at the defining use

    def renamed(self, name):
        return Variable(name, self.type, self.dims, self.sizes, self.depth)

    def __repr__(self):
        return f"Variable({self.name}, {self.type.value}, {self.dims}, {self.sizes!r})"


class VariableExtractor:
    def __init__(self):
        self.vars = {}  # name -> {"dims", "sizes", "depth"}; insertion order = first appearance

    def extract(self, tree: Format):
        for child in tree.children:
            self.visit(child, [])
        return self

    def visit(self, node, loops):
        if isinstance(node, Loop):
            # bounds belong to the enclosing scope
            self.visit(node.start, loops)
            self.visit(node.end, loops)
            for child in node.body:
                self.visit(child, loops + [node])
            return

        if isinstance(node, BinOp):
            self.visit(node.left, loops)
            self.visit(node.right, loops)
            return

        if not isinstance(node, Item):
            return

        if any(loop.var == node.name for loop in loops):
            return

        existing = self.vars.get(node.name)
        if existing is not None and len(node.indices) <= existing["dims"]:
            return

        sizes = []
        for idx in node.indices:
            size = idx
            for loop in reversed(loops):
                if is_ref(idx, loop.var):
                    size = loop.end
                    break
            sizes.append(size)

        self.vars[node.name] = {"dims": len(node.indices), "sizes": sizes, "depth": len(loops)}

    def variables(self, types=None, collapsed=()):
        types = types or {}
        result = []
        for name, info in self.vars.items():
            dims = info["dims"]
            sizes = list(info["sizes"])
            depth = info["depth"]
            var_type = types.get(name, VarType.INT)

            if name in collapsed and dims > 0:
                dims -= 1
                sizes = sizes[:dims]
                depth = max(0, depth - 1)

            # S_{i,j} inside one loop over i with string values: j indexes characters
            if var_type == VarType.STRING and dims > depth:
                dims = depth
                sizes = sizes[:depth]

            result.append(Variable(name, var_type, dims, sizes, depth))
        return result


def extract_variables(tree: Format, types=None, collapsed=()):
    return VariableExtractor().extract(tree).variables(types, collapsed)
