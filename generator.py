from analyzer import LOOP_VARIABLE_CANDIDATES
from ast_nodes import Format, Item, Number, BinOp, Loop, is_ref, names_in
from config import DEFAULT_CONFIG, CodeGeneratorConfig, load_config, render
from type_inference import VarType

PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2}

COUNT_NAMES = ("Q", "q")
DISCRIMINATOR_NAMES = ("t", "type", "kind", "op")
QUERY_ITEM_NAMES = ("query", "queries")


def type_key(var_type: VarType) -> str:
    if var_type == VarType.FLOAT:
        return "float"
    if var_type in (VarType.CHAR, VarType.STRING):
        return "str"
    return "int"


def is_query_record(node) -> bool:
    """query_i, or a loop whose body reads nothing but query records."""
    if isinstance(node, Item):
        return node.name.lower() in QUERY_ITEM_NAMES
    if isinstance(node, Loop):
        return bool(node.body) and all(is_query_record(c) for c in node.body)
    return False


class InputPart:
    def __init__(self, variables, tree: Format, literals=(), diagnostics=()):
        self.variables = variables      # list[Variable]
        self.tree = tree                # normalized tree the samples matched
        self.literals = list(literals)  # numbers the parser skipped (query discriminators)
        self.diagnostics = list(diagnostics)


class QueryCase:
    def __init__(self, value, input_part, formal_arguments, actual_arguments):
        self.value = value
        self.input_part = input_part
        self.formal_arguments = formal_arguments
        self.actual_arguments = actual_arguments

    def to_dict(self):
        return {
            "value": self.value,
            "input_part": self.input_part,
            "formal_arguments": self.formal_arguments,
            "actual_arguments": self.actual_arguments,
        }


class TemplateContext:
    def __init__(self):
        self.prediction_success = True
        self.multiple_cases = False
        self.query_mode = False
        self.formal_arguments = ""
        self.actual_arguments = ""
        self.declarations = []   # list[str], in emission order
        self.declaration_part = ""
        self.reading_part = ""
        self.input_part = ""     # declarations interleaved with reads
        self.setup_part = ""
        self.query_part = ""
        self.query_cases = []    # list[QueryCase]
        self.count_variable = None
        self.diagnostics = []    # parser diagnostics of every part, in part order

    def to_dict(self):
        return {
            "prediction_success": self.prediction_success,
            "multiple_cases": self.multiple_cases,
            "query_mode": self.query_mode,
            "formal_arguments": self.formal_arguments,
            "actual_arguments": self.actual_arguments,
            "declarations": list(self.declarations),
            "declaration_part": self.declaration_part,
            "reading_part": self.reading_part,
            "input_part": self.input_part,
            "setup_part": self.setup_part,
            "query_part": self.query_part,
            "query_cases": [c.to_dict() for c in self.query_cases],
            "count_variable": self.count_variable,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


class Emitter:
    """Lines of one block, plus the declaration and read views of the same lines."""

    def __init__(self):
        self.lines = []
        self.declarations = []
        self.reads = []

    def declare(self, line):
        self.lines.append(line)
        self.declarations.append(line)

    def read(self, lines):
        self.lines.extend(lines)
        self.reads.extend(lines)


class UniversalGenerator:
    def __init__(self, config: CodeGeneratorConfig):
        self.config = config
        self.indent = " " * config.base_indent
        self.spaced = config.insert_space_around_operators
        self.success = True
        self.allocations = {}  # id(inner loop) -> {name: row allocation line}

    # ---------- ENTRY ----------
    def generate(self, parts, multiple_cases=False, query=None) -> TemplateContext:
        self.success = True
        self.allocations = {}

        ctx = TemplateContext()
        ctx.multiple_cases = bool(multiple_cases)
        ctx.query_mode = len(parts) > 1 if query is None else bool(query)
        for part in parts:
            ctx.diagnostics.extend(part.diagnostics)
        # an ERROR placeholder item reads into nothing real
        if any(d.severity == "error" for d in ctx.diagnostics):
            self.success = False

        if not parts:
            ctx.prediction_success = False
            ctx.input_part = self.indent + self.unresolved("no input format")
            return ctx

        if ctx.query_mode:
            self.generate_query(parts, ctx)
        else:
            self.generate_single(parts[0], ctx)

        ctx.prediction_success = self.success
        return ctx

    def generate_single(self, part: InputPart, ctx: TemplateContext):
        scope = {v.name: v for v in part.variables}
        out = Emitter()
        self.render_block(part.tree.children, scope, set(), out)

        variables = [v for v in part.variables if v.type != VarType.QUERY]
        ctx.formal_arguments = self.formal_arguments(variables)
        ctx.actual_arguments = self.actual_arguments(variables)
        self.fill_parts(ctx, out)

    # ---------- QUERY MODE ----------
    def generate_query(self, parts, ctx: TemplateContext):
        setup = parts[0]
        registry = {}
        scopes = [self.resolve_scope(part, p, registry) for p, part in enumerate(parts)]

        setup_vars = [v for v in scopes[0].values() if v.type != VarType.QUERY]
        count = self.count_variable(setup, setup_vars)
        ctx.count_variable = count.name if count is not None else None

        used = set()
        for part in parts:
            names_in(part.tree, used)
        used.update(registry)
        discriminator = self.pick_name(DISCRIMINATOR_NAMES, used, "query_type")
        used.add(discriminator)
        loop_var = self.pick_name(LOOP_VARIABLE_CANDIDATES, used, "_q")

        shared = [v for v in setup_vars if count is None or v.name != count.name]
        cases = []
        for p in range(1, len(parts)):
            case_vars = [v for v in scopes[p].values() if v.type != VarType.QUERY and v not in setup_vars]
            value = parts[p].literals[0] if parts[p].literals else p
            arguments = shared + case_vars
            cases.append(QueryCase(
                value,
                None,
                self.formal_arguments(arguments),
                self.actual_arguments(arguments, self.query_template("actual_arg")),
            ))

        dispatch = self.render_dispatch(parts, scopes, cases, count, discriminator, loop_var)

        # the setup alone: the query-record loop is dropped instead of replaced
        setup_only = Emitter()
        self.render_block(setup.tree.children, scopes[0], set(), setup_only, [])

        out = Emitter()
        if not self.render_block(setup.tree.children, scopes[0], set(), out, dispatch):
            out.read(dispatch)

        ctx.formal_arguments = self.formal_arguments(shared)
        ctx.actual_arguments = self.actual_arguments(shared)
        ctx.query_cases = cases
        ctx.setup_part = self.join(setup_only.lines)
        ctx.query_part = self.join(dispatch)
        self.fill_parts(ctx, out)

    def resolve_scope(self, part: InputPart, index: int, registry: dict) -> dict:
        """Map each name of one part to the variable it reads into.

        The first part to use a name owns it; a later part that uses the name
        with another type or shape reads into name_<part> instead.
        """
        scope = {}
        for v in part.variables:
            existing = registry.get(v.name)
            if existing is not None and (type_key(existing.type) != type_key(v.type) or existing.dims != v.dims):
                resolved = v.renamed(f"{v.name}_{index}")
            else:
                resolved = existing or v
            if resolved.name not in registry:
                registry[resolved.name] = resolved
            scope[v.name] = resolved
        return scope

    def count_variable(self, setup: InputPart, setup_vars):
        by_name = {v.name: v for v in setup_vars}
        for name in COUNT_NAMES:
            if name in by_name and by_name[name].dims == 0:
                return by_name[name]

        bounds = set()
        for node in setup.tree.children:
            if is_query_record(node):
                continue
            self.collect_bounds(node, bounds)
        for v in setup_vars:
            for size in v.sizes:
                names_in(size, bounds)

        candidates = [
            v for v in setup_vars
            if v.dims == 0 and type_key(v.type) == "int" and v.name not in bounds
        ]
        return candidates[-1] if candidates else None

    def collect_bounds(self, node, out):
        if isinstance(node, Loop):
            names_in(node.start, out)
            names_in(node.end, out)
            for child in node.body:
                self.collect_bounds(child, out)
        elif isinstance(node, Item):
            for idx in node.indices:
                names_in(idx, out)

    def pick_name(self, candidates, used, fallback):
        for name in candidates:
            if name not in used:
                return name
        return fallback

    def render_dispatch(self, parts, scopes, cases, count, discriminator, loop_var):
        lines = []
        if count is None:
            lines.append(self.unresolved("query count"))
            count_text = None
        else:
            count_text = count.name

        lines.append(render(self.query_template("loop"), {"loop_var": loop_var, "count": count_text}))

        body = []
        body.append(render(self.config.template("declare", "int"), {"name": discriminator}))
        body.append(render(self.config.template("input", "int"), {"name": discriminator}))

        for n, case in enumerate(cases):
            p = n + 1
            key = "branch" if n == 0 else "else_branch"
            body.append(render(self.query_template(key), {"var": discriminator, "value": case.value}))

            # case variables are local to their branch
            out = Emitter()
            self.render_block(parts[p].tree.children, scopes[p], self.setup_names(scopes[0]), out)
            call = self.query_template("call")
            if call:
                out.read([render(call, {"value": case.value, "arguments": case.actual_arguments})])
            case.input_part = self.join(out.lines)
            body.extend(self.indent + line for line in out.lines)

        if cases:
            body.append(self.query_template("branch_footer"))

        lines.extend(self.indent + line for line in body)
        lines.append(self.query_template("footer"))
        return lines

    def setup_names(self, setup_scope):
        return {v.name for v in setup_scope.values()}

    def query_template(self, key):
        template = self.config.query.get(key)
        if template is None:
            template = DEFAULT_CONFIG["query"][key]
        return template

    # ---------- BLOCKS ----------
    def render_block(self, statements, scope, declared, out: Emitter, dispatch=None) -> bool:
        """Emit statements with each variable declared right before its first read.

        Returns True when a query-record statement was replaced by `dispatch`.
        """
        replaced = False
        for stmt in statements:
            if dispatch is not None and not replaced and is_query_record(stmt):
                out.read(dispatch)
                replaced = True
                continue

            for name, var in self.first_reads(stmt, scope, declared):
                for line in self.declaration(name, var, stmt, scope):
                    out.declare(line)
                declared.add(var.name)

            out.read(self.render_node(stmt, scope))
        return replaced

    def first_reads(self, stmt, scope, declared):
        found = []
        seen = set()

        def visit(node):
            if isinstance(node, Item):
                var = scope.get(node.name)
                if (
                    var is not None
                    and var.type != VarType.QUERY
                    and var.name not in declared
                    and var.name not in seen
                ):
                    seen.add(var.name)
                    found.append((node.name, var))
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

        visit(stmt)
        return found

    def render_node(self, node, scope):
        if isinstance(node, Item):
            return [self.read_item(node, scope)]

        if isinstance(node, Loop):
            lines = list(self.allocations.get(id(node), {}).values())
            header = render(self.config.template("loop", "header"), {
                "loop_var": node.var,
                "length": self.length(node, scope),
            })
            lines.append(header)
            for child in node.body:
                lines.extend(self.indent + line for line in self.render_node(child, scope))
            lines.append(self.config.template("loop", "footer"))
            return lines

        return [self.unresolved(f"cannot read {node.__class__.__name__}")]

    def read_item(self, node: Item, scope) -> str:
        var = scope.get(node.name)
        if var is None:
            return self.unresolved(f"unknown variable {node.name}")
        if var.type == VarType.QUERY:
            return self.unresolved(f"query record {node.name}")

        key = type_key(var.type)
        if var.dims == 0:
            target = var.name
        elif var.dims > 2 or len(node.indices) < var.dims:
            return self.unresolved(f"cannot index {var.name} with {len(node.indices)} of {var.dims} dimensions")
        else:
            target = self.access(var.name, node.indices[:var.dims], scope)
        return render(self.config.template("input", key), {"name": target})

    def access(self, name, indices, scope) -> str:
        if len(indices) == 1:
            return render(self.config.template("access", "seq"), {
                "name": name,
                "index": self.expr(indices[0], scope),
            })
        return render(self.config.template("access", "2d_seq"), {
            "name": name,
            "index_i": self.expr(indices[0], scope),
            "index_j": self.expr(indices[1], scope),
        })

    # ---------- DECLARATIONS ----------
    def declaration(self, name, var, stmt, scope):
        key = type_key(var.type)
        params = {
            "name": var.name,
            "type": self.config.template("type", key),
            "default": self.config.template("default", key),
        }

        if var.dims == 0:
            return [render(self.config.template("declare", key), params)]
        if var.dims > 2:
            return [self.unresolved(f"{var.name} has {var.dims} dimensions")]

        lengths, jagged = self.allocation_lengths(name, var, stmt, scope)
        if any(length is None for length in lengths):
            role = "seq" if var.dims == 1 else "2d_seq"
            return [
                render(self.config.template("declare", role), params),
                self.unresolved(f"length of {var.name}"),
            ]

        if var.dims == 1:
            params["length"] = lengths[0]
            return [render(self.config.template("declare_and_allocate", "seq"), params)]

        params["length_i"] = lengths[0]
        params["length_j"] = "0" if jagged else lengths[1]
        return [render(self.config.template("declare_and_allocate", "2d_seq"), params)]

    def allocation_lengths(self, name, var, stmt, scope):
        """Per-dimension lengths, taken from the loops that read each index."""
        found = self.find_read(stmt, name, [])
        lengths = []
        jagged = False
        for position in range(var.dims):
            length = None
            if found is not None:
                item, loops = found
                idx = item.indices[position] if position < len(item.indices) else None
                for depth in range(len(loops) - 1, -1, -1):
                    loop = loops[depth]
                    if idx is not None and is_ref(idx, loop.var):
                        length = self.length(loop, scope)
                        outer = {l.var for l in loops[:depth]}
                        if position == 1 and (names_in(loop.start) | names_in(loop.end)) & outer:
                            # row length varies with an outer loop: allocate each row in place
                            jagged = True
                            self.allocate_row(var, item, loop, scope)
                        break
            if length is None and position < len(var.sizes):
                length = self.expr(var.sizes[position], scope)
            lengths.append(length)
        return lengths, jagged

    def allocate_row(self, var, item, loop, scope):
        key = type_key(var.type)
        row = render(self.config.template("access", "seq"), {
            "name": var.name,
            "index": self.expr(item.indices[0], scope),
        })
        line = render(self.config.template("allocate", "seq"), {
            "name": row,
            "type": self.config.template("type", key),
            "length": self.length(loop, scope),
            "default": self.config.template("default", key),
        })
        self.allocations.setdefault(id(loop), {})[var.name] = line

    def find_read(self, node, name, loops):
        if isinstance(node, Item):
            if node.name == name and node.indices:
                return node, loops
            return None
        if isinstance(node, Loop):
            for child in node.body:
                found = self.find_read(child, name, loops + [node])
                if found is not None:
                    return found
        return None

    # ---------- ARGUMENTS ----------
    def formal_arguments(self, variables) -> str:
        args = []
        for v in variables:
            key = type_key(v.type)
            params = {"name": v.name, "type": self.config.template("type", key)}
            if v.dims == 0:
                args.append(render(self.config.template("arg", key), params))
            elif v.dims == 1:
                args.append(render(self.config.template("arg", "seq"), params))
            elif v.dims == 2:
                args.append(render(self.config.template("arg", "2d_seq"), params))
            else:
                self.success = False
        return ", ".join(args)

    def actual_arguments(self, variables, template=None) -> str:
        """template: one pattern for every array, replacing the actual_arg table."""
        args = []
        for v in variables:
            if v.dims == 0:
                args.append(v.name)
            elif v.dims <= 2:
                role = "seq" if v.dims == 1 else "2d_seq"
                pattern = template if template is not None else self.config.template("actual_arg", role)
                args.append(render(pattern, {"name": v.name}))
            else:
                self.success = False
        return ", ".join(args)

    # ---------- EXPRESSIONS ----------
    def op_text(self, op):
        return f" {op} " if self.spaced else op

    def expr(self, node, scope=None, parent=None, right=False) -> str:
        scope = scope or {}
        if isinstance(node, Number):
            return str(node.value)

        if isinstance(node, Item):
            var = scope.get(node.name)
            name = var.name if var is not None else node.name
            if not node.indices:
                return name
            if len(node.indices) <= 2:
                return self.access(name, node.indices, scope)
            return name + "".join(f"[{self.expr(i, scope)}]" for i in node.indices)

        if isinstance(node, BinOp):
            prec = PRECEDENCE[node.op]
            text = (
                self.expr(node.left, scope, node.op)
                + self.op_text(node.op)
                + self.expr(node.right, scope, node.op, right=True)
            )
            if parent is not None:
                outer = PRECEDENCE[parent]
                if prec < outer or (right and prec == outer and parent in "-/"):
                    return f"({text})"
            return text

        return self.unresolved(f"expression {node.__class__.__name__}")

    def linear(self, node, scope):
        """Linear form {term: coefficient}; None keys the constant.

        Terms are (text, is_division) so a scaled quotient keeps its parentheses.
        """
        if isinstance(node, Number):
            return {None: node.value}
        if isinstance(node, BinOp) and node.op in ("+", "-"):
            left = self.linear(node.left, scope)
            right = self.linear(node.right, scope)
            sign = 1 if node.op == "+" else -1
            for key, coeff in right.items():
                left[key] = left.get(key, 0) + sign * coeff
            return left
        if isinstance(node, BinOp) and node.op == "*":
            left = self.linear(node.left, scope)
            right = self.linear(node.right, scope)
            if list(left) == [None]:
                return {k: c * left[None] for k, c in right.items()}
            if list(right) == [None]:
                return {k: c * right[None] for k, c in left.items()}
        is_div = isinstance(node, BinOp) and node.op == "/"
        return {(self.expr(node, scope), is_div): 1}

    def render_linear(self, terms) -> str:
        mul = self.op_text("*")
        pieces = []
        for key, coeff in terms.items():
            if key is None or coeff == 0:
                continue
            text, is_div = key
            magnitude = abs(coeff)
            if magnitude != 1:
                text = f"{magnitude}{mul}({text})" if is_div else f"{magnitude}{mul}{text}"
            pieces.append((coeff < 0, text))

        constant = terms.get(None, 0)
        if constant or not pieces:
            pieces.append((constant < 0, str(abs(constant))))

        negative, text = pieces[0]
        result = f"-{text}" if negative else text
        for negative, text in pieces[1:]:
            result += self.op_text("-" if negative else "+") + text
        return result

    def length(self, loop: Loop, scope) -> str:
        """end - start + 1, folded."""
        terms = self.linear(loop.end, scope)
        for key, coeff in self.linear(loop.start, scope).items():
            terms[key] = terms.get(key, 0) - coeff
        terms[None] = terms.get(None, 0) + 1
        return self.render_linear(terms)

    # ---------- OUTPUT ----------
    def unresolved(self, what) -> str:
        self.success = False
        return render(self.config.comment, {"text": f"unresolved: {what}"})

    def join(self, lines) -> str:
        return "\n".join(self.indent + line for line in lines)

    def fill_parts(self, ctx: TemplateContext, out: Emitter):
        ctx.declarations = list(out.declarations)
        ctx.declaration_part = self.join(out.declarations)
        ctx.reading_part = self.join(out.reads)
        ctx.input_part = self.join(out.lines)


def generate(parts, config: CodeGeneratorConfig | None = None, multiple_cases=False, query=None) -> TemplateContext:
    if config is None:
        config = load_config()
    return UniversalGenerator(config).generate(parts, multiple_cases=multiple_cases, query=query)
