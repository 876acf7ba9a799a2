from ast_nodes import Format, Item, Number, BinOp, Dots, VDots, Break
from errors import Diagnostic
from lexer import Lexer

CLOSERS = {"(": ")", "{": "}", "[": "]"}


class ParseResult:
    def __init__(self, tree, diagnostics, literals):
        self.tree = tree                # raw Format
        self.diagnostics = diagnostics  # list[Diagnostic]
        self.literals = literals        # numbers skipped at statement level, in order

    @property
    def ok(self) -> bool:
        return not any(d.severity == "error" for d in self.diagnostics)


class Parser:
    def __init__(self, lexer):
        self.lexer = lexer
        self.current_token = self._pull()
        self.next_token = self._pull()
        self.diagnostics = []
        self.literals = []

    def _pull(self):
        tok = self.lexer.get_next_token()
        while tok.type == "SPACE":
            tok = self.lexer.get_next_token()
        return tok

    # move to next token (EOF is sticky)
    def eat(self, token_type=None):
        tok = self.current_token
        if token_type is not None and tok.type != token_type:
            self.report("error", f"Expected {token_type}, got {tok.type}", tok)
            return tok
        if tok.type != "EOF":
            self.current_token = self.next_token
            self.next_token = self._pull()
        return tok

    def report(self, severity, message, tok):
        self.diagnostics.append(Diagnostic(severity, message, tok.line, tok.column))

    # ---------- TOP LEVEL ----------
    def parse(self):
        statements = []
        while self.current_token.type != "EOF":
            stmt = self.statement()
            if stmt is not None:
                statements.append(stmt)
        return ParseResult(Format(statements), self.diagnostics, self.literals)

    # ---------- STATEMENTS ----------
    def statement(self):
        tok = self.current_token

        if tok.type == "IDENT":
            return self.item(subscripts=True)

        if tok.type == "NEWLINE":
            self.eat("NEWLINE")
            node = Break()
            node.line = tok.line
            return node

        if tok.type in ("DOTS", "VDOTS"):
            self.eat(tok.type)
            node = Dots() if tok.type == "DOTS" else VDots()
            node.line = tok.line
            return node

        if tok.type == "COMMA":
            self.eat("COMMA")
            return None

        # permissive: skip, but keep a record of it
        self.eat()
        if tok.type == "NUMBER":
            self.literals.append(tok.value)
        self.report("warning", f"Skipped token {tok!r}", tok)
        return None

    def item(self, subscripts=True):
        # subscripts=False: a bare index like the "i" in A_i_j, which must not
        # swallow the following "_j"
        name_tok = self.eat("IDENT")
        indices = []

        while subscripts and self.current_token.type == "SUBSCRIPT":
            self.eat("SUBSCRIPT")

            if self.current_token.type == "LPAREN":
                open_tok = self.eat("LPAREN")

                # explicit empty index list: A_{}
                if self.current_token.type == "RPAREN":
                    self.close_bracket(open_tok)
                    continue

                while True:
                    indices.append(self.expr(subscripts=True))
                    if self.current_token.type == "COMMA":
                        self.eat("COMMA")
                        continue
                    break

                self.close_bracket(open_tok)
            else:
                indices.append(self.expr(subscripts=False))

        node = Item(name_tok.value, indices)
        node.line = name_tok.line
        return node

    def close_bracket(self, open_tok):
        tok = self.current_token
        if tok.type != "RPAREN":
            self.report("warning", f"Unclosed bracket '{open_tok.value}'", open_tok)
            return
        self.eat("RPAREN")
        # any closer ends any opener; only note the mismatch
        if CLOSERS.get(open_tok.value) != tok.value:
            self.report("warning", f"Bracket '{open_tok.value}' closed by '{tok.value}'", tok)

    # ---------- EXPRESSIONS ----------
    # expr -> term ((+|-) term)*
    def expr(self, subscripts=True):
        node = self.term(subscripts)
        while self.current_token.type == "BINOP" and self.current_token.value in ("+", "-"):
            op_token = self.eat("BINOP")
            right = self.term(subscripts)
            node = BinOp(op_token.value, node, right)
            node.line = op_token.line
        return node

    # term -> atom ((*|/) atom)*
    def term(self, subscripts=True):
        node = self.atom(subscripts)
        while self.current_token.type == "BINOP" and self.current_token.value in ("*", "/"):
            op_token = self.eat("BINOP")
            right = self.atom(subscripts)
            node = BinOp(op_token.value, node, right)
            node.line = op_token.line
        return node

    # atom -> NUMBER | item | (expr)
    def atom(self, subscripts=True):
        tok = self.current_token

        if tok.type == "LPAREN":
            self.eat("LPAREN")
            node = self.expr(subscripts=True)
            self.close_bracket(tok)
            return node

        if tok.type == "IDENT":
            return self.item(subscripts=subscripts)

        if tok.type == "NUMBER":
            self.eat("NUMBER")
            node = Number(tok.value)
            node.line = tok.line
            return node

        self.report("error", f"Unexpected token in expression: {tok.type}", tok)
        self.eat()
        node = Item("ERROR")
        node.line = tok.line
        return node


def parse_format(text: str) -> ParseResult:
    return Parser(Lexer(text)).parse()
