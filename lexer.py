import re

from errors import LexicalError


class Token:
    def __init__(self, type, value=None, line=1, column=1):
        self.type = type
        self.value = value
        self.line = line
        self.column = column

    def __repr__(self):
        if self.value is not None:
            return f"{self.type}({self.value})"
        return f"{self.type}"


# Styling macros that wrap a plain identifier: \mathrm{N} -> N
MACRO_RE = re.compile(r"\\(?:mathrm|operatorname|text)\{([^{}]+)\}")

SUBSCRIPT_GLYPHS = {
    "₀": "0", "₁": "1", "₂": "2", "₃": "3", "₄": "4",
    "₅": "5", "₆": "6", "₇": "7", "₈": "8", "₉": "9",
    "ₐ": "a", "ₑ": "e", "ₕ": "h", "ᵢ": "i", "ⱼ": "j", "ₖ": "k",
    "ₗ": "l", "ₘ": "m", "ₙ": "n", "ₒ": "o", "ₚ": "p", "ᵣ": "r",
    "ₛ": "s", "ₜ": "t", "ᵤ": "u", "ᵥ": "v", "ₓ": "x",
    "₋": "-",
}

# Ordered: the first rule whose pattern matches at the cursor wins.
RULES = [
    ("NEWLINE", re.compile(r"\r\n|\r|\n"), False),
    ("SPACE", re.compile(r"[ \t\u00a0]+"), True),
    ("DOTS", re.compile(r"\\ldots|\\cdots|\\dots|\.\.\.|…|⋯"), False),
    ("VDOTS", re.compile(r"\\vdots|⋮"), False),
    ("SUBSCRIPT", re.compile(r"_"), False),
    ("NUMBER", re.compile(r"[0-9]+"), False),
    ("IDENT", re.compile(r"[A-Za-z][A-Za-z0-9]*"), False),
    ("BINOP", re.compile(r"[-+*/]"), False),
    ("LPAREN", re.compile(r"[{(\[]"), False),
    ("RPAREN", re.compile(r"[})\]]"), False),
    ("COMMA", re.compile(r","), False),
]


def normalize(text: str) -> str:
    # unwrap nested/multiple macros until nothing changes
    while True:
        unwrapped = MACRO_RE.sub(r"\1", text)
        if unwrapped == text:
            break
        text = unwrapped

    # one synthetic "_" per run of subscript glyphs: aₙ₋₁ -> a_n-1
    result = []
    in_subscript = False
    for ch in text:
        mapped = SUBSCRIPT_GLYPHS.get(ch)
        if mapped is None:
            in_subscript = False
            result.append(ch)
            continue
        if not in_subscript:
            result.append("_")
            in_subscript = True
        result.append(mapped)
    return "".join(result)


class Lexer:
    def __init__(self, text):
        self.text = normalize(text)
        self.pos = 0
        self.line = 1
        self.column = 1
        self.keep_spaces = False

    def advance(self, lexeme):
        # track line/column across the consumed text
        newlines = lexeme.count("\n") + lexeme.count("\r") - lexeme.count("\r\n")
        if newlines:
            self.line += newlines
            tail = re.split(r"\r\n|\r|\n", lexeme)[-1]
            self.column = 1 + len(tail)
        else:
            self.column += len(lexeme)
        self.pos += len(lexeme)

    def get_next_token(self):
        while self.pos < len(self.text):
            for token_type, pattern, skippable in RULES:
                m = pattern.match(self.text, self.pos)
                if not m:
                    continue

                lexeme = m.group(0)
                start_line, start_col = self.line, self.column
                self.advance(lexeme)

                if skippable and not self.keep_spaces:
                    break

                value = int(lexeme) if token_type == "NUMBER" else lexeme
                return Token(token_type, value, line=start_line, column=start_col)
            else:
                raise LexicalError(self.text[self.pos], self.line, self.column)

        return Token("EOF", line=self.line, column=self.column)

    def tokenize(self, keep_spaces=False):
        self.keep_spaces = keep_spaces
        tokens = []
        while True:
            tok = self.get_next_token()
            tokens.append(tok)
            if tok.type == "EOF":
                return tokens


def tokenize(text: str, keep_spaces=False):
    return Lexer(text).tokenize(keep_spaces=keep_spaces)
