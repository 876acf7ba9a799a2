class InputgenError(Exception):
    pass


class LexicalError(InputgenError):
    def __init__(self, char: str, line: int, column: int):
        super().__init__(f"Unexpected character: {char} at line {line}, col {column}")
        self.char = char
        self.line = line
        self.column = column


class MatchError(InputgenError):
    pass


class TypingError(InputgenError):
    pass


class ConfigError(InputgenError):
    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"Config error in \"{self.path}\": {self.message}"
        return f"Config error: {self.message}"


class Diagnostic:
    """A problem the parser recovered from. Collected, never raised."""

    def __init__(self, severity: str, message: str, line: int | None = None, column: int | None = None):
        self.severity = severity  # "warning" | "error"
        self.message = message
        self.line = line
        self.column = column

    def format(self, indent: str = "") -> str:
        if self.line is None:
            return f"{indent}{self.severity}: {self.message}"
        return f"{indent}{self.severity}: {self.message} at line {self.line}, col {self.column}"

    def to_dict(self):
        return {"severity": self.severity, "message": self.message, "line": self.line, "column": self.column}

    def __str__(self) -> str:
        return self.format()

    def __repr__(self):
        return f"Diagnostic({self.severity!r}, {self.message!r}, {self.line}, {self.column})"
