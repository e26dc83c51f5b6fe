"""
Condition evaluation for conditional and while steps.

Supports the shell test subset used by workflows:
- exit code checks: $? -eq 0
- file tests: [ -f path ], -d, -e, -r, -w, -x, -s, -L
- string tests: [ -z "$x" ], [ -n "$x" ], [ "$a" = "b" ], !=
- numeric comparisons: -eq -ne -gt -lt -ge -le
- composition: !, &&, || and ( ) grouping

Anything that is not a test form runs as a command in the shell session and
is true when it exits 0.
"""

import fnmatch
import logging
import os
import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple, Union

from ..exceptions import ConditionSyntaxError
from ..exec.shell_session import ShellSession
from ..models import Expression

logger = logging.getLogger(__name__)


UNARY_FILE_OPS = {'-f', '-d', '-e', '-r', '-w', '-x', '-s', '-L', '-h'}
UNARY_STRING_OPS = {'-z', '-n'}
UNARY_OPS = UNARY_FILE_OPS | UNARY_STRING_OPS
NUMERIC_OPS = {'-eq', '-ne', '-gt', '-lt', '-ge', '-le'}
STRING_OPS = {'=', '==', '!='}
BINARY_OPS = NUMERIC_OPS | STRING_OPS | {'=~'}

# Token kinds
WORD = 'word'
AND = '&&'
OR = '||'
NOT = '!'
LPAREN = '('
RPAREN = ')'
LBRACKET = '['
RBRACKET = ']'


@dataclass
class Word:
    """
    A shell word as written in the expression.

    parts holds (text, expandable) chunks: single-quoted and backslash-escaped
    text is literal, everything else is subject to $VAR expansion.
    """
    raw: str
    parts: List[Tuple[str, bool]] = field(default_factory=list)
    quoted: bool = False
    needs_shell: bool = False


@dataclass
class Token:
    kind: str
    start: int
    end: int
    word: Optional[Word] = None
    text: str = ""


@dataclass
class NotNode:
    operand: "Node"


@dataclass
class AndNode:
    left: "Node"
    right: "Node"


@dataclass
class OrNode:
    left: "Node"
    right: "Node"


@dataclass
class CheckNode:
    words: List[Word]
    extended: bool = False  # [[ ... ]] semantics


@dataclass
class CommandNode:
    text: str


Node = Union[NotNode, AndNode, OrNode, CheckNode, CommandNode]


@dataclass
class EvaluationResult:
    """Outcome of evaluating one expression."""
    truth: bool
    captured_value: Optional[str] = None
    output: Optional[str] = None  # stdout of the last command run, if any


class Tokenizer:
    """Splits expression text into words and operators, keeping source spans."""

    VAR_START = re.compile(r'\$(\{[^}]*\}|[A-Za-z_][A-Za-z0-9_]*|[?#@*$!0-9])')

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def error(self, message: str) -> ConditionSyntaxError:
        return ConditionSyntaxError(self.text, message)

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        text = self.text

        while True:
            while self.pos < len(text) and text[self.pos].isspace():
                self.pos += 1
            if self.pos >= len(text):
                break

            start = self.pos
            two = text[start:start + 2]
            ch = text[start]

            if two == '&&':
                self.pos += 2
                tokens.append(Token(AND, start, self.pos))
            elif two == '||':
                self.pos += 2
                tokens.append(Token(OR, start, self.pos))
            elif ch == '(':
                self.pos += 1
                tokens.append(Token(LPAREN, start, self.pos))
            elif ch == ')':
                self.pos += 1
                tokens.append(Token(RPAREN, start, self.pos))
            else:
                word = self._read_word()
                end = self.pos
                if not word.quoted and word.raw in ('[', '[['):
                    tokens.append(Token(LBRACKET, start, end, text=word.raw))
                elif not word.quoted and word.raw in (']', ']]'):
                    tokens.append(Token(RBRACKET, start, end, text=word.raw))
                elif not word.quoted and word.raw == '!':
                    tokens.append(Token(NOT, start, end))
                else:
                    tokens.append(Token(WORD, start, end, word=word))

        return tokens

    def _read_word(self) -> Word:
        text = self.text
        start = self.pos
        word = Word(raw="")
        buffer = ""

        def flush(expandable: bool = True):
            nonlocal buffer
            if buffer:
                word.parts.append((buffer, expandable))
                buffer = ""

        while self.pos < len(text):
            ch = text[self.pos]
            two = text[self.pos:self.pos + 2]

            if ch.isspace() or two in ('&&', '||') or ch in '()':
                break

            if ch == '\\':
                flush()
                if self.pos + 1 < len(text):
                    word.parts.append((text[self.pos + 1], False))
                    word.quoted = True
                self.pos += 2
            elif ch == "'":
                flush()
                end = text.find("'", self.pos + 1)
                if end == -1:
                    raise self.error("unterminated single quote")
                word.parts.append((text[self.pos + 1:end], False))
                word.quoted = True
                self.pos = end + 1
            elif ch == '"':
                flush()
                self._read_double_quoted(word)
                word.quoted = True
            elif two == '$(':
                buffer += self._read_balanced('$(', ')')
                word.needs_shell = True
            elif two == '${':
                buffer += self._read_balanced('${', '}')
            elif ch == '`':
                end = text.find('`', self.pos + 1)
                if end == -1:
                    raise self.error("unterminated backquote")
                buffer += text[self.pos:end + 1]
                word.needs_shell = True
                self.pos = end + 1
            else:
                buffer += ch
                self.pos += 1

        flush()
        word.raw = text[start:self.pos]
        return word

    def _read_double_quoted(self, word: Word):
        text = self.text
        self.pos += 1
        buffer = ""
        while True:
            if self.pos >= len(text):
                raise self.error("unterminated double quote")
            ch = text[self.pos]
            if ch == '"':
                self.pos += 1
                break
            if ch == '\\' and self.pos + 1 < len(text) and text[self.pos + 1] in '$`"\\':
                if buffer:
                    word.parts.append((buffer, True))
                    buffer = ""
                word.parts.append((text[self.pos + 1], False))
                self.pos += 2
            elif text.startswith('$(', self.pos):
                buffer += self._read_balanced('$(', ')')
                word.needs_shell = True
            elif ch == '`':
                end = text.find('`', self.pos + 1)
                if end == -1:
                    raise self.error("unterminated backquote")
                buffer += text[self.pos:end + 1]
                word.needs_shell = True
                self.pos = end + 1
            else:
                buffer += ch
                self.pos += 1
        # An empty "" still yields an (empty) part so the word counts as an operand
        word.parts.append((buffer, True))

    def _read_balanced(self, opener: str, closer: str) -> str:
        text = self.text
        start = self.pos
        self.pos += len(opener)
        depth = 1
        quote = None
        while self.pos < len(text):
            ch = text[self.pos]
            if quote:
                if ch == quote:
                    quote = None
            elif ch in ('"', "'"):
                quote = ch
            elif text.startswith(opener, self.pos):
                depth += 1
                self.pos += len(opener)
                continue
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    self.pos += 1
                    return text[start:self.pos]
            self.pos += 1
        raise self.error(f"unterminated '{opener}'")


class Parser:
    """
    Recursive-descent parser over expression tokens.

    Precedence: ! binds tightest, then &&, then ||; both binary operators
    are left-associative.
    """

    def __init__(self, text: str, tokens: List[Token]):
        self.text = text
        self.tokens = tokens
        self.index = 0

    def error(self, message: str) -> ConditionSyntaxError:
        return ConditionSyntaxError(self.text, message)

    def peek(self) -> Optional[Token]:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return None

    def advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def parse(self) -> Node:
        if not self.tokens:
            raise self.error("empty expression")
        node = self.parse_or(bracket=None)
        token = self.peek()
        if token is not None:
            raise self.error(f"unexpected '{self.text[token.start:token.end]}'")
        return node

    def parse_or(self, bracket: Optional[str]) -> Node:
        node = self.parse_and(bracket)
        while self.peek() is not None and self.peek().kind == OR:
            self.advance()
            node = OrNode(node, self.parse_and(bracket))
        return node

    def parse_and(self, bracket: Optional[str]) -> Node:
        node = self.parse_unary(bracket)
        while self.peek() is not None and self.peek().kind == AND:
            self.advance()
            node = AndNode(node, self.parse_unary(bracket))
        return node

    def parse_unary(self, bracket: Optional[str]) -> Node:
        token = self.peek()
        if token is not None and token.kind == NOT:
            self.advance()
            return NotNode(self.parse_unary(bracket))
        return self.parse_primary(bracket)

    def parse_primary(self, bracket: Optional[str]) -> Node:
        token = self.peek()
        if token is None:
            raise self.error("missing operand after operator")

        if token.kind == LPAREN:
            self.advance()
            node = self.parse_or(bracket)
            closing = self.peek()
            if closing is None or closing.kind != RPAREN:
                raise self.error("missing ')'")
            self.advance()
            return node

        if token.kind == LBRACKET:
            if bracket is not None:
                raise self.error(f"nested '{token.text}'")
            self.advance()
            node = self.parse_or(bracket=token.text)
            closing = self.peek()
            expected = ']]' if token.text == '[[' else ']'
            if closing is None or closing.kind != RBRACKET:
                raise self.error(f"missing '{expected}'")
            if closing.text != expected:
                raise self.error(f"'{token.text}' closed by '{closing.text}'")
            self.advance()
            return node

        if token.kind != WORD:
            raise self.error(f"unexpected '{self.text[token.start:token.end]}'")

        words: List[Token] = []
        while self.peek() is not None and self.peek().kind == WORD:
            words.append(self.advance())

        if bracket is not None:
            return self.build_test([t.word for t in words], extended=(bracket == '[['))

        first = words[0].word
        if not first.quoted and first.raw == 'test':
            return self.build_test([t.word for t in words[1:]], extended=False)
        if self.is_bare_test([t.word for t in words]):
            return self.build_test([t.word for t in words], extended=False)

        return CommandNode(self.text[words[0].start:words[-1].end])

    @staticmethod
    def is_bare_test(words: List[Word]) -> bool:
        """Recognize unbracketed test forms such as `$? -eq 0` or `-f path`."""
        if len(words) == 2 and not words[0].quoted and words[0].raw in UNARY_OPS:
            return True
        if len(words) == 3 and not words[1].quoted and words[1].raw in BINARY_OPS:
            left = words[0]
            return left.quoted or left.raw.startswith('$') or _is_integer(left.raw)
        return False

    def build_test(self, words: List[Word], extended: bool) -> CheckNode:
        if not words:
            raise self.error("empty test")
        if len(words) == 1:
            if not words[0].quoted and words[0].raw in UNARY_OPS | BINARY_OPS:
                raise self.error(f"missing operand for '{words[0].raw}'")
        elif len(words) == 2:
            if words[0].quoted or words[0].raw not in UNARY_OPS:
                raise self.error(f"unknown unary test '{words[0].raw}'")
        elif len(words) == 3:
            if words[1].quoted or words[1].raw not in BINARY_OPS:
                raise self.error(f"unknown binary operator '{words[1].raw}'")
            if words[1].raw == '=~' and not extended:
                raise self.error("'=~' is only valid inside [[ ]]")
        else:
            raise self.error("too many arguments in test")
        return CheckNode(words, extended)


def _is_integer(value: str) -> bool:
    return re.fullmatch(r'\s*-?\d+\s*', value) is not None


def parse_expression(text: str) -> Node:
    """
    Parse expression text into a syntax tree.

    Raises:
        ConditionSyntaxError: If the expression is malformed
    """
    tokens = Tokenizer(text).tokenize()
    return Parser(text, tokens).parse()


class ExpressionEvaluator:
    """
    Evaluates condition expressions against a shell session.

    Variable references in test operands ($name, ${name}, ${name:-default}) are
    expanded from the run-scoped variables first and the session's exported
    environment second; $? is the session's last exit code.
    """

    CONSTANTS = {'true': True, ':': True, 'false': False}

    VAR_PATTERN = re.compile(r'\$(?:\{([A-Za-z_][A-Za-z0-9_]*)(?::?-([^}]*))?\}|([A-Za-z_][A-Za-z0-9_]*)|([?#]))')

    def __init__(self, session: ShellSession):
        """
        Initialize the evaluator.

        Args:
            session: Shell session used for commands, $? and relative paths
        """
        self.session = session

    def evaluate(self, expression: Expression, variables: Mapping[str, str]) -> EvaluationResult:
        """
        Evaluate an expression.

        Args:
            expression: Expression text and optional capture variable
            variables: Run-scoped variable values

        Returns:
            EvaluationResult; captured_value is set when the expression has a
            capture variable (stdout of the last command run, trimmed, or
            'true'/'false' when no command ran)

        Raises:
            ConditionSyntaxError: If the expression is malformed
        """
        node = parse_expression(expression.text)
        self._last_output: Optional[str] = None

        truth = self._eval(node, variables)
        logger.debug(f"Condition '{expression.text}' evaluated to {truth}")

        captured = None
        if expression.capture_variable:
            if self._last_output is not None:
                captured = self._last_output.strip()
            else:
                captured = 'true' if truth else 'false'

        return EvaluationResult(truth=truth, captured_value=captured, output=self._last_output)

    def _eval(self, node: Node, variables: Mapping[str, str]) -> bool:
        if isinstance(node, NotNode):
            return not self._eval(node.operand, variables)
        if isinstance(node, AndNode):
            return self._eval(node.left, variables) and self._eval(node.right, variables)
        if isinstance(node, OrNode):
            return self._eval(node.left, variables) or self._eval(node.right, variables)
        if isinstance(node, CheckNode):
            return self._eval_test(node, variables)
        if isinstance(node, CommandNode):
            # Constant conditions leave $? untouched
            if node.text in self.CONSTANTS:
                return self.CONSTANTS[node.text]
            result = self.session.run(node.text)
            self._last_output = result.stdout
            return result.exit_code == 0
        raise TypeError(f"Unknown expression node: {node!r}")

    def _eval_test(self, node: CheckNode, variables: Mapping[str, str]) -> bool:
        words = node.words

        if len(words) == 1:
            return self.expand(words[0], variables) != ''

        if len(words) == 2:
            op = words[0].raw
            operand = self.expand(words[1], variables)
            if op == '-z':
                return operand == ''
            if op == '-n':
                return operand != ''
            return self._file_test(op, operand)

        left = self.expand(words[0], variables)
        op = words[1].raw
        right = self.expand(words[2], variables)

        if op in NUMERIC_OPS:
            return self._compare_numbers(op, left, right)
        if op == '=~':
            try:
                return re.search(right, left) is not None
            except re.error as e:
                raise ConditionSyntaxError(f"{left} =~ {right}", f"invalid regex: {e}")

        if node.extended and not words[2].quoted:
            matched = fnmatch.fnmatchcase(left, right)
        else:
            matched = left == right
        return matched if op in ('=', '==') else not matched

    def _compare_numbers(self, op: str, left: str, right: str) -> bool:
        if not _is_integer(left) or not _is_integer(right):
            raise ConditionSyntaxError(f"{left} {op} {right}", "integer expression expected")
        a, b = int(left), int(right)
        return {
            '-eq': a == b,
            '-ne': a != b,
            '-gt': a > b,
            '-lt': a < b,
            '-ge': a >= b,
            '-le': a <= b,
        }[op]

    def _file_test(self, op: str, operand: str) -> bool:
        if operand == '':
            return False
        path = os.path.join(self.session.cwd, os.path.expanduser(operand))
        if op == '-e':
            return os.path.exists(path)
        if op == '-f':
            return os.path.isfile(path)
        if op == '-d':
            return os.path.isdir(path)
        if op == '-r':
            return os.path.exists(path) and os.access(path, os.R_OK)
        if op == '-w':
            return os.path.exists(path) and os.access(path, os.W_OK)
        if op == '-x':
            return os.path.exists(path) and os.access(path, os.X_OK)
        if op == '-s':
            return os.path.exists(path) and os.path.getsize(path) > 0
        if op in ('-L', '-h'):
            return os.path.islink(path)
        raise ConditionSyntaxError(f"{op} {operand}", f"unknown file test '{op}'")

    def expand(self, word: Word, variables: Mapping[str, str]) -> str:
        """Expand one test operand to its string value."""
        if word.needs_shell:
            result = self.session.run(f"printf '%s' {word.raw}", track_status=False)
            return result.stdout

        pieces = []
        for text, expandable in word.parts:
            if expandable:
                pieces.append(self.VAR_PATTERN.sub(lambda m: self._lookup(m, variables), text))
            else:
                pieces.append(text)
        return ''.join(pieces)

    def _lookup(self, match, variables: Mapping[str, str]) -> str:
        special = match.group(4)
        if special == '?':
            return str(self.session.last_exit_code)
        if special == '#':
            return '0'

        name = match.group(1) or match.group(3)
        # Exported shell state takes precedence over the run-scoped map
        if name in self.session.env:
            value = self.session.env[name]
        else:
            value = variables.get(name, '')

        default = match.group(2)
        if default is not None and value == '':
            return default
        return value
