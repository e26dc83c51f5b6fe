"""
Shell function to workflow conversion.

Extracts one function from a script and turns its body into a step tree:
if/elif/else become conditionals, case becomes a branch, for/while/until
become loops and every other statement becomes a command step. Positional
parameters become workflow variables referenced through {{ name }} tokens.
"""

import copy
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from ..exceptions import ConversionParseError, FunctionNotFoundError
from ..models import Action, ActionKind, BranchCase, Expression, Step, Variable, Workflow
from ..security.patterns import is_dangerous

logger = logging.getLogger(__name__)


@dataclass
class Statement:
    """One shell statement and the script line it starts on."""
    text: str
    line: int

    @property
    def keyword(self) -> str:
        return first_word(self.text)


# Keywords that close or continue a compound command
CLOSERS = {'then', 'do', 'else', 'elif', 'fi', 'done', 'esac', ';;'}
LEADING_KEYWORDS = ('then', 'do', 'else')

HEREDOC = re.compile(r'(?<!<)<<(-?)\s*([\'"]?)([A-Za-z_][A-Za-z0-9_]*)\2')
FUNCTION_DEFINITION = re.compile(r'^(?:function\s+[A-Za-z_][\w:.-]*|[A-Za-z_][\w:.-]*\s*\(\s*\))')
SHELL_WORD = re.compile(r'''(?:[^\s"']+|"(?:\\.|[^"\\])*"|'[^']*')+''')
ASSIGNMENT = re.compile(r'^([A-Za-z_][A-Za-z0-9_]*)=(.*)$', re.DOTALL)
DECLARATION = re.compile(r'^(local|declare|readonly|typeset)((?:\s+-[a-zA-Z]+)*)(?:\s+(.*))?$', re.DOTALL)

# NAME="$1", NAME=$1, NAME="${2:-default}", NAME=${2}
POSITIONAL_VALUE = re.compile(
    r'''^(?P<q>["']?)(?:\$(?P<bare>[1-9])|\$\{(?P<braced>[1-9][0-9]*)(?::?-(?P<default>[^}]*))?\})(?P=q)$'''
)
POSITIONAL_REFERENCE = re.compile(r'\$\{([1-9][0-9]*)(?::?-([^}]*))?\}|\$([1-9])')
ALL_ARGUMENTS = re.compile(r'"\$[@*]"|"\$\{[@*]\}"|\$\{[@*]\}|\$[@*]')
ARGUMENT_COUNT = re.compile(r'\$\{#\}|\$#')
TEMPLATE_NAME = re.compile(r'^\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}$')
SHELL_VARIABLE = re.compile(r'^\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?$')


def first_word(text: str) -> str:
    parts = text.split(None, 1)
    return parts[0] if parts else ""


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def _shorten(text: str, limit: int = 50) -> str:
    text = " ".join(text.split())
    if len(text) > limit:
        return text[:limit - 3] + "..."
    return text


def list_functions(script_text: str) -> List[str]:
    """Names of the functions defined in a script, in definition order."""
    names = []
    pattern = re.compile(
        r'^[ \t]*(?:function[ \t]+([A-Za-z_][\w:.-]*)(?:[ \t]*\(\s*\))?|([A-Za-z_][\w:.-]*)[ \t]*\(\s*\))\s*\{',
        re.MULTILINE,
    )
    for match in pattern.finditer(script_text):
        name = match.group(1) or match.group(2)
        if name not in names:
            names.append(name)
    return names


def extract_function(script_text: str, function_name: str) -> Tuple[str, int]:
    """
    Extract the body of a named function.

    Accepts `name() {`, `name () {`, `function name {` and `function name() {`,
    with the opening brace on the header line or the next one.

    Args:
        script_text: Full script
        function_name: Function to extract

    Returns:
        Tuple of (body text between the braces, 1-based line of the opening brace)

    Raises:
        FunctionNotFoundError: If no such function is defined
        ConversionParseError: If the body's braces never close
    """
    name = re.escape(function_name)
    header = re.compile(
        rf'^[ \t]*(?:function[ \t]+{name}(?:[ \t]*\(\s*\))?|{name}[ \t]*\(\s*\))[ \t]*\n?[ \t]*\{{',
        re.MULTILINE,
    )
    match = header.search(script_text)
    if match is None:
        raise FunctionNotFoundError(function_name)

    start = match.end()
    header_line = script_text.count('\n', 0, match.start()) + 1
    body_line = script_text.count('\n', 0, start) + 1

    depth = 1
    quote = None
    i = start
    text = script_text
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == '\\' and quote == '"':
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch == '\\':
            i += 2
            continue
        elif ch in ('"', "'"):
            quote = ch
        elif ch == '#' and (i == 0 or text[i - 1] in ' \t\n;'):
            newline = text.find('\n', i)
            i = len(text) if newline == -1 else newline
            continue
        elif ch == '{':
            depth += 1
        elif ch == '}':
            depth -= 1
            if depth == 0:
                return text[start:i], body_line
        i += 1

    lines = script_text.splitlines()
    raise ConversionParseError(header_line, lines[header_line - 1], f"unterminated body of function '{function_name}'")


class StatementSplitter:
    """
    Splits a function body into statements.

    Statements end at newlines, top-level `;` and `;;`. Quoted text, `$( )`,
    `( )` subshells and `{ }` groups stay inside one statement, `\\` line
    continuations and trailing `&&`/`||`/`|` join lines, comments are dropped,
    and here-document bodies are attached to the statement that opens them.
    """

    def __init__(self, body: str, first_line: int, source_lines: List[str]):
        self.body = body
        self.first_line = first_line
        self.source_lines = source_lines

    def error(self, line: int, message: str) -> ConversionParseError:
        text = self.source_lines[line - 1] if 0 < line <= len(self.source_lines) else ""
        return ConversionParseError(line, text, message)

    def split(self) -> List[Statement]:
        body = self.body
        statements: List[Statement] = []
        buf: List[str] = []
        stack: List[str] = []
        quote: Optional[str] = None
        quote_line = 0
        line = self.first_line
        start_line: Optional[int] = None
        prev = ''
        i = 0

        def emit():
            nonlocal start_line, prev
            text = ''.join(buf).strip()
            if text:
                statements.append(Statement(text, start_line or line))
            buf.clear()
            start_line = None
            prev = ''

        def at_word_start() -> bool:
            return prev == '' or prev.isspace() or prev in ';&|('

        while i < len(body):
            ch = body[i]

            if quote:
                buf.append(ch)
                if ch == '\\' and quote == '"' and i + 1 < len(body):
                    buf.append(body[i + 1])
                    if body[i + 1] == '\n':
                        line += 1
                    i += 2
                    continue
                if ch == quote:
                    quote = None
                if ch == '\n':
                    line += 1
                prev = ch
                i += 1
                continue

            if ch == '\\' and i + 1 < len(body):
                if body[i + 1] == '\n':
                    buf.append(' ')
                    line += 1
                else:
                    if start_line is None:
                        start_line = line
                    buf.append(body[i:i + 2])
                prev = body[i + 1]
                i += 2
                continue

            if ch == '\n':
                if stack:
                    buf.append('\n')
                elif ''.join(buf).rstrip().endswith(('&&', '||', '|')):
                    buf.append(' ')
                else:
                    consumed, line = self._attach_heredocs(''.join(buf), i, line, buf)
                    i = consumed
                    emit()
                    line += 1
                    i += 1
                    continue
                line += 1
                prev = ch
                i += 1
                continue

            if ch.isspace():
                buf.append(ch)
                prev = ch
                i += 1
                continue

            if start_line is None:
                start_line = line

            if ch in ('"', "'"):
                quote = ch
                quote_line = line
            elif ch == '#' and at_word_start():
                newline = body.find('\n', i)
                i = len(body) if newline == -1 else newline
                continue
            elif ch == '(':
                stack.append('(')
            elif ch == ')':
                if stack and stack[-1] == '(':
                    stack.pop()
            elif ch == '{':
                if prev == '$':
                    stack.append('${')
                elif at_word_start() and (i + 1 >= len(body) or body[i + 1].isspace()):
                    stack.append('{')
            elif ch == '}':
                if stack and stack[-1] == '${':
                    stack.pop()
                elif stack and stack[-1] == '{' and at_word_start():
                    stack.pop()
            elif ch == ';' and not stack:
                if body.startswith(';;', i):
                    emit()
                    statements.append(Statement(';;', line))
                    i += 2
                    continue
                emit()
                i += 1
                continue

            buf.append(ch)
            prev = ch
            i += 1

        if quote:
            raise self.error(quote_line, "unterminated quote")
        if stack:
            raise self.error(start_line or line, f"unbalanced '{stack[-1]}'")
        emit()
        return self._split_keywords(statements)

    def _attach_heredocs(self, text: str, newline_at: int, line: int, buf: List[str]) -> Tuple[int, int]:
        """Append here-document bodies opened on this line; returns new (index, line)."""
        position = newline_at
        for match in HEREDOC.finditer(text):
            strip_tabs = match.group(1) == '-'
            delimiter = match.group(3)
            opened_at = line
            while True:
                start = position + 1
                if start >= len(self.body):
                    raise self.error(opened_at, f"unterminated here-document '{delimiter}'")
                end = self.body.find('\n', start)
                if end == -1:
                    end = len(self.body)
                content = self.body[start:end]
                buf.append('\n' + content)
                line += 1
                position = end
                candidate = content.lstrip('\t') if strip_tabs else content
                if candidate == delimiter:
                    break
        return position, line

    @staticmethod
    def _split_keywords(statements: List[Statement]) -> List[Statement]:
        """Separate leading then/do/else from the command that follows them."""
        result: List[Statement] = []
        for statement in statements:
            text = statement.text
            while True:
                word = first_word(text)
                rest = text[len(word):].strip()
                if word in LEADING_KEYWORDS and rest:
                    result.append(Statement(word, statement.line))
                    text = rest
                    continue
                break
            result.append(Statement(text, statement.line))
        return result


class FunctionConverter:
    """
    Converts a shell function into a workflow.

    Conversion never executes anything; unsupported or unbalanced constructs
    raise ConversionParseError naming the offending script line.
    """

    def __init__(self, approve_dangerous: bool = False, var_defaults: Optional[Dict[str, str]] = None):
        """
        Initialize the converter.

        Args:
            approve_dangerous: Gate destructive or production-targeting statements
                behind an approval prompt
            var_defaults: Default values for variables, making them optional
        """
        self.approve_dangerous = approve_dangerous
        self.var_defaults = dict(var_defaults or {})

    def convert_file(self, script_path: Path, function_name: str, **kwargs) -> Workflow:
        """Read a script and convert one of its functions."""
        script_text = Path(script_path).read_text(encoding='utf-8')
        return self.convert(script_text, function_name, **kwargs)

    def convert(
        self,
        script_text: str,
        function_name: str,
        workflow_name: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None
    ) -> Workflow:
        """
        Convert a function into a workflow.

        Args:
            script_text: Full script containing the function
            function_name: Function to convert
            workflow_name: Workflow name (default: the function name)
            description: Workflow description
            tags: Workflow tags

        Returns:
            Workflow with the converted steps and inferred variables

        Raises:
            FunctionNotFoundError: If the function is not defined
            ConversionParseError: On unbalanced or unsupported constructs
        """
        body, body_line = extract_function(script_text, function_name)
        source_lines = script_text.splitlines()

        statements = StatementSplitter(body, body_line, source_lines).split()
        parameters = _Parameters()
        statements = parameters.bind(statements)
        parameters.scan(statements)
        statements = [Statement(parameters.rewrite(s.text), s.line) for s in statements]

        parser = _BlockParser(statements, source_lines, self.approve_dangerous, parameters)
        steps = parser.parse()

        variables = parameters.variables()
        for name, value in self.var_defaults.items():
            existing = next((v for v in variables if v.name == name), None)
            if existing is None:
                variables.append(Variable(name=name, description=f"Value for {name}",
                                          default_value=value, required=False))
            else:
                existing.default_value = value
                existing.required = False

        workflow = Workflow(
            name=workflow_name or function_name,
            description=description or f"Converted from shell function '{function_name}'",
            steps=steps,
            variables=variables,
            tags=list(tags or []),
        )
        logger.info(f"Converted function '{function_name}' into {len(steps)} steps "
                    f"and {len(variables)} variables")
        return workflow


class _Parameters:
    """Tracks positional parameters and the variables they map to."""

    def __init__(self):
        self.names: Dict[int, str] = {}
        self.defaults: Dict[int, Optional[str]] = {}
        self.implicit: Set[int] = set()

    def bind(self, statements: List[Statement]) -> List[Statement]:
        """Drop assignments that only bind positional parameters, recording the names."""
        result = []
        for statement in statements:
            remaining = self._bind_statement(statement.text)
            if remaining is None:
                result.append(statement)
            elif remaining:
                result.append(Statement(remaining, statement.line))
        return result

    def _bind_statement(self, text: str) -> Optional[str]:
        """
        Returns:
            None if the statement binds nothing, otherwise the text left over
            after removing the bindings (possibly empty)
        """
        declaration = DECLARATION.match(text)
        if declaration:
            words = SHELL_WORD.findall(declaration.group(3) or "")
        elif ASSIGNMENT.match(text) and len(SHELL_WORD.findall(text)) == 1:
            words = [text]
        else:
            return None

        bound_any = False
        left = []
        for word in words:
            assignment = ASSIGNMENT.match(word)
            value = POSITIONAL_VALUE.match(assignment.group(2)) if assignment else None
            if value is None:
                left.append(word)
                continue
            number = int(value.group('bare') or value.group('braced'))
            if number in self.names:
                left.append(word)
                continue
            self.names[number] = assignment.group(1)
            default = value.group('default')
            self.defaults[number] = _strip_quotes(default) if default is not None else None
            bound_any = True

        if not bound_any:
            return None
        if not left:
            return ""
        if declaration:
            return f"{declaration.group(1)}{declaration.group(2)} {' '.join(left)}"
        return ' '.join(left)

    def scan(self, statements: List[Statement]):
        """Register every referenced parameter so $# and $@ see the full count."""
        for statement in statements:
            for match in POSITIONAL_REFERENCE.finditer(statement.text):
                self.name_for(int(match.group(1) or match.group(3)), match.group(2))

    def name_for(self, number: int, default: Optional[str] = None) -> str:
        if number in self.names:
            return self.names[number]
        self.implicit.add(number)
        if default is not None and self.defaults.get(number) is None:
            self.defaults[number] = _strip_quotes(default)
        return f"param{number}"

    def rewrite(self, text: str) -> str:
        """Replace positional references with {{ name }} tokens."""
        def replace(match):
            number = int(match.group(1) or match.group(3))
            return "{{ " + self.name_for(number, match.group(2)) + " }}"

        text = POSITIONAL_REFERENCE.sub(replace, text)

        count = self.count()
        if count:
            tokens = ["{{ " + self.name_for(n) + " }}" for n in range(1, count + 1)]

            def replace_all(match):
                if match.group(0).startswith('"'):
                    return ' '.join(f'"{token}"' for token in tokens)
                return ' '.join(tokens)

            text = ALL_ARGUMENTS.sub(replace_all, text)
        # Every parameter is supplied through a variable
        return ARGUMENT_COUNT.sub(str(count), text)

    def count(self) -> int:
        numbers = set(self.names) | self.implicit
        return max(numbers) if numbers else 0

    def variables(self) -> List[Variable]:
        result = []
        for number in range(1, self.count() + 1):
            if number not in self.names and number not in self.implicit:
                continue
            default = self.defaults.get(number)
            result.append(Variable(
                name=self.names.get(number, f"param{number}"),
                description=f"Function parameter ${number}",
                default_value=default,
                required=default is None,
            ))
        return result


class _NameAllocator:
    """Keeps step names unique within one block."""

    def __init__(self):
        self.counts: Dict[str, int] = {}

    def unique(self, name: str) -> str:
        count = self.counts.get(name, 0) + 1
        self.counts[name] = count
        return name if count == 1 else f"{name} ({count})"


class _BlockParser:
    """Recursive-descent parser from statements to steps."""

    def __init__(self, statements: List[Statement], source_lines: List[str],
                 approve_dangerous: bool, parameters: _Parameters):
        self.statements = statements
        self.source_lines = source_lines
        self.approve_dangerous = approve_dangerous
        self.parameters = parameters
        self.index = 0

    def error(self, statement: Statement, message: str) -> ConversionParseError:
        line = statement.line
        text = self.source_lines[line - 1] if 0 < line <= len(self.source_lines) else statement.text
        return ConversionParseError(line, text, message)

    def parse(self) -> List[Step]:
        steps, _ = self.parse_block(set(), opener=None)
        return steps

    def parse_block(self, stops: Set[str], opener: Optional[Statement]) -> Tuple[List[Step], Optional[Statement]]:
        """
        Parse statements until one whose keyword is in stops.

        Returns:
            (steps, the stopping statement), the stopping statement consumed
        """
        steps: List[Step] = []
        names = _NameAllocator()

        while self.index < len(self.statements):
            statement = self.statements[self.index]
            keyword = statement.keyword
            if keyword in stops:
                self.index += 1
                return steps, statement
            if keyword in CLOSERS:
                raise self.error(statement, f"unexpected '{keyword}'")

            self.index += 1
            step = self.parse_statement(statement, keyword)
            if step is not None:
                step.name = names.unique(step.name)
                steps.append(step)

        if opener is not None:
            raise self.error(opener, f"unterminated '{opener.keyword}'")
        return steps, None

    def expect(self, keyword: str, opener: Statement):
        if self.index >= len(self.statements) or self.statements[self.index].text != keyword:
            raise self.error(opener, f"expected '{keyword}'")
        self.index += 1

    def check_closer(self, closer: Statement, keyword: str):
        if closer.text != keyword:
            raise self.error(closer, f"redirection or pipe after '{keyword}' is not supported")

    def parse_statement(self, statement: Statement, keyword: str) -> Optional[Step]:
        text = statement.text

        if keyword == 'if':
            return self.parse_if(statement)
        if keyword in ('while', 'until'):
            return self.parse_while(statement, negate=(keyword == 'until'))
        if keyword == 'for':
            return self.parse_for(statement)
        if keyword == 'case':
            return self.parse_case(statement)
        if keyword in ('return', 'exit'):
            return self.parse_return(statement)
        if keyword == 'select':
            raise self.error(statement, "'select' is not supported")
        if keyword == 'shift':
            raise self.error(statement, "shifting positional parameters is not supported")
        if FUNCTION_DEFINITION.match(text):
            raise self.error(statement, "nested function definitions are not supported")
        if keyword in ('local', 'declare', 'typeset', 'readonly'):
            text = self.convert_declaration(text)
            if not text:
                return None

        return Step.new_command(
            name=f"Execute: {_shorten(text)}",
            command=text,
            description="Execute shell command",
            require_approval=self.approve_dangerous and is_dangerous(text),
        )

    def convert_declaration(self, text: str) -> str:
        """`local x=1` becomes `x=1`; other declarations become global `declare`."""
        match = DECLARATION.match(text)
        if match is None:
            return text
        keyword, flags, rest = match.group(1), match.group(2) or "", match.group(3) or ""
        words = SHELL_WORD.findall(rest)
        if not words:
            return ""
        if keyword == 'local' and not flags.strip() and len(words) == 1 and ASSIGNMENT.match(words[0]):
            return words[0]
        kept = [flag for flag in flags.split() if flag.strip('-') in ('a', 'A', 'i')]
        return ' '.join(['declare'] + kept + words)

    def parse_if(self, statement: Statement, opener: Optional[Statement] = None) -> Step:
        opener = opener or statement
        condition = statement.text[len(statement.keyword):].strip()
        if not condition:
            raise self.error(statement, f"missing condition after '{statement.keyword}'")
        self.expect('then', statement)

        then_steps, closer = self.parse_block({'elif', 'else', 'fi'}, opener)
        assert closer is not None
        else_steps = None
        if closer.keyword == 'elif':
            # The nested conditional consumes the shared 'fi'
            else_steps = [self.parse_if(closer, opener)]
        elif closer.keyword == 'else':
            if closer.text != 'else':
                raise self.error(closer, "unexpected text after 'else'")
            else_steps, fi = self.parse_block({'fi'}, opener)
            assert fi is not None
            self.check_closer(fi, 'fi')
        else:
            self.check_closer(closer, 'fi')

        step = Step.new_conditional(
            name=f"Check: {_shorten(condition)}",
            condition=Expression(condition),
            then_steps=then_steps,
            else_steps=else_steps,
            description=f"Check condition: {condition}",
        )
        step.require_approval = self.approve_dangerous and is_dangerous(condition)
        return step

    def parse_while(self, statement: Statement, negate: bool) -> Step:
        condition = statement.text[len(statement.keyword):].strip()
        if not condition:
            raise self.error(statement, f"missing condition after '{statement.keyword}'")
        self.expect('do', statement)
        body, done = self.parse_block({'done'}, statement)
        assert done is not None
        self.check_closer(done, 'done')

        if negate:
            condition = f"! ( {condition} )"
        return Step.new_while(
            name=f"While {_shorten(condition)}",
            condition=Expression(condition),
            steps=body,
            description=f"Loop while: {condition}",
        )

    def parse_for(self, statement: Statement) -> Step:
        if statement.text.startswith('for ((') or statement.text.startswith('for(('):
            raise self.error(statement, "C-style for loops are not supported")
        match = re.match(r'^for\s+([A-Za-z_][A-Za-z0-9_]*)(\s+in\b(.*))?$', statement.text, re.DOTALL)
        if match is None:
            raise self.error(statement, "malformed for loop")
        variable = match.group(1)
        if match.group(2) is not None:
            items = match.group(3).strip()
        else:
            # `for x` iterates over the function's arguments
            items = self.parameters.rewrite('"$@"') if self.parameters.count() else ""

        self.expect('do', statement)
        body, done = self.parse_block({'done'}, statement)
        assert done is not None
        self.check_closer(done, 'done')

        return Step.new_for_each(
            name=f"For each {variable}",
            variable=variable,
            values_source=items,
            steps=body,
            description=f"Iterate {variable} over {items}",
        )

    def case_variable(self, statement: Statement, word: str) -> str:
        word = _strip_quotes(word)
        match = TEMPLATE_NAME.match(word) or SHELL_VARIABLE.match(word)
        if match is None:
            raise self.error(statement, f"case on '{word}' is not supported; only variables can be matched")
        return match.group(1)

    def parse_case(self, statement: Statement) -> Step:
        match = re.match(r'^case\s+(.+?)\s+in(?:\s+(.*))?$', statement.text, re.DOTALL)
        if match is None:
            raise self.error(statement, "malformed case statement")
        variable = self.case_variable(statement, match.group(1))
        if match.group(2):
            self.statements.insert(self.index, Statement(match.group(2).strip(), statement.line))

        cases: List[BranchCase] = []
        default_case: Optional[List[Step]] = None

        while True:
            if self.index >= len(self.statements):
                raise self.error(statement, "unterminated 'case'")
            arm = self.statements[self.index]
            if arm.keyword == 'esac':
                self.check_closer(arm, 'esac')
                self.index += 1
                break
            if arm.text == ';;':
                self.index += 1
                continue

            labels, rest = self.split_case_label(arm)
            self.index += 1
            if rest:
                self.statements.insert(self.index, Statement(rest, arm.line))

            body, closer = self.parse_block({';;', 'esac'}, statement)
            assert closer is not None
            if closer.keyword == 'esac':
                self.index -= 1

            for position, label in enumerate(labels):
                steps = body if position == 0 else copy.deepcopy(body)
                if label == '*':
                    if default_case is None:
                        default_case = steps
                elif all(case.value != label for case in cases):
                    cases.append(BranchCase(value=label, steps=steps))

        return Step.new_branch(
            name=f"Branch on {variable}",
            variable=variable,
            cases=cases,
            default_case=default_case,
            description=f"Branch based on variable: {variable}",
        )

    def split_case_label(self, arm: Statement) -> Tuple[List[str], str]:
        """Split `a|b) cmd` into (['a', 'b'], 'cmd')."""
        text = arm.text
        if text.startswith('('):
            text = text[1:]
        quote = None
        for i, ch in enumerate(text):
            if quote:
                if ch == quote:
                    quote = None
            elif ch in ('"', "'"):
                quote = ch
            elif ch == ')':
                labels = [_strip_quotes(label) for label in text[:i].split('|')]
                if not all(labels):
                    break
                return labels, text[i + 1:].strip()
        raise self.error(arm, "expected a case pattern")

    def parse_return(self, statement: Statement) -> Step:
        argument = statement.text[len(statement.keyword):].strip()

        if not argument:
            return Step.new_conditional(
                name="Return",
                condition=Expression("true"),
                then_steps=[],
                action=Action(ActionKind.BREAK),
                description="Return from the function with the last exit status",
            )

        if re.fullmatch(r'-?\d+', argument):
            code = int(argument)
            return Step.new_conditional(
                name=f"Return {code}",
                condition=Expression("true"),
                then_steps=[],
                action=Action(ActionKind.RETURN, code),
                description=f"Return from the function with status {code}",
            )

        # Computed status: set it as $? and break with it
        status = Step.new_command(
            name="Set return status",
            command=f"exit {argument}",
            description="Set the function's return status",
            continue_on_error=True,
        )
        return Step.new_conditional(
            name=f"Return {_shorten(argument, 30)}",
            condition=Expression("true"),
            then_steps=[status],
            action=Action(ActionKind.BREAK),
            description=f"Return from the function with status {argument}",
        )


def convert_function(script_text: str, function_name: str, approve_dangerous: bool = False,
                     var_defaults: Optional[Dict[str, str]] = None, **kwargs) -> Workflow:
    """Convert a function with a one-off converter."""
    converter = FunctionConverter(approve_dangerous=approve_dangerous, var_defaults=var_defaults)
    return converter.convert(script_text, function_name, **kwargs)
