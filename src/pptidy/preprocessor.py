import dataclasses
import re
from dataclasses import dataclass
from pathlib import Path

from pptidy.expr import ConditionError, evaluate_condition
from pptidy.lexer import LexerError, Token, TokenKind, block_comment_open_after, lex_pp
from pptidy.options import CheckOptions, normalize_options
from pptidy.source import SourceLocation, SourceManager, SourceRange

_IDENT_RE = re.compile(r"[A-Za-z_$][\w$]*")
_DIRECTIVE_RE = re.compile(r"^[ \t\f\v]*#[ \t\f\v]*(?P<name>[A-Za-z_]\w*)(?P<body>.*)$", re.DOTALL)

_PP_UNKNOWN_DIRECTIVE = "PTY-PP-0101"
_PP_INCLUDE_NOT_FOUND = "PTY-PP-0102"
_PP_INVALID_IF_EXPR = "PTY-PP-0103"
_PP_INVALID_DIRECTIVE = "PTY-PP-0104"
_PP_INVALID_MACRO = "PTY-PP-0201"
_PP_INCLUDE_READ_ERROR = "PTY-PP-0301"
_PP_INCLUDE_TOO_DEEP = "PTY-PP-0302"

_MAX_INCLUDE_DEPTH = 200
_CONDITIONAL_DIRECTIVES = frozenset({"if", "ifdef", "ifndef", "elif", "else", "endif"})
_IGNORED_DIRECTIVES = frozenset({"line", "warning", "ident", "sccs", "assert", "unassert"})
_HAS_INCLUDE_OPERATORS = frozenset({"__has_include", "__has_include_next"})
_PREDEFINED_MACROS = (
    "__STDC__=1",
    "__STDC_HOSTED__=1",
    "__STDC_VERSION__=201112L",
)


class PreprocessorError(ValueError):
    def __init__(
        self,
        message: str,
        line: int | None = None,
        column: int | None = None,
        *,
        filename: str | None = None,
        code: str = _PP_INVALID_MACRO,
    ) -> None:
        if line is None or column is None:
            super().__init__(message)
        else:
            location = f"{filename}:{line}:{column}" if filename is not None else f"{line}:{column}"
            super().__init__(f"{message} at {location}")
        self.message = message
        self.line = line
        self.column = column
        self.filename = filename
        self.code = code


class PPCallbacks:
    """Receives directive events in the order the preprocessor meets them.

    Conditional directives are reported whether or not the enclosing region
    is active. Every hook does nothing by default.
    """

    def on_file_entered(self, filename: str, *, is_main: bool) -> None:
        pass

    def on_include(
        self,
        location: SourceLocation,
        include_name: str,
        *,
        is_angled: bool,
        path: str,
    ) -> None:
        pass

    def on_if(self, location: SourceLocation, condition: SourceRange) -> None:
        pass

    def on_ifdef(self, location: SourceLocation, macro_name: str) -> None:
        pass

    def on_ifndef(self, location: SourceLocation, macro_name: str) -> None:
        pass

    def on_elif(
        self, location: SourceLocation, condition: SourceRange, if_location: SourceLocation
    ) -> None:
        pass

    def on_else(self, location: SourceLocation, if_location: SourceLocation) -> None:
        pass

    def on_endif(self, location: SourceLocation, if_location: SourceLocation) -> None:
        pass


@dataclass(frozen=True)
class PreprocessResult:
    filename: str
    sources: SourceManager
    include_trace: tuple[str, ...]
    macro_table: tuple[str, ...]


@dataclass
class _ConditionalFrame:
    location: SourceLocation
    parent_active: bool
    active: bool
    branch_taken: bool
    saw_else: bool = False


@dataclass(frozen=True)
class _Macro:
    name: str
    replacement: tuple[Token, ...]
    parameters: tuple[str, ...] | None = None
    is_variadic: bool = False


@dataclass(frozen=True)
class _Directive:
    name: str
    body: str
    location: SourceLocation
    body_line: int
    body_column: int

    def body_start(self) -> SourceLocation:
        return SourceLocation(self.location.filename, self.body_line, self.body_column)


@dataclass(frozen=True)
class _IncludeTarget:
    path: Path
    search_index: int | None


def _macro_table_line(macro: _Macro) -> str:
    if macro.parameters is None:
        signature = macro.name
    else:
        params = list(macro.parameters)
        if macro.is_variadic:
            params.append("...")
        signature = f"{macro.name}({','.join(params)})"
    body = " ".join(str(token.lexeme) for token in macro.replacement)
    return f"{signature}={body}"


def _format_include_trace(
    source: str,
    line: int,
    include_name: str,
    include_path: str,
    is_angled: bool,
) -> str:
    delim_open, delim_close = ("<", ">") if is_angled else ('"', '"')
    return f"{source}:{line}: #include {delim_open}{include_name}{delim_close} -> {include_path}"


def _format_include_reference(include_name: str, is_angled: bool) -> str:
    if is_angled:
        return f"<{include_name}>"
    return f'"{include_name}"'


def preprocess_source(
    source: str,
    *,
    filename: str = "<input>",
    options: CheckOptions | None = None,
    callbacks: tuple[PPCallbacks, ...] = (),
) -> PreprocessResult:
    processor = Preprocessor(normalize_options(options))
    for callback in callbacks:
        processor.add_callbacks(callback)
    return processor.process(source, filename=filename)


class Preprocessor:
    def __init__(self, options: CheckOptions) -> None:
        self._options = options
        self._callbacks: list[PPCallbacks] = []
        self._sources = SourceManager()
        self._macros: dict[str, _Macro] = {}
        for define in (*_PREDEFINED_MACROS, *options.defines):
            macro = self._parse_cli_define(define)
            self._macros[macro.name] = macro
        for name in options.undefs:
            if _IDENT_RE.fullmatch(name) is None:
                raise PreprocessorError(f"Invalid macro name in -U: {name}")
            self._macros.pop(name, None)
        self._pragma_once_files: set[str] = set()
        self.include_trace: list[str] = []

    @property
    def sources(self) -> SourceManager:
        return self._sources

    def add_callbacks(self, callbacks: PPCallbacks) -> None:
        self._callbacks.append(callbacks)

    def process(self, source: str, *, filename: str) -> PreprocessResult:
        base_dir = self._source_dir(filename)
        for forced in self._options.forced_includes:
            target = self._resolve_forced_include(forced, base_dir)
            self._enter_include(
                target,
                SourceLocation(filename, 1),
                forced,
                is_angled=False,
                depth=1,
            )
        self._process_file(source, filename=filename, base_dir=base_dir, search_index=None, depth=0)
        return PreprocessResult(
            filename,
            self._sources,
            tuple(self.include_trace),
            tuple(_macro_table_line(macro) for _, macro in sorted(self._macros.items())),
        )

    def _source_dir(self, filename: str) -> Path | None:
        if filename in {"<input>", "<stdin>"}:
            return None
        return Path(filename).resolve().parent

    def _process_file(
        self,
        source: str,
        *,
        filename: str,
        base_dir: Path | None,
        search_index: int | None,
        depth: int,
    ) -> None:
        source = source.replace("\r\n", "\n")
        is_main = depth == 0
        self._sources.add_file(filename, source, is_main=is_main)
        for callback in self._callbacks:
            callback.on_file_entered(filename, is_main=is_main)
        lines = source.split("\n")
        stack: list[_ConditionalFrame] = []
        in_comment = False
        line_index = 0
        while line_index < len(lines):
            line = lines[line_index]
            match = None if in_comment else _DIRECTIVE_RE.match(line)
            if match is None:
                in_comment = block_comment_open_after(line, in_comment)
                line_index += 1
                continue
            first_line = line_index + 1
            directive_text = line
            while line_index + 1 < len(lines) and (
                directive_text.rstrip().endswith("\\")
                or block_comment_open_after(directive_text, False)
            ):
                line_index += 1
                directive_text += "\n" + lines[line_index]
            match = _DIRECTIVE_RE.match(directive_text)
            assert match is not None
            directive = _Directive(
                match.group("name"),
                match.group("body"),
                SourceLocation(filename, first_line, match.start("name") + 1),
                first_line,
                match.start("body") + 1,
            )
            if directive.name in _CONDITIONAL_DIRECTIVES:
                self._handle_conditional(directive, stack, base_dir=base_dir)
            elif _is_active(stack):
                self._handle_directive(
                    directive,
                    base_dir=base_dir,
                    search_index=search_index,
                    depth=depth,
                )
            line_index += 1
        if stack:
            location = stack[-1].location
            raise PreprocessorError(
                "Unterminated conditional directive",
                location.line,
                location.column,
                filename=location.filename,
                code=_PP_INVALID_DIRECTIVE,
            )

    def _handle_conditional(
        self,
        directive: _Directive,
        stack: list[_ConditionalFrame],
        *,
        base_dir: Path | None,
    ) -> None:
        name = directive.name
        location = directive.location
        if name == "if":
            parent_active = _is_active(stack)
            if parent_active:
                tokens = self._lex(directive)
                condition = self._eval_condition(tokens, directive, base_dir=base_dir)
                condition_range = _condition_range(directive, tokens)
            else:
                condition = False
                condition_range = self._skipped_condition_range(directive)
            stack.append(_ConditionalFrame(location, parent_active, condition, condition))
            for callback in self._callbacks:
                callback.on_if(location, condition_range)
            return
        if name in {"ifdef", "ifndef"}:
            parent_active = _is_active(stack)
            macro_name = self._macro_name_operand(directive, required=parent_active)
            condition = parent_active and (macro_name in self._macros) == (name == "ifdef")
            stack.append(_ConditionalFrame(location, parent_active, condition, condition))
            for callback in self._callbacks:
                if name == "ifdef":
                    callback.on_ifdef(location, macro_name)
                else:
                    callback.on_ifndef(location, macro_name)
            return
        if not stack:
            raise PreprocessorError(
                f"#{name} without #if",
                location.line,
                location.column,
                filename=location.filename,
                code=_PP_INVALID_DIRECTIVE,
            )
        frame = stack[-1]
        if name == "elif":
            if frame.saw_else:
                raise PreprocessorError(
                    "#elif after #else",
                    location.line,
                    location.column,
                    filename=location.filename,
                    code=_PP_INVALID_DIRECTIVE,
                )
            if not frame.parent_active or frame.branch_taken:
                frame.active = False
                condition_range = self._skipped_condition_range(directive)
            else:
                tokens = self._lex(directive)
                frame.active = self._eval_condition(tokens, directive, base_dir=base_dir)
                frame.branch_taken = frame.active
                condition_range = _condition_range(directive, tokens)
            for callback in self._callbacks:
                callback.on_elif(location, condition_range, frame.location)
            return
        if name == "else":
            if frame.saw_else:
                raise PreprocessorError(
                    "Duplicate #else",
                    location.line,
                    location.column,
                    filename=location.filename,
                    code=_PP_INVALID_DIRECTIVE,
                )
            frame.saw_else = True
            frame.active = frame.parent_active and not frame.branch_taken
            frame.branch_taken = True
            for callback in self._callbacks:
                callback.on_else(location, frame.location)
            return
        stack.pop()
        for callback in self._callbacks:
            callback.on_endif(location, frame.location)

    def _handle_directive(
        self,
        directive: _Directive,
        *,
        base_dir: Path | None,
        search_index: int | None,
        depth: int,
    ) -> None:
        name = directive.name
        location = directive.location
        if name == "define":
            self._handle_define(directive)
            return
        if name == "undef":
            self._macros.pop(self._macro_name_operand(directive, required=True), None)
            return
        if name in {"include", "include_next", "import"}:
            include_name, is_angled = self._parse_include_operand(directive)
            target = self._resolve_include(
                include_name,
                is_angled=is_angled,
                base_dir=base_dir,
                include_next_from=search_index if name == "include_next" else None,
            )
            if target is None:
                raise PreprocessorError(
                    f"Include not found: {_format_include_reference(include_name, is_angled)}",
                    location.line,
                    location.column,
                    filename=location.filename,
                    code=_PP_INCLUDE_NOT_FOUND,
                )
            self._enter_include(
                target,
                location,
                include_name,
                is_angled=is_angled,
                depth=depth + 1,
                once=name == "import",
            )
            return
        if name == "pragma":
            if directive.body.strip() == "once":
                self._pragma_once_files.add(location.filename)
            return
        if name == "error":
            raise PreprocessorError(
                directive.body.strip() or "#error",
                location.line,
                location.column,
                filename=location.filename,
                code=_PP_INVALID_DIRECTIVE,
            )
        if name in _IGNORED_DIRECTIVES:
            return
        raise PreprocessorError(
            f"Unknown preprocessor directive: #{name}",
            location.line,
            location.column,
            filename=location.filename,
            code=_PP_UNKNOWN_DIRECTIVE,
        )

    def _enter_include(
        self,
        target: _IncludeTarget,
        location: SourceLocation,
        include_name: str,
        *,
        is_angled: bool,
        depth: int,
        once: bool = False,
    ) -> None:
        include_path_text = str(target.path)
        if include_path_text in self._pragma_once_files:
            return
        if once:
            self._pragma_once_files.add(include_path_text)
        if depth > _MAX_INCLUDE_DEPTH:
            raise PreprocessorError(
                "#include nested too deeply",
                location.line,
                location.column,
                filename=location.filename,
                code=_PP_INCLUDE_TOO_DEEP,
            )
        self.include_trace.append(
            _format_include_trace(
                location.filename,
                location.line,
                include_name,
                include_path_text,
                is_angled,
            )
        )
        for callback in self._callbacks:
            callback.on_include(location, include_name, is_angled=is_angled, path=include_path_text)
        try:
            include_source = target.path.read_text(encoding="utf-8")
        except (OSError, UnicodeError) as error:
            raise PreprocessorError(
                f"Unable to read include: {include_name}: {error}",
                location.line,
                location.column,
                filename=location.filename,
                code=_PP_INCLUDE_READ_ERROR,
            ) from error
        self._process_file(
            include_source,
            filename=include_path_text,
            base_dir=target.path.parent,
            search_index=target.search_index,
            depth=depth,
        )

    def _lex(self, directive: _Directive, *, header_names: bool = False) -> list[Token]:
        try:
            return lex_pp(
                directive.body,
                line=directive.body_line,
                column=directive.body_column,
                header_names=header_names,
            )
        except LexerError as error:
            raise PreprocessorError(
                str(error).removesuffix(f" at {error.line}:{error.column}"),
                error.line,
                error.column,
                filename=directive.location.filename,
                code=_PP_INVALID_DIRECTIVE,
            ) from error

    def _skipped_condition_range(self, directive: _Directive) -> SourceRange:
        # Skipped groups need not hold valid tokens.
        try:
            tokens = self._lex(directive)
        except PreprocessorError:
            return _raw_condition_range(directive)
        return _condition_range(directive, tokens)

    def _macro_name_operand(self, directive: _Directive, *, required: bool) -> str:
        try:
            tokens = self._lex(directive)
        except PreprocessorError:
            if required:
                raise
            match = _IDENT_RE.match(directive.body.lstrip())
            return match.group() if match else ""
        first = tokens[0]
        if first.kind == TokenKind.IDENT:
            return str(first.lexeme)
        if not required:
            return ""
        raise PreprocessorError(
            "Expected macro name",
            first.line,
            first.column,
            filename=directive.location.filename,
            code=_PP_INVALID_DIRECTIVE,
        )

    def _handle_define(self, directive: _Directive) -> None:
        tokens = self._lex(directive)[:-1]
        if not tokens or tokens[0].kind != TokenKind.IDENT:
            start = directive.body_start()
            raise PreprocessorError(
                "Macro name missing",
                tokens[0].line if tokens else start.line,
                tokens[0].column if tokens else start.column,
                filename=directive.location.filename,
                code=_PP_INVALID_MACRO,
            )
        name_token = tokens[0]
        name = str(name_token.lexeme)
        rest = tokens[1:]
        if (
            rest
            and rest[0].lexeme == "("
            and rest[0].line == name_token.end_line
            and rest[0].column == name_token.end_column
        ):
            parsed = _parse_macro_parameters(rest)
            if parsed is None:
                raise PreprocessorError(
                    f"Invalid parameter list for macro {name}",
                    rest[0].line,
                    rest[0].column,
                    filename=directive.location.filename,
                    code=_PP_INVALID_MACRO,
                )
            parameters, is_variadic, consumed = parsed
            self._macros[name] = _Macro(
                name, tuple(rest[consumed:]), tuple(parameters), is_variadic
            )
            return
        self._macros[name] = _Macro(name, tuple(rest))

    def _parse_include_operand(self, directive: _Directive) -> tuple[str, bool]:
        tokens = self._lex(directive, header_names=True)
        first = tokens[0]
        if first.kind == TokenKind.HEADER_NAME:
            lexeme = str(first.lexeme)
            return lexeme[1:-1], lexeme.startswith("<")
        expanded = self._expand_macros(tokens[:-1], directive)
        operand = _header_name_from_tokens(expanded)
        if operand is None:
            raise PreprocessorError(
                f"Invalid #{directive.name} directive",
                directive.location.line,
                directive.location.column,
                filename=directive.location.filename,
                code=_PP_INVALID_DIRECTIVE,
            )
        return operand

    def _resolve_include(
        self,
        include_name: str,
        *,
        is_angled: bool,
        base_dir: Path | None,
        include_next_from: int | None = None,
    ) -> _IncludeTarget | None:
        search_roots: list[tuple[Path, int | None]] = []
        if include_next_from is None and not is_angled and base_dir is not None:
            search_roots.append((base_dir, None))
        option_roots = (*self._options.include_dirs, *self._options.system_include_dirs)
        start_index = 0 if include_next_from is None else include_next_from + 1
        for index, root in enumerate(option_roots[start_index:], start=start_index):
            search_roots.append((Path(root), index))
        for root, index in search_roots:
            candidate = root / include_name
            if candidate.is_file():
                return _IncludeTarget(candidate.resolve(), index)
        return None

    def _resolve_forced_include(self, include_name: str, base_dir: Path | None) -> _IncludeTarget:
        candidate = Path(include_name)
        if candidate.is_file():
            return _IncludeTarget(candidate.resolve(), None)
        target = self._resolve_include(include_name, is_angled=False, base_dir=base_dir)
        if target is None:
            raise PreprocessorError(
                f"Include not found: {_format_include_reference(include_name, False)}",
                code=_PP_INCLUDE_NOT_FOUND,
            )
        return target

    def _parse_cli_define(self, define: str) -> _Macro:
        if "=" in define:
            name, replacement = define.split("=", 1)
        else:
            name, replacement = define, "1"
        if _IDENT_RE.fullmatch(name) is None:
            raise PreprocessorError(f"Invalid macro definition: {define}", code=_PP_INVALID_MACRO)
        try:
            tokens = lex_pp(replacement)
        except LexerError as error:
            raise PreprocessorError(
                f"Invalid macro definition: {define}", code=_PP_INVALID_MACRO
            ) from error
        return _Macro(name, tuple(tokens[:-1]))

    def _eval_condition(
        self,
        tokens: list[Token],
        directive: _Directive,
        *,
        base_dir: Path | None,
    ) -> bool:
        resolved = self._replace_operators(tokens[:-1], directive, base_dir=base_dir)
        expanded = self._expand_macros(resolved, directive)
        try:
            return evaluate_condition([*expanded, tokens[-1]])
        except ConditionError as error:
            raise PreprocessorError(
                f"Invalid #{directive.name} expression: {error.message}",
                directive.location.line,
                directive.location.column,
                filename=directive.location.filename,
                code=_PP_INVALID_IF_EXPR,
            ) from error

    def _replace_operators(
        self,
        tokens: list[Token],
        directive: _Directive,
        *,
        base_dir: Path | None,
    ) -> list[Token]:
        # defined and __has_include are resolved before macro expansion.
        out: list[Token] = []
        index = 0
        while index < len(tokens):
            token = tokens[index]
            if token.kind == TokenKind.IDENT and token.lexeme == "defined":
                name, index = self._defined_operand(tokens, index + 1, directive)
                is_defined = name in self._macros or name in _HAS_INCLUDE_OPERATORS
                out.append(_number_token(is_defined, token))
                continue
            if token.kind == TokenKind.IDENT and token.lexeme in _HAS_INCLUDE_OPERATORS:
                operand, index = self._has_include_operand(tokens, index + 1, directive)
                include_name, is_angled = operand
                present = self._resolve_include(include_name, is_angled=is_angled, base_dir=base_dir)
                out.append(_number_token(present is not None, token))
                continue
            out.append(token)
            index += 1
        return out

    def _defined_operand(
        self, tokens: list[Token], index: int, directive: _Directive
    ) -> tuple[str, int]:
        parenthesized = index < len(tokens) and tokens[index].lexeme == "("
        if parenthesized:
            index += 1
        if index >= len(tokens) or tokens[index].kind != TokenKind.IDENT:
            raise self._invalid_expression(directive, "expected macro name after 'defined'")
        name = str(tokens[index].lexeme)
        index += 1
        if parenthesized:
            if index >= len(tokens) or tokens[index].lexeme != ")":
                raise self._invalid_expression(directive, "expected ')' after 'defined'")
            index += 1
        return name, index

    def _has_include_operand(
        self, tokens: list[Token], index: int, directive: _Directive
    ) -> tuple[tuple[str, bool], int]:
        if index >= len(tokens) or tokens[index].lexeme != "(":
            raise self._invalid_expression(directive, "expected '(' after __has_include")
        depth = 0
        operand: list[Token] = []
        for cursor in range(index, len(tokens)):
            token = tokens[cursor]
            if token.lexeme == "(":
                depth += 1
                if depth == 1:
                    continue
            elif token.lexeme == ")":
                depth -= 1
                if depth == 0:
                    header = _header_name_from_tokens(
                        self._expand_macros(operand, directive)
                    )
                    if header is None:
                        break
                    return header, cursor + 1
            operand.append(token)
        raise self._invalid_expression(directive, "invalid __has_include operand")

    def _expand_macros(
        self,
        tokens: list[Token],
        directive: _Directive,
        hidden: frozenset[str] = frozenset(),
    ) -> list[Token]:
        out: list[Token] = []
        index = 0
        while index < len(tokens):
            token = tokens[index]
            macro = None
            if token.kind == TokenKind.IDENT and token.lexeme not in hidden:
                macro = self._macros.get(str(token.lexeme))
            if macro is None:
                out.append(token)
                index += 1
                continue
            next_hidden = hidden | {macro.name}
            if macro.parameters is None:
                replacement = [_relocate(item, token) for item in macro.replacement]
                out.extend(self._expand_macros(replacement, directive, next_hidden))
                index += 1
                continue
            parsed = self._parse_macro_invocation(tokens, index + 1, directive)
            if parsed is None:
                out.append(token)
                index += 1
                continue
            args, index = parsed
            replacement = self._substitute_arguments(macro, args, token, directive, hidden)
            out.extend(self._expand_macros(replacement, directive, next_hidden))
        return out

    def _parse_macro_invocation(
        self, tokens: list[Token], index: int, directive: _Directive
    ) -> tuple[list[list[Token]], int] | None:
        if index >= len(tokens) or tokens[index].lexeme != "(":
            return None
        args: list[list[Token]] = []
        current: list[Token] = []
        depth = 1
        index += 1
        while index < len(tokens):
            token = tokens[index]
            if token.lexeme == "(":
                depth += 1
            elif token.lexeme == ")":
                depth -= 1
                if depth == 0:
                    args.append(current)
                    return args, index + 1
            elif token.lexeme == "," and depth == 1:
                args.append(current)
                current = []
                index += 1
                continue
            current.append(token)
            index += 1
        raise self._invalid_macro(directive, "Unterminated macro invocation")

    def _substitute_arguments(
        self,
        macro: _Macro,
        args: list[list[Token]],
        origin: Token,
        directive: _Directive,
        hidden: frozenset[str],
    ) -> list[Token]:
        assert macro.parameters is not None
        expected = len(macro.parameters)
        if expected == 0 and args == [[]]:
            args = []
        if macro.is_variadic:
            if len(args) < expected:
                raise self._invalid_macro(directive, f"Insufficient arguments to macro {macro.name}")
        elif len(args) != expected:
            raise self._invalid_macro(directive, f"Argument count mismatch for macro {macro.name}")
        raw_args = dict(zip(macro.parameters, args))
        if macro.is_variadic:
            raw_args["__VA_ARGS__"] = _join_arguments(args[expected:], origin)
        expanded_args = {
            name: self._expand_macros(arg, directive, hidden) for name, arg in raw_args.items()
        }
        replacement = [_relocate(item, origin) for item in macro.replacement]
        pieces: list[Token] = []
        index = 0
        while index < len(replacement):
            token = replacement[index]
            if (
                token.lexeme == "#"
                and index + 1 < len(replacement)
                and replacement[index + 1].lexeme in raw_args
            ):
                stringized = _stringize(raw_args[str(replacement[index + 1].lexeme)])
                pieces.append(
                    dataclasses.replace(origin, kind=TokenKind.STRING_LITERAL, lexeme=stringized)
                )
                index += 2
                continue
            if token.kind == TokenKind.IDENT and token.lexeme in raw_args:
                name = str(token.lexeme)
                pasting = (index > 0 and replacement[index - 1].lexeme == "##") or (
                    index + 1 < len(replacement) and replacement[index + 1].lexeme == "##"
                )
                argument = raw_args[name] if pasting else expanded_args[name]
                if argument:
                    pieces.extend(argument)
                elif pasting:
                    pieces.append(dataclasses.replace(origin, kind=TokenKind.OTHER, lexeme=""))
                index += 1
                continue
            pieces.append(token)
            index += 1
        return self._paste_tokens(pieces, directive)

    def _paste_tokens(self, tokens: list[Token], directive: _Directive) -> list[Token]:
        out = list(tokens)
        index = 0
        while index < len(out):
            if out[index].lexeme != "##":
                index += 1
                continue
            if index == 0 or index + 1 >= len(out):
                raise self._invalid_macro(directive, "Invalid token paste")
            left, right = out[index - 1], out[index + 1]
            text = f"{left.lexeme}{right.lexeme}"
            if text:
                try:
                    lexed = lex_pp(text)[:-1]
                except LexerError as error:
                    raise self._invalid_macro(directive, "Invalid token paste") from error
                if len(lexed) != 1:
                    raise self._invalid_macro(directive, f"Pasting does not give a token: {text}")
                pasted = dataclasses.replace(left, kind=lexed[0].kind, lexeme=lexed[0].lexeme)
            else:
                pasted = left
            out[index - 1 : index + 2] = [pasted]
        return [token for token in out if token.lexeme != ""]

    def _invalid_macro(self, directive: _Directive, message: str) -> PreprocessorError:
        return PreprocessorError(
            message,
            directive.location.line,
            directive.location.column,
            filename=directive.location.filename,
            code=_PP_INVALID_MACRO,
        )

    def _invalid_expression(self, directive: _Directive, detail: str) -> PreprocessorError:
        return PreprocessorError(
            f"Invalid #{directive.name} expression: {detail}",
            directive.location.line,
            directive.location.column,
            filename=directive.location.filename,
            code=_PP_INVALID_IF_EXPR,
        )


def _condition_range(directive: _Directive, tokens: list[Token]) -> SourceRange:
    if len(tokens) == 1:
        start = directive.body_start()
        return SourceRange(start, start)
    filename = directive.location.filename
    first, last = tokens[0], tokens[-2]
    return SourceRange(
        SourceLocation(filename, first.line, first.column),
        SourceLocation(filename, last.end_line, last.end_column),
    )


def _raw_condition_range(directive: _Directive) -> SourceRange:
    body = directive.body
    stripped = body.strip()
    if not stripped:
        start = directive.body_start()
        return SourceRange(start, start)
    begin = len(body) - len(body.lstrip())
    return SourceRange(
        _body_location(directive, begin),
        _body_location(directive, begin + len(stripped)),
    )


def _body_location(directive: _Directive, offset: int) -> SourceLocation:
    prefix = directive.body[:offset]
    newlines = prefix.count("\n")
    if newlines == 0:
        column = directive.body_column + offset
    else:
        column = offset - prefix.rfind("\n")
    return SourceLocation(directive.location.filename, directive.body_line + newlines, column)


def _join_arguments(args: list[list[Token]], origin: Token) -> list[Token]:
    out: list[Token] = []
    for index, arg in enumerate(args):
        if index > 0:
            out.append(dataclasses.replace(origin, kind=TokenKind.PUNCTUATOR, lexeme=","))
        out.extend(arg)
    return out


def _stringize(tokens: list[Token]) -> str:
    text = " ".join(str(token.lexeme) for token in tokens)
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _parse_macro_parameters(tokens: list[Token]) -> tuple[list[str], bool, int] | None:
    params: list[str] = []
    is_variadic = False
    index = 1
    expect_name = True
    while index < len(tokens):
        token = tokens[index]
        index += 1
        if token.lexeme == ")":
            if expect_name and params:
                return None
            return params, is_variadic, index
        if is_variadic:
            return None
        if expect_name:
            if token.kind == TokenKind.IDENT:
                params.append(str(token.lexeme))
            elif token.lexeme == "...":
                is_variadic = True
            else:
                return None
            expect_name = False
            continue
        if token.lexeme != ",":
            return None
        expect_name = True
    return None


def _header_name_from_tokens(tokens: list[Token]) -> tuple[str, bool] | None:
    if len(tokens) == 1 and tokens[0].kind in {TokenKind.STRING_LITERAL, TokenKind.HEADER_NAME}:
        lexeme = str(tokens[0].lexeme)
        return lexeme[1:-1], lexeme.startswith("<")
    if len(tokens) >= 3 and tokens[0].lexeme == "<" and tokens[-1].lexeme == ">":
        return "".join(str(token.lexeme) for token in tokens[1:-1]), True
    return None


def _number_token(value: bool, origin: Token) -> Token:
    return dataclasses.replace(origin, kind=TokenKind.PP_NUMBER, lexeme="1" if value else "0")


def _relocate(token: Token, origin: Token) -> Token:
    return dataclasses.replace(
        token,
        line=origin.line,
        column=origin.column,
        end_line=origin.end_line,
        end_column=origin.end_column,
    )


def _is_active(stack: list[_ConditionalFrame]) -> bool:
    return all(frame.active for frame in stack)
