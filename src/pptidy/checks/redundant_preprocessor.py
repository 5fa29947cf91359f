"""Find nested conditional directives that re-test an enclosing condition.

``#ifdef FOO`` inside an open ``#ifdef FOO`` (or ``#if X`` inside ``#if X``)
is flagged at the inner directive, with a note at the outer one. An
``#ifdef``/``#ifndef`` of a name nested inside the opposite test of the same
name is flagged too. Only directives in the main file are reported; headers
are still tracked so their directives nest correctly and can be the target
of a note.
"""

from dataclasses import dataclass
from enum import Enum

from pptidy.checks.base import Check
from pptidy.diag import Severity
from pptidy.preprocessor import PPCallbacks, Preprocessor
from pptidy.source import SourceLocation, SourceManager, SourceRange


class DirectiveKind(Enum):
    IF = "#if"
    IFDEF = "#ifdef"
    IFNDEF = "#ifndef"


@dataclass(frozen=True)
class DirectiveEntry:
    location: SourceLocation
    condition: str


class RedundantPreprocessorCallbacks(PPCallbacks):
    def __init__(self, check: Check, sources: SourceManager) -> None:
        self._check = check
        self._sources = sources
        self._stacks: dict[DirectiveKind, list[DirectiveEntry]] = {
            kind: [] for kind in DirectiveKind
        }

    def open_directives(self, kind: DirectiveKind) -> tuple[DirectiveEntry, ...]:
        return tuple(self._stacks[kind])

    def on_if(self, location: SourceLocation, condition: SourceRange) -> None:
        text = self._sources.get_source_text(condition)
        self._check_redundancy(location, text, DirectiveKind.IF, DirectiveKind.IF, store=True)

    def on_ifdef(self, location: SourceLocation, macro_name: str) -> None:
        self._check_redundancy(
            location, macro_name, DirectiveKind.IFDEF, DirectiveKind.IFDEF, store=True
        )
        self._check_redundancy(
            location, macro_name, DirectiveKind.IFDEF, DirectiveKind.IFNDEF, store=False
        )

    def on_ifndef(self, location: SourceLocation, macro_name: str) -> None:
        self._check_redundancy(
            location, macro_name, DirectiveKind.IFNDEF, DirectiveKind.IFNDEF, store=True
        )
        self._check_redundancy(
            location, macro_name, DirectiveKind.IFNDEF, DirectiveKind.IFDEF, store=False
        )

    def on_endif(self, location: SourceLocation, if_location: SourceLocation) -> None:
        for stack in self._stacks.values():
            if stack and stack[-1].location == if_location:
                stack.pop()

    def _check_redundancy(
        self,
        location: SourceLocation,
        condition: str,
        warning_kind: DirectiveKind,
        note_kind: DirectiveKind,
        *,
        store: bool,
    ) -> None:
        # note_kind names the stack searched; store pushes onto that same stack.
        stack = self._stacks[note_kind]
        if self._sources.is_in_main_file(location):
            for entry in stack:
                if entry.condition == condition:
                    self._check.diag(
                        location,
                        f"nested redundant {warning_kind.value}; consider removing it",
                    )
                    self._check.diag(
                        entry.location,
                        f"previous {note_kind.value} was here",
                        Severity.NOTE,
                    )
        if store:
            stack.append(DirectiveEntry(location, condition))


class RedundantPreprocessorCheck(Check):
    name = "readability-redundant-preprocessor"

    def register_pp_callbacks(self, preprocessor: Preprocessor) -> None:
        preprocessor.add_callbacks(RedundantPreprocessorCallbacks(self, preprocessor.sources))
