from dataclasses import dataclass


@dataclass(frozen=True)
class SourceLocation:
    filename: str
    line: int
    column: int = 1

    def __str__(self) -> str:
        return f"{self.filename}:{self.line}:{self.column}"


@dataclass(frozen=True)
class SourceRange:
    begin: SourceLocation
    end: SourceLocation


class _FileBuffer:
    def __init__(self, text: str) -> None:
        self.text = text
        self._line_starts = [0]
        for index, ch in enumerate(text):
            if ch == "\n":
                self._line_starts.append(index + 1)

    def offset(self, line: int, column: int) -> int:
        if line < 1 or line > len(self._line_starts):
            raise ValueError(f"Line out of range: {line}")
        return min(self._line_starts[line - 1] + column - 1, len(self.text))


class SourceManager:
    """Owns the text of every file entered while processing one translation unit."""

    def __init__(self) -> None:
        self._buffers: dict[str, _FileBuffer] = {}
        self._main_file: str | None = None

    @property
    def main_file(self) -> str | None:
        return self._main_file

    def add_file(self, filename: str, text: str, *, is_main: bool = False) -> None:
        if filename not in self._buffers:
            self._buffers[filename] = _FileBuffer(text)
        if is_main:
            self._main_file = filename

    def is_in_main_file(self, location: SourceLocation) -> bool:
        return self._main_file is not None and location.filename == self._main_file

    def get_source_text(self, source_range: SourceRange) -> str:
        begin, end = source_range.begin, source_range.end
        if begin.filename != end.filename:
            raise ValueError("Source range spans more than one file")
        buffer = self._buffers.get(begin.filename)
        if buffer is None:
            raise ValueError(f"Unknown file: {begin.filename}")
        start = buffer.offset(begin.line, begin.column)
        stop = buffer.offset(end.line, end.column)
        return buffer.text[start:stop]
