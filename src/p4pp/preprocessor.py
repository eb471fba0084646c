import io
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Protocol

logger = logging.getLogger(__name__)

# Included files are cut off at this many bytes.
MAX_INCLUDE_SIZE = 1 << 20

_DEFINE_PREFIX = b"#define"
_INCLUDE_PREFIX = b"#include"
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"

_PP_INVALID_DEFINE = "P4PP-0101"
_PP_INVALID_INCLUDE = "P4PP-0102"
_PP_DEFINE_REJECTED = "P4PP-0201"
_PP_INCLUDE_FAILED = "P4PP-0301"
_PP_SCAN_FAILED = "P4PP-0401"


class PreprocessorError(ValueError):
    def __init__(
        self,
        message: str,
        line: int | None = None,
        *,
        filename: str | None = None,
        code: str,
    ) -> None:
        if line is None:
            super().__init__(message)
        else:
            location = f"{filename}:{line}" if filename is not None else str(line)
            super().__init__(f"{message} at {location}")
        self.message = message
        self.line = line
        self.filename = filename
        self.code = code


class MalformedDirectiveError(PreprocessorError):
    pass


class DefineHookError(PreprocessorError):
    pass


class IncludeResolutionError(PreprocessorError):
    pass


class ScanError(PreprocessorError):
    pass


class Definer(Protocol):
    def define(self, name: str, value: str) -> tuple[str, str]: ...


class Includer(Protocol):
    def include(self, name: str) -> bytes: ...


class IdentityDefiner:
    def define(self, name: str, value: str) -> tuple[str, str]:
        return name, value


class FileIncluder:
    """Resolve include targets against the filesystem.

    A target is looked up relative to the working directory first, then
    relative to each of ``search_dirs`` in order. Content past ``max_size``
    bytes is dropped; the target name is appended to ``truncated`` and a
    warning is logged.
    """

    def __init__(
        self,
        search_dirs: tuple[str, ...] = (),
        *,
        max_size: int = MAX_INCLUDE_SIZE,
    ) -> None:
        if max_size < 0:
            raise ValueError(f"Invalid include size limit: {max_size}")
        self._search_dirs = tuple(Path(path) for path in search_dirs)
        self._max_size = max_size
        self.truncated: list[str] = []

    def include(self, name: str) -> bytes:
        try:
            path = self._resolve(name)
            with path.open("rb") as stream:
                content = stream.read(self._max_size + 1)
        except ValueError as error:
            raise FileNotFoundError(f"Invalid include path: {name!r}: {error}") from error
        if len(content) > self._max_size:
            logger.warning(
                "include %r exceeds %d bytes and was truncated", name, self._max_size
            )
            self.truncated.append(name)
            content = content[: self._max_size]
        return content

    def _resolve(self, name: str) -> Path:
        candidate = Path(name)
        if candidate.is_absolute() or not self._search_dirs or candidate.is_file():
            return candidate
        for root in self._search_dirs:
            candidate = root / name
            if candidate.is_file():
                return candidate
        raise FileNotFoundError(f"No such file in include path: {name!r}")


class MappingIncluder:
    def __init__(self, files: Mapping[str, bytes | str]) -> None:
        self._files = files

    def include(self, name: str) -> bytes:
        try:
            content = self._files[name]
        except KeyError:
            raise FileNotFoundError(f"No such include: {name!r}") from None
        if isinstance(content, str):
            return content.encode(_ENCODING, _ERRORS)
        return bytes(content)


@dataclass(frozen=True)
class PreprocessResult:
    source: bytes
    macro_table: tuple[str, ...]
    include_trace: tuple[str, ...]


class Preprocessor:
    """Expand ``#define`` and ``#include`` directives in a byte stream.

    One instance processes one stream. Macros are applied as literal,
    single-pass substring replacement, longest name first, using the table
    as it stands when each line is reached.
    """

    def __init__(
        self,
        reader: BinaryIO,
        *,
        definer: Definer | None = None,
        includer: Includer | None = None,
        defines: Mapping[str, str] | None = None,
        filename: str = "<input>",
    ) -> None:
        self._reader = reader
        self._definer: Definer = IdentityDefiner() if definer is None else definer
        self._includer: Includer = FileIncluder() if includer is None else includer
        self._filename = filename
        self._macros: dict[str, str] = dict(defines) if defines is not None else {}
        self._include_trace: list[str] = []

    @property
    def macros(self) -> Mapping[str, str]:
        return self._macros

    @property
    def includer(self) -> Includer:
        return self._includer

    def process(self) -> PreprocessResult:
        chunks: list[bytes] = []
        for line_number, line in self._scan_lines():
            if line.startswith(_DEFINE_PREFIX):
                self._handle_define(line, line_number)
            elif line.startswith(_INCLUDE_PREFIX):
                chunks.append(self._handle_include(line, line_number))
            else:
                chunks.append(self._substitute(line) + b"\n")
        return PreprocessResult(
            b"".join(chunks),
            tuple(f"{name}={value}" for name, value in sorted(self._macros.items())),
            tuple(self._include_trace),
        )

    def _scan_lines(self) -> Iterator[tuple[int, bytes]]:
        line_number = 0
        while True:
            try:
                raw = self._reader.readline()
            except OSError as error:
                raise ScanError(
                    f"failed to read source: {error}",
                    line_number + 1,
                    filename=self._filename,
                    code=_PP_SCAN_FAILED,
                ) from error
            if not raw:
                return
            line_number += 1
            line = raw[:-1] if raw.endswith(b"\n") else raw
            if line.endswith(b"\r"):
                line = line[:-1]
            yield line_number, line

    def _handle_define(self, line: bytes, line_number: int) -> None:
        # #define FOO_BITS 8
        # #define FOO_BAR "foo bar"
        fields = line.split()
        if len(fields) < 3:
            raise MalformedDirectiveError(
                f"invalid define preprocessor directive: {_decode(line)!r}",
                line_number,
                filename=self._filename,
                code=_PP_INVALID_DEFINE,
            )
        name = _decode(fields[1])
        # TODO: keep the original spacing inside multi-word values
        value = _decode(self._substitute(b" ".join(fields[2:])))
        try:
            out_name, out_value = self._definer.define(name, value)
        except ValueError as error:
            raise DefineHookError(
                f"preprocessor error while defining {name!r} as {value!r}: {error}",
                line_number,
                filename=self._filename,
                code=_PP_DEFINE_REJECTED,
            ) from error
        if not out_name:
            raise DefineHookError(
                f"preprocessor error while defining {name!r} as {value!r}: empty macro name",
                line_number,
                filename=self._filename,
                code=_PP_DEFINE_REJECTED,
            )
        logger.debug("define %s=%s", out_name, out_value)
        self._macros[out_name] = out_value

    def _handle_include(self, line: bytes, line_number: int) -> bytes:
        # #include "foo.p4"
        # #include "foo/bar.p4"
        fields = line.split()
        if len(fields) != 2:
            raise MalformedDirectiveError(
                f"invalid include preprocessor directive: {_decode(line)!r}",
                line_number,
                filename=self._filename,
                code=_PP_INVALID_INCLUDE,
            )
        name = _strip_quotes(_decode(fields[1]))
        truncated: list[str] | None = getattr(self._includer, "truncated", None)
        seen = len(truncated) if truncated is not None else 0
        try:
            content = self._includer.include(name)
        except OSError as error:
            raise IncludeResolutionError(
                f"preprocessor error while including {name!r}: {error}",
                line_number,
                filename=self._filename,
                code=_PP_INCLUDE_FAILED,
            ) from error
        logger.debug("include %s (%d bytes)", name, len(content))
        entry = f'{self._filename}:{line_number}: #include "{name}" -> {len(content)} bytes'
        if truncated is not None and len(truncated) > seen:
            entry += " (truncated)"
        self._include_trace.append(entry)
        return self._substitute(content)

    def _substitute(self, text: bytes) -> bytes:
        for name, value in _replacement_order(self._macros):
            text = text.replace(name, value)
        return text


def preprocess_source(
    source: bytes | str,
    *,
    filename: str = "<input>",
    definer: Definer | None = None,
    includer: Includer | None = None,
    defines: Mapping[str, str] | None = None,
) -> PreprocessResult:
    if isinstance(source, str):
        source = source.encode(_ENCODING, _ERRORS)
    processor = Preprocessor(
        io.BytesIO(source),
        definer=definer,
        includer=includer,
        defines=defines,
        filename=filename,
    )
    return processor.process()


def _replacement_order(macros: Mapping[str, str]) -> list[tuple[bytes, bytes]]:
    names = sorted(macros, key=lambda name: (-len(name), name))
    return [(_encode(name), _encode(macros[name])) for name in names]


def _strip_quotes(text: str) -> str:
    return text.removeprefix('"').removesuffix('"')


def _decode(data: bytes) -> str:
    return data.decode(_ENCODING, _ERRORS)


def _encode(text: str) -> bytes:
    return text.encode(_ENCODING, _ERRORS)
