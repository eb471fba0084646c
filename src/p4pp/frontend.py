import io
import sys
from pathlib import Path
from typing import BinaryIO

from p4pp.diag import CommandError, Diagnostic
from p4pp.options import PreprocessorOptions, normalize_options
from p4pp.preprocessor import FileIncluder, Preprocessor, PreprocessorError, PreprocessResult


def read_source(path: str, *, stdin: BinaryIO | None = None) -> tuple[str, bytes]:
    if path == "-":
        stream = sys.stdin.buffer if stdin is None else stdin
        return "<stdin>", stream.read()
    resolved = Path(path)
    return str(resolved), resolved.read_bytes()


def run_preprocessor(
    source: bytes | BinaryIO,
    *,
    filename: str = "<input>",
    options: PreprocessorOptions | None = None,
) -> PreprocessResult:
    normalized_options = normalize_options(options)
    reader = io.BytesIO(source) if isinstance(source, bytes) else source
    processor = Preprocessor(
        reader,
        includer=FileIncluder(search_dirs=normalized_options.include_dirs),
        defines=normalized_options.predefined_macros(),
        filename=filename,
    )
    try:
        return processor.process()
    except PreprocessorError as error:
        diagnostic = Diagnostic(
            "pp",
            error.filename if error.filename is not None else filename,
            error.message,
            error.line,
            error.code,
        )
        raise CommandError(diagnostic) from error


def preprocess_path(
    path: str | Path,
    *,
    options: PreprocessorOptions | None = None,
) -> PreprocessResult:
    filename, source = read_source(str(path))
    return run_preprocessor(source, filename=filename, options=options)
