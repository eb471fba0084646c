from typing import BinaryIO, Protocol

from p4pp.diag import CommandError, Diagnostic
from p4pp.frontend import run_preprocessor
from p4pp.options import PreprocessorOptions, normalize_options
from p4pp.preprocessor import PreprocessResult

_WRITE_FAILED = "P4PP-0501"


class Executor(Protocol):
    def execute(self, writer: BinaryIO, reader: BinaryIO) -> PreprocessResult: ...


class PreprocessorCommand:
    def __init__(
        self,
        options: PreprocessorOptions | None = None,
        *,
        filename: str = "<stdin>",
    ) -> None:
        self._options = normalize_options(options)
        self._filename = filename

    def execute(self, writer: BinaryIO, reader: BinaryIO) -> PreprocessResult:
        result = run_preprocessor(reader, filename=self._filename, options=self._options)
        output = result.source
        try:
            written = writer.write(output)
            writer.flush()
        except OSError as error:
            raise CommandError(
                Diagnostic(
                    "write",
                    "<stdout>",
                    f"failed to write output source code: {error}",
                    code=_WRITE_FAILED,
                )
            ) from error
        if written is not None and written != len(output):
            raise CommandError(
                Diagnostic(
                    "write",
                    "<stdout>",
                    f"output was {len(output)} bytes, but wrote {written} bytes",
                    code=_WRITE_FAILED,
                )
            )
        return result
