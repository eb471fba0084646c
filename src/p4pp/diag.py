import json
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class Diagnostic:
    stage: str
    filename: str
    message: str
    line: int | None = None
    code: str | None = None

    def __str__(self) -> str:
        if self.line is None:
            return f"{self.filename}: {self.stage}: {self.message}"
        return f"{self.filename}:{self.line}: {self.stage}: {self.message}"

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))


class CommandError(ValueError):
    def __init__(self, diagnostic: Diagnostic) -> None:
        super().__init__(str(diagnostic))
        self.diagnostic = diagnostic
