from dataclasses import dataclass
from typing import Literal

DiagFormat = Literal["human", "json"]


@dataclass(frozen=True)
class PreprocessorOptions:
    include_dirs: tuple[str, ...] = ()
    defines: tuple[str, ...] = ()
    diag_format: DiagFormat = "human"

    def __post_init__(self) -> None:
        if self.diag_format not in {"human", "json"}:
            raise ValueError(f"Unsupported diagnostic format: {self.diag_format}")
        for define in self.defines:
            parse_define(define)

    def predefined_macros(self) -> dict[str, str]:
        return dict(parse_define(define) for define in self.defines)


def normalize_options(options: PreprocessorOptions | None) -> PreprocessorOptions:
    return PreprocessorOptions() if options is None else options


def parse_define(define: str) -> tuple[str, str]:
    if "=" in define:
        name, value = define.split("=", 1)
    else:
        name, value = define, "1"
    name = name.strip()
    if not name or any(ch.isspace() for ch in name):
        raise ValueError(f"Invalid macro definition: {define}")
    return name, value.strip()
