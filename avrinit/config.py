"""Configuration for code generation"""
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class GeneratorConfig:
    """Generator configuration"""

    # Peripheral models (board.yaml plus one YAML model per peripheral)
    schema_dir: str = os.getenv(
        "AVRINIT_SCHEMA_DIR",
        str(Path(__file__).parent / "data" / "atmega328p")
    )

    # Names the consuming firmware build expects
    header_name: str = os.getenv("AVRINIT_HEADER", "pins_init.h")
    source_name: str = os.getenv("AVRINIT_SOURCE", "pins_init.cpp")
    aggregate_name: str = os.getenv("AVRINIT_AGGREGATE", "pins_init_all")

    # Output formatting
    indent: int = int(os.getenv("AVRINIT_INDENT", "4"))
    banner: str = "// File was generated, do not edit!"

    @property
    def include_guard(self) -> str:
        return Path(self.header_name).name.upper().replace('.', '_').replace('-', '_')


config = GeneratorConfig()
