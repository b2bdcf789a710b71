"""
Gateway to the external document/image converters.

The converters are opaque child processes configured as argument strings
with ``{input}`` and ``{output}`` placeholders, e.g. ghostscript for
PDF -> TIFF G4 and tiff2pdf for the way back.
"""

import asyncio
import re
import shlex
from pathlib import Path

import structlog

from faxbridge.config import Settings
from faxbridge.core.exceptions import ConversionError, ErrorCode

logger = structlog.get_logger(__name__)

FORMAT_EXTENSIONS = {
    "tiff": ".tiff",
    "pdf": ".pdf",
}

_WHITESPACE = re.compile(r"\s+")


def derive_output_path(input_path: Path | str, extension: str) -> Path:
    """
    Output path for a conversion: same directory, extension swapped.

    The old extension is replaced whatever its case (fax.PDF -> fax.tiff) and
    whitespace in the file name becomes underscores.
    """
    path = Path(input_path)
    name = _WHITESPACE.sub("_", path.stem + extension)
    return path.with_name(name)


def build_command(template: str, input_path: Path, output_path: Path) -> list[str]:
    """Split the template and substitute placeholders per argument."""
    return [
        arg.replace("{input}", str(input_path)).replace("{output}", str(output_path))
        for arg in shlex.split(template)
    ]


class ConverterGateway:
    """Runs a configured converter and maps process failures to ConversionError."""

    def __init__(self, commands: dict[str, str], timeout_seconds: float):
        unknown = set(commands) - set(FORMAT_EXTENSIONS)
        if unknown:
            raise ValueError(f"Unknown target formats: {sorted(unknown)}")
        self.commands = commands
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConverterGateway":
        return cls(
            commands={
                "tiff": settings.pdf_to_tiff_command,
                "pdf": settings.tiff_to_pdf_command,
            },
            timeout_seconds=settings.converter_timeout_seconds,
        )

    async def convert(self, input_path: Path, target_format: str) -> Path:
        """
        Convert input_path into target_format next to it.

        Args:
            input_path: Existing source file
            target_format: "tiff" or "pdf"

        Returns:
            Path of the written output file

        Raises:
            ConversionError: spawn failure, timeout, non-zero exit or missing output.
                Any partial output must not be referenced.
        """
        if target_format not in self.commands:
            raise ValueError(f"No converter configured for {target_format!r}")

        output_path = derive_output_path(input_path, FORMAT_EXTENSIONS[target_format])
        command = build_command(self.commands[target_format], Path(input_path), output_path)
        logger.info("conversion_started", command=command[0], input=str(input_path), output=str(output_path))

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ConversionError(command, None, str(e)) from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise ConversionError(
                command,
                None,
                f"timed out after {self.timeout_seconds}s",
                error_code=ErrorCode.CONVERSION_TIMEOUT,
            ) from e

        stderr_text = stderr.decode("utf-8", errors="replace")
        if process.returncode != 0:
            raise ConversionError(command, process.returncode, stderr_text)
        if not output_path.exists():
            raise ConversionError(command, process.returncode, stderr_text or "converter produced no output")

        logger.info("conversion_completed", output=str(output_path))
        return output_path
