"""
Shell script workers.

Many renditions are a single command line (`convert`, `ffmpeg`, ...), so a
worker can be just a bash script. The script gets everything through
environment variables:

    source / file    path of the source file
    rendition        path the rendition must be written to
    errorfile        JSON `{"message": ..., "reason": ...}` to report a failure
    typefile         content type of the rendition, e.g. `text/plain; charset=utf-8`
    optionsfile      JSON options, e.g. `{"postProcess": true}`
    rendition_<key>  every rendition instruction (one level of nesting as
                     rendition_<key>_<subkey>)

Script metadata files live next to, not inside, the output directory so
they are never uploaded as renditions.
"""

import asyncio
import json
import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from .errors import ERRORS_BY_REASON, AssetComputeError, GenericError, Reason
from .files import limit_variable_sizes
from .models import Rendition

logger = logging.getLogger(__name__)

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")


@dataclass
class ScriptFiles:
    """Metadata files shared with the script."""
    directory: Path
    error_file: Path
    type_file: Path
    options_file: Path
    variables_dir: Path


def strip_ansi(value: Any) -> str:
    return ANSI_ESCAPE.sub("", str(value))


def prepare_metadata(directory: Path) -> ScriptFiles:
    errors_dir = directory / "errors"
    errors_dir.mkdir(parents=True, exist_ok=True)
    return ScriptFiles(
        directory=directory,
        error_file=errors_dir / "error.json",
        type_file=errors_dir / "type.txt",
        options_file=directory / "options.json",
        variables_dir=directory / "variables",
    )


def build_environment(
    source: Path,
    rendition: Rendition,
    files: ScriptFiles,
    base_env: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Environment for one script run, sizes limited for execve()."""
    env = dict(os.environ if base_env is None else base_env)

    # user provided, so escape
    env["source"] = env["file"] = strip_ansi(source)
    env["rendition"] = strip_ansi(rendition.path)
    env["errorfile"] = str(files.error_file)
    env["typefile"] = str(files.type_file)
    env["optionsfile"] = str(files.options_file)

    for key, value in rendition.instructions.items():
        if isinstance(value, dict):
            for subkey, subvalue in value.items():
                env[f"rendition_{key}_{subkey}"] = strip_ansi(subvalue)
        else:
            env[f"rendition_{key}"] = strip_ansi(value)

    return limit_variable_sizes(env, files.variables_dir)


def parse_content_type(value: str) -> tuple[str, Optional[str]]:
    """`text/plain; charset=utf-8` -> ("text/plain", "utf-8")"""
    media_type, *parameters = [part.strip() for part in value.split(";")]
    if not re.fullmatch(r"[\w.+-]+/[\w.+-]+", media_type):
        raise ValueError(f"invalid media type '{media_type}'")

    charset = None
    for parameter in parameters:
        name, _, param_value = parameter.partition("=")
        if name.strip().lower() == "charset":
            charset = param_value.strip().strip('"')
    return media_type.lower(), charset


def script_error(
    message: str,
    error_file: Path,
    location: str,
    exit_code: Optional[int] = None,
) -> AssetComputeError:
    """
    Error for a failed script run.

    A readable error file decides the error type; otherwise the script
    failure is passed through as a GenericError.
    """
    if error_file.exists():
        content = error_file.read_text(encoding="utf-8", errors="replace")
        error_file.unlink()
        try:
            details = json.loads(content)
            text = details.get("message") or message
            try:
                error_class = ERRORS_BY_REASON.get(Reason(details.get("reason")))
            except ValueError:
                error_class = None
            if error_class is not None:
                return error_class(text)
            return GenericError(text, location)
        except (ValueError, AttributeError) as e:
            logger.warning(f"Badly formed json in {error_file}: {e}\n{content}")

    error = GenericError(message, location)
    error.exit_code = exit_code
    return error


class ShellScriptWorker:
    """Runs a bash script once per rendition."""

    def __init__(self, script: str = "worker.sh", action_name: str = "") -> None:
        self.script = script
        self.location = f"{action_name}_shellScript"

    @staticmethod
    def validate(script: str) -> None:
        """Fail early if the script is missing, and make it executable."""
        if not os.path.exists(script):
            raise FileNotFoundError(f"Shell script '{script}' not found")
        os.chmod(script, 0o755)

    async def process(self, source: Path, rendition: Rendition, outdir: Path) -> None:
        logger.info(f"executing shell script {self.script} for rendition {rendition.id()}")

        files = prepare_metadata(outdir.parent / "meta" / str(rendition.index))
        env = build_environment(source, rendition, files)

        result = await asyncio.to_thread(
            subprocess.run,
            # separate arguments, no shell, so user input can't inject commands
            ["/usr/bin/env", "bash", "-x", self.script],
            env=env,
            capture_output=True,
            text=True,
        )

        # one line per log entry, long multi-line entries get split by log shippers
        for line in result.stdout.strip().splitlines():
            logger.info(line)
        for line in result.stderr.strip().splitlines():
            logger.warning(line)

        if result.returncode != 0:
            raise script_error(
                f"`/usr/bin/env bash -x {self.script}` failed with exit code {result.returncode}",
                files.error_file,
                self.location,
                result.returncode,
            )

        self._read_content_type(rendition, files)
        self._read_options(rendition, files)

    def _read_content_type(self, rendition: Rendition, files: ScriptFiles) -> None:
        if not files.type_file.exists():
            logger.info("No content type information file found")
            return

        logger.info("Reading content type information from worker generated file")
        content = files.type_file.read_text(encoding="utf-8").strip()
        try:
            media_type, charset = parse_content_type(content)
            rendition.set_content_type(media_type, charset)
        except ValueError as e:
            logger.warning(f"Could not parse type file generated by worker: {e}: {content}")

    def _read_options(self, rendition: Rendition, files: ScriptFiles) -> None:
        if not files.options_file.exists():
            return

        try:
            options = json.loads(files.options_file.read_text(encoding="utf-8"))
        except ValueError as e:
            logger.error(f"Could not parse optionsFile generated by worker: {files.options_file}: {e}")
            # keep implementation details out of the client facing message
            raise GenericError("Worker error - could not parse optionsFile", self.location)

        if isinstance(options, dict) and options.get("postProcess") in (True, "true"):
            rendition.post_process = True
