"""Run the configured on-change command before a reload is broadcast."""

import asyncio
import logging
import shlex
import time


def split_command(command_line: str) -> list[str]:
    """
    Split a command line into program and arguments.

    Single- and double-quoted substrings stay together as one argument.

    Args:
        command_line: Raw command line as typed by the operator

    Returns:
        Argument vector, empty for a blank command line

    Raises:
        ValueError: If the command line has unbalanced quotes
    """
    return shlex.split(command_line)


class CommandRunner:
    """
    Executes one external command per confirmed change.

    The child inherits this process's stdout/stderr so its output is visible to
    the operator. Failures are logged and never raised: a failed build still
    ends in a reload so the browser shows the broken state.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)
        self.last_returncode: int | None = None
        self.stats = {
            "runs": 0,
            "failures": 0,
        }

    async def run(self, command_line: str) -> None:
        """Run the command and wait for it to exit."""
        try:
            argv = split_command(command_line)
        except ValueError as e:
            self.stats["failures"] += 1
            self.logger.error(f"Cannot parse command {command_line!r}: {e}")
            return

        if not argv:
            return

        self.stats["runs"] += 1
        self.last_returncode = None
        start_time = time.time()
        self.logger.debug(f"Running command: {argv}")

        try:
            process = await asyncio.create_subprocess_exec(*argv)
            returncode = await process.wait()
        except OSError as e:
            self.stats["failures"] += 1
            self.logger.error(f"Failed to run command {argv[0]!r}: {e}")
            return

        self.last_returncode = returncode
        elapsed = time.time() - start_time

        if returncode != 0:
            self.stats["failures"] += 1
            self.logger.warning(f"Command {argv[0]!r} exited with code {returncode} after {elapsed:.2f}s")
        else:
            self.logger.debug(f"Command {argv[0]!r} finished in {elapsed:.2f}s")
