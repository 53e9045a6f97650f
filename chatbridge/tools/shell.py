"""
Local tool that runs a shell command.
"""

import os
import subprocess
from typing import Any, Dict

from .base import LocalToolProvider

EXECUTE_SHELL_COMMAND_SCHEMA = {
    "type": "object",
    "properties": {
        "command": {"type": "string", "description": "Executable to run, e.g. 'ls' or 'git'"},
        "commandParameters": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Arguments passed to the command",
        },
        "workingDirectory": {
            "type": "string",
            "description": "Directory to run the command in; defaults to the user's home directory",
        },
    },
    "required": ["command"],
}

EXECUTE_SHELL_COMMAND_OUTPUT = {
    "type": "object",
    "properties": {
        "stdout": {"type": "string"},
        "stderr": {"type": "string"},
        "exitCode": {"type": "integer"},
    },
}


class ShellToolProvider(LocalToolProvider):
    """Provides ``execute_shell_command``."""

    def __init__(self, timeout: float = 60):
        super().__init__("shell")
        self.timeout = timeout
        self.tool(
            "execute_shell_command",
            "Execute a shell command on the local machine and return its output",
            EXECUTE_SHELL_COMMAND_SCHEMA,
            EXECUTE_SHELL_COMMAND_OUTPUT,
        )(self.execute_shell_command)

    def execute_shell_command(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        command = arguments.get("command")
        if not command:
            raise ValueError("'command' is required")
        parameters = [str(p) for p in arguments.get("commandParameters") or []]
        working_dir = arguments.get("workingDirectory") or os.path.expanduser("~")

        self.logger.info(f"Executing command: {command} {' '.join(parameters)} in directory: {working_dir}")
        completed = subprocess.run(
            [command] + parameters,
            cwd=working_dir,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )
        return {
            "stdout": completed.stdout,
            "stderr": completed.stderr,
            "exitCode": completed.returncode,
        }
